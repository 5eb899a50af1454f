import asyncio
import logging
from collections.abc import Callable

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from branched.database import SessionLocal
from branched.models.tree_node import TreeNode
from branched.services.base import AIService
from branched.services.events import NodeEventBus, node_event
from branched.services.tree_engine import TreeEngine

logger = logging.getLogger(__name__)


class ResponseWorker:
    """Generates the LLM response of a pending node and writes it back once.

    ``generate`` runs after the HTTP response has been sent, so it opens
    its own database session instead of reusing the request's.
    """

    def __init__(
        self,
        ai_service: AIService,
        session_factory: Callable[[], Session] = SessionLocal,
        event_bus: NodeEventBus | None = None,
        timeout: float | None = None,
    ):
        self.ai_service = ai_service
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.timeout = timeout

    async def generate(
        self,
        session_id: str,
        node_id: str,
        prompt_context: list[dict[str, str]],
    ) -> None:
        """Ask the AI service for a reply and settle the node. Never raises."""
        logger.info(
            f"=== Generating response: session={session_id}, node={node_id}, "
            f"context_messages={len(prompt_context)} ==="
        )

        try:
            response_text = await asyncio.wait_for(
                self.ai_service.complete(prompt_context),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"Response generation timed out for node {node_id} after {self.timeout}s")
            self._settle(session_id, node_id, error=f"Response timed out after {self.timeout} seconds")
            return
        except Exception as e:
            logger.error(f"Response generation failed for node {node_id}: {e}", exc_info=True)
            self._settle(session_id, node_id, error=f"Response generation failed: {e}")
            return

        self._settle(session_id, node_id, response_text=response_text)

    def _settle(
        self,
        session_id: str,
        node_id: str,
        response_text: str | None = None,
        error: str | None = None,
    ) -> bool:
        db = self.session_factory()
        try:
            engine = TreeEngine(db)
            if error is None:
                settled = engine.complete_response(node_id, response_text or "")
                event_type = "node_completed"
            else:
                settled = engine.fail_response(node_id, error)
                event_type = "node_failed"

            # 节点已被删除或已完成时不推送事件
            if settled and self.event_bus is not None:
                node = db.query(TreeNode).filter(TreeNode.id == node_id).first()
                if node is not None:
                    self.event_bus.publish(session_id, node_event(event_type, node))
            return settled
        except Exception as e:
            logger.error(f"Failed to store response for node {node_id}: {e}", exc_info=True)
            return False
        finally:
            db.close()


def schedule_response(
    background_tasks: BackgroundTasks,
    worker: ResponseWorker | None,
    engine: TreeEngine,
    node: TreeNode,
) -> None:
    """Queue response generation for a freshly created node.

    When no worker is available the node is marked failed right away; the
    creation itself still succeeds.
    """
    if worker is None:
        engine.fail_response(node.id, "Response worker unavailable")
        engine.db.refresh(node)
        return

    prompt_context = engine.prompt_context(node.chat_session_id, node.id)
    # 后台任务在响应返回之后执行
    background_tasks.add_task(worker.generate, node.chat_session_id, node.id, prompt_context)
    logger.info(f"Scheduled response generation for node {node.id}")
