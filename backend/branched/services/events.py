"""In-process node events for the server-sent event stream.

Each subscriber of a session gets its own bounded queue. Events are
notifications only; clients re-read the session for the source of truth.
"""

import asyncio
import logging
from typing import Any

from branched.models.tree_node import TreeNode

logger = logging.getLogger(__name__)


def node_event(event_type: str, node: TreeNode) -> dict[str, Any]:
    """SSE payload describing a node."""
    return {
        "event": event_type,
        "id": f"{event_type}_{node.id}",
        "data": {
            "id": node.id,
            "chat_session_id": node.chat_session_id,
            "parent_id": node.parent_id,
            "status": node.status.value if node.status else None,
            "llm_response": node.llm_response,
            "error": node.error,
        },
    }


class NodeEventBus:
    """Fan-out of node events to the listeners of each session."""

    def __init__(self, maxsize: int = 100):
        self.maxsize = maxsize
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def subscribe(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.maxsize)
        self._subscribers.setdefault(session_id, []).append(queue)
        logger.info(f"[SSE] Subscriber added for session {session_id}")
        return queue

    def unsubscribe(self, session_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(session_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[session_id]
        logger.info(f"[SSE] Subscriber removed for session {session_id}")

    def subscriber_count(self, session_id: str) -> int:
        return len(self._subscribers.get(session_id, []))

    def publish(self, session_id: str, event: dict[str, Any]) -> int:
        """Push ``event`` to every listener of the session. Returns how many received it."""
        delivered = 0
        for queue in list(self._subscribers.get(session_id, [])):
            try:
                queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                logger.warning(f"[SSE] Queue full for session {session_id}, dropping event")
        if delivered:
            logger.info(f"[SSE] Emitted {event.get('event')} for session {session_id}")
        return delivered


_event_bus: NodeEventBus | None = None


def get_event_bus() -> NodeEventBus:
    """Return the process-wide event bus."""
    global _event_bus
    if _event_bus is None:
        from branched.config import get_settings

        _event_bus = NodeEventBus(maxsize=get_settings().event_queue_size)
    return _event_bus
