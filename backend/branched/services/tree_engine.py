"""Conversation-tree engine.

Nodes of a chat session are stored flat, linked only by ``parent_id``.
Every structural change (insert, subtree delete) runs under the session's
lock and commits once, so readers never observe a half-applied change.
The nested view handed to clients is rebuilt on each read.
"""

import logging
from collections import defaultdict, deque
from collections.abc import Iterable, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from branched.config import Settings, get_settings
from branched.core.errors import ConflictError, NotFoundOrForbiddenError, ValidationError
from branched.core.locks import SessionLockRegistry, get_lock_registry
from branched.models.chat_session import ChatSession, utcnow
from branched.models.tree_node import NodeStatus, TreeNode
from branched.schemas.session import TreeNodeResponse
from branched.services.access import ensure_session_access

logger = logging.getLogger(__name__)


def validate_message(user_message: str | None, max_length: int) -> str:
    """Reject empty or oversized user messages."""
    if user_message is None or not user_message.strip():
        raise ValidationError("Message must not be empty")
    if max_length and len(user_message) > max_length:
        raise ValidationError(f"Message exceeds {max_length} characters")
    return user_message


def build_forest(nodes: Iterable[TreeNode]) -> list[TreeNodeResponse]:
    """Nest a flat node list into root trees.

    Nodes are visited in creation order, so a parent is always indexed
    before its children and siblings keep their creation order.
    """
    views: dict[str, TreeNodeResponse] = {}
    roots: list[TreeNodeResponse] = []

    for node in sorted(nodes, key=lambda n: n.sequence):
        view = TreeNodeResponse.model_validate(node)
        views[node.id] = view

        if node.parent_id is None:
            roots.append(view)
            continue

        parent = views.get(node.parent_id)
        if parent is None:
            logger.warning(f"Skipping node {node.id}: parent {node.parent_id} is not in the tree")
            continue
        parent.children.append(view)

    return roots


def collect_subtree(links: Iterable[tuple[str, str | None]], node_id: str) -> list[str]:
    """Ids of ``node_id`` and all its descendants, breadth first.

    ``links`` are ``(id, parent_id)`` pairs of one session.
    """
    children: dict[str | None, list[str]] = defaultdict(list)
    for child_id, parent_id in links:
        children[parent_id].append(child_id)

    collected = []
    seen = set()
    queue = deque([node_id])
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        collected.append(current)
        queue.extend(children.get(current, ()))
    return collected


def ancestor_path(nodes_by_id: dict[str, TreeNode], node_id: str) -> list[TreeNode]:
    """Nodes from the root down to ``node_id``, inclusive."""
    path = []
    seen = set()
    current = nodes_by_id.get(node_id)
    while current is not None and current.id not in seen:
        seen.add(current.id)
        path.append(current)
        current = nodes_by_id.get(current.parent_id) if current.parent_id else None
    path.reverse()
    return path


def path_to_messages(path: Sequence[TreeNode]) -> list[dict[str, str]]:
    """Turn an ancestor path into chat messages ending with the last node's question."""
    messages = []
    for ancestor in path[:-1]:
        messages.append({"role": "user", "content": ancestor.user_message})
        if ancestor.status == NodeStatus.COMPLETE and ancestor.llm_response:
            messages.append({"role": "assistant", "content": ancestor.llm_response})
    if path:
        messages.append({"role": "user", "content": path[-1].user_message})
    return messages


class TreeEngine:
    """Inserts, deletes and reads the node forest of chat sessions."""

    def __init__(
        self,
        db: Session,
        locks: SessionLockRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.locks = locks if locks is not None else get_lock_registry()
        self.settings = settings or get_settings()

    def commit(self) -> None:
        """Commit, turning constraint violations from a concurrent writer into ConflictError."""
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Tree mutation rejected by the database: {e.orig}")
            raise ConflictError("The conversation tree changed concurrently, please retry") from e

    def _session_nodes(self, session_id: str) -> list[TreeNode]:
        return self.db.query(TreeNode).filter(
            TreeNode.chat_session_id == session_id
        ).order_by(TreeNode.sequence.asc()).all()

    def insert_node(self, session: ChatSession, parent_id: str | None, user_message: str) -> TreeNode:
        """Add a pending node to ``session`` without committing. Caller holds the lock."""
        node = TreeNode(
            chat_session_id=session.id,
            parent_id=parent_id,
            user_message=user_message,
            llm_response="",
            status=NodeStatus.PENDING,
            sequence=session.next_sequence(),
        )
        self.db.add(node)
        return node

    def create_branch(
        self,
        user_id: str,
        session_id: str,
        parent_id: str | None,
        user_message: str,
        is_new_branch: bool = True,
    ) -> TreeNode:
        """Create a pending node under ``parent_id``, or a new root when there is no parent.

        Returns as soon as the node is committed; the response is generated elsewhere.
        """
        message = validate_message(user_message, self.settings.max_message_length)
        if parent_id is None and not is_new_branch:
            raise ValidationError("parent_id is required unless is_new_branch is set")

        with self.locks.hold(session_id):
            session = ensure_session_access(self.db, user_id, session_id)

            if parent_id is not None:
                parent = self.db.query(TreeNode).filter(
                    TreeNode.id == parent_id,
                    TreeNode.chat_session_id == session_id
                ).first()
                if parent is None:
                    raise NotFoundOrForbiddenError("Node not found")

            node = self.insert_node(session, parent_id, message)
            self.commit()
            self.db.refresh(node)

        logger.info(
            f"Created node {node.id} in session {session_id} "
            f"(parent={parent_id}, sequence={node.sequence})"
        )
        return node

    def delete_branch(self, user_id: str, session_id: str, node_id: str) -> list[str]:
        """Delete ``node_id`` and its whole subtree in one transaction. Returns the removed ids."""
        with self.locks.hold(session_id):
            session = ensure_session_access(self.db, user_id, session_id)

            links = self.db.query(TreeNode.id, TreeNode.parent_id).filter(
                TreeNode.chat_session_id == session_id
            ).all()
            if node_id not in {link.id for link in links}:
                raise NotFoundOrForbiddenError("Node not found")

            doomed = collect_subtree(((link.id, link.parent_id) for link in links), node_id)
            self.db.query(TreeNode).filter(
                TreeNode.id.in_(doomed)
            ).delete(synchronize_session=False)
            session.updated_at = utcnow()
            self.commit()

        logger.info(f"Deleted node {node_id} and {len(doomed) - 1} descendants from session {session_id}")
        return doomed

    def get_tree(self, session_id: str) -> list[TreeNodeResponse]:
        """Current forest of a session. Access must have been checked by the caller."""
        with self.locks.hold(session_id):
            nodes = self._session_nodes(session_id)
        return build_forest(nodes)

    def prompt_context(self, session_id: str, node_id: str) -> list[dict[str, str]]:
        """Chat messages along the ancestor path of ``node_id``, ending with its own message."""
        with self.locks.hold(session_id):
            nodes = self._session_nodes(session_id)

        path = ancestor_path({node.id: node for node in nodes}, node_id)
        if not path:
            raise NotFoundOrForbiddenError("Node not found")

        limit = self.settings.max_context_nodes
        if limit and len(path) > limit:
            path = path[-limit:]
        return path_to_messages(path)

    def _settle(self, node_id: str, values: dict) -> bool:
        # 只有 pending 状态的节点可以被更新，保证 response 只写一次
        updated = self.db.query(TreeNode).filter(
            TreeNode.id == node_id,
            TreeNode.status == NodeStatus.PENDING
        ).update(values, synchronize_session=False)
        self.db.commit()
        return bool(updated)

    def complete_response(self, node_id: str, response_text: str) -> bool:
        """Store the LLM response of a pending node.

        Returns False, changing nothing, when the node is gone or already settled.
        """
        completed = self._settle(node_id, {
            "llm_response": response_text or "",
            "status": NodeStatus.COMPLETE,
            "error": None,
            "completed_at": utcnow(),
        })
        if completed:
            logger.info(f"Response completed for node {node_id}")
        else:
            logger.warning(f"Ignored response for node {node_id}: deleted or already settled")
        return completed

    def fail_response(self, node_id: str, error: str) -> bool:
        """Mark a pending node as failed. Same no-op rules as ``complete_response``."""
        failed = self._settle(node_id, {
            "status": NodeStatus.FAILED,
            "error": error,
            "completed_at": utcnow(),
        })
        if failed:
            logger.warning(f"Response failed for node {node_id}: {error}")
        return failed
