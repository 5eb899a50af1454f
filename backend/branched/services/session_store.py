import logging
import re
from collections import defaultdict

from sqlalchemy.orm import Session

from branched.config import Settings, get_settings
from branched.core.locks import SessionLockRegistry, get_lock_registry
from branched.models.chat_session import ChatSession
from branched.models.tree_node import TreeNode
from branched.schemas.session import ChatSessionResponse
from branched.services.access import ensure_session_access
from branched.services.tree_engine import TreeEngine, build_forest, validate_message

logger = logging.getLogger(__name__)


def derive_title(message: str, max_length: int) -> str:
    """Session title from the first line of the opening message."""
    first_line = next((line for line in message.splitlines() if line.strip()), message)
    title = re.sub(r"\s+", " ", first_line).strip()
    if max_length and len(title) > max_length:
        title = title[:max_length].rstrip() + "..."
    return title


class SessionStore:
    """Creates, lists, renames and deletes a user's chat sessions."""

    def __init__(
        self,
        db: Session,
        locks: SessionLockRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.db = db
        self.locks = locks if locks is not None else get_lock_registry()
        self.settings = settings or get_settings()
        self.engine = TreeEngine(db, self.locks, self.settings)

    def create_session(
        self, user_id: str, initial_message: str, title: str | None = None
    ) -> tuple[ChatSession, TreeNode]:
        """Create a session whose single root node holds ``initial_message`` (pending)."""
        message = validate_message(initial_message, self.settings.max_message_length)
        if title is None or not title.strip():
            title = derive_title(message, self.settings.session_title_length)

        session = ChatSession(user_id=user_id, title=title.strip())
        self.db.add(session)
        self.db.flush()

        root = self.engine.insert_node(session, None, message)
        self.engine.commit()
        self.db.refresh(session)
        self.db.refresh(root)

        logger.info(f"Created session {session.id} for user {user_id} with root node {root.id}")
        return session, root

    def list_sessions(self, user_id: str) -> list[ChatSession]:
        """All sessions of ``user_id``, newest first."""
        return self.db.query(ChatSession).filter(
            ChatSession.user_id == user_id
        ).order_by(ChatSession.created_at.desc(), ChatSession.id.desc()).all()

    def get_session(self, user_id: str, session_id: str) -> ChatSession:
        return ensure_session_access(self.db, user_id, session_id)

    def rename_session(self, user_id: str, session_id: str, title: str) -> ChatSession:
        with self.locks.hold(session_id):
            session = ensure_session_access(self.db, user_id, session_id)
            session.title = title.strip()
            self.db.commit()
            self.db.refresh(session)
        return session

    def delete_session(self, user_id: str, session_id: str) -> None:
        """Hard delete of the session and every node in it."""
        with self.locks.hold(session_id):
            session = ensure_session_access(self.db, user_id, session_id)
            removed = self.db.query(TreeNode).filter(
                TreeNode.chat_session_id == session_id
            ).delete(synchronize_session=False)
            self.db.delete(session)
            self.engine.commit()

        logger.info(f"Deleted session {session_id} with {removed} nodes")

    def serialize(self, session: ChatSession) -> ChatSessionResponse:
        """Session with its nested node forest."""
        response = ChatSessionResponse.model_validate(session)
        response.nodes = self.engine.get_tree(session.id)
        return response

    def serialize_all(self, sessions: list[ChatSession]) -> list[ChatSessionResponse]:
        """Serialize many sessions, loading all their nodes with one query."""
        if not sessions:
            return []

        nodes = self.db.query(TreeNode).filter(
            TreeNode.chat_session_id.in_([session.id for session in sessions])
        ).order_by(TreeNode.sequence.asc()).all()

        by_session: dict[str, list[TreeNode]] = defaultdict(list)
        for node in nodes:
            by_session[node.chat_session_id].append(node)

        responses = []
        for session in sessions:
            response = ChatSessionResponse.model_validate(session)
            response.nodes = build_forest(by_session.get(session.id, []))
            responses.append(response)
        return responses
