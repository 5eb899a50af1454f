import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, String

from branched.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp with microseconds, stored as-is by every backend."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChatSession(Base):
    """A user's branching conversation: the owner of a forest of tree nodes."""

    __tablename__ = "chat_sessions"

    id = Column(String, primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False, default="")
    node_counter = Column(Integer, nullable=False, default=0)  # last sequence handed out
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def next_sequence(self) -> int:
        """Reserve the next creation-order number for a node of this session."""
        self.node_counter = (self.node_counter or 0) + 1
        return self.node_counter

    def __repr__(self):
        return f"<ChatSession(id={self.id}, user_id='{self.user_id}', title='{self.title}')>"
