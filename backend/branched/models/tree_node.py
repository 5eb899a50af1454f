import enum
import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint

from branched.database import Base
from branched.models.chat_session import utcnow


class NodeStatus(str, enum.Enum):
    """Lifecycle of a node's LLM response."""
    PENDING = "pending"      # waiting for the response worker
    COMPLETE = "complete"    # llm_response set, immutable from now on
    FAILED = "failed"        # generation failed, see error


class TreeNode(Base):
    """One user message and its LLM response inside a chat session tree.

    Nodes are stored flat; the tree is given by ``parent_id`` alone and the
    nested view is rebuilt on read.
    """

    __tablename__ = "tree_nodes"
    __table_args__ = (
        # two writers handing out the same sequence means one of them raced
        UniqueConstraint("chat_session_id", "sequence", name="uq_tree_nodes_session_sequence"),
    )

    id = Column(String, primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    chat_session_id = Column(
        String, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id = Column(
        String, ForeignKey("tree_nodes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    user_message = Column(Text, nullable=False)
    llm_response = Column(Text, nullable=False, default="")
    status = Column(Enum(NodeStatus), nullable=False, default=NodeStatus.PENDING)
    error = Column(Text, nullable=True)
    sequence = Column(Integer, nullable=False)  # creation order within the session
    created_at = Column(DateTime, default=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return (
            f"<TreeNode(id={self.id}, parent_id={self.parent_id}, "
            f"status='{self.status}', message_length={len(self.user_message)})>"
        )
