from datetime import datetime

from pydantic import BaseModel, Field

from branched.models.tree_node import NodeStatus


class TreeNodeResponse(BaseModel):
    """A node with its children nested, in creation order."""
    id: str
    chat_session_id: str
    parent_id: str | None = None
    user_message: str
    llm_response: str = ""
    status: NodeStatus = NodeStatus.PENDING
    error: str | None = None
    created_at: datetime
    completed_at: datetime | None = None
    children: list["TreeNodeResponse"] = Field(default_factory=list)

    class Config:
        from_attributes = True


class ChatSessionBase(BaseModel):
    """Base chat session schema."""
    title: str


class ChatSessionCreate(BaseModel):
    """Chat session creation schema: the first message starts the tree."""
    initial_message: str
    title: str | None = None


class ChatSessionUpdate(BaseModel):
    """Chat session update schema."""
    title: str | None = None


class ChatSessionResponse(ChatSessionBase):
    """Chat session with its full node forest."""
    id: str
    user_id: str
    created_at: datetime
    updated_at: datetime
    nodes: list[TreeNodeResponse] = Field(default_factory=list)

    class Config:
        from_attributes = True


class BranchCreate(BaseModel):
    """New node under ``parent_id``; a null parent with ``is_new_branch`` starts a new root."""
    parent_id: str | None = None
    user_message: str
    is_new_branch: bool = True


class MessageCreate(BaseModel):
    """Reply inside an existing branch; ``parent_id`` is optional and must match the path."""
    parent_id: str | None = None
    user_message: str
