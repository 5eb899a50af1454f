from branched.schemas.api_key import ApiKeyCreated, ApiKeyResponse
from branched.schemas.session import (
    BranchCreate,
    ChatSessionCreate,
    ChatSessionResponse,
    ChatSessionUpdate,
    MessageCreate,
    TreeNodeResponse,
)
from branched.schemas.usage import EndpointStats, UsageResponse

__all__ = [
    "ApiKeyResponse", "ApiKeyCreated",
    "ChatSessionCreate", "ChatSessionUpdate", "ChatSessionResponse",
    "TreeNodeResponse", "BranchCreate", "MessageCreate",
    "EndpointStats", "UsageResponse",
]
