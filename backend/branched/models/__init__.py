from branched.models.api_key import ApiKey
from branched.models.api_request import ApiRequest
from branched.models.chat_session import ChatSession
from branched.models.tree_node import NodeStatus, TreeNode

__all__ = [
    "ChatSession",
    "TreeNode",
    "NodeStatus",
    "ApiRequest",
    "ApiKey",
]
