from abc import ABC, abstractmethod


class AIService(ABC):
    """Abstract base class for AI services."""

    @abstractmethod
    async def complete(self, messages: list[dict[str, str]]) -> str:
        """Answer the last user message of a conversation.

        Args:
            messages: Conversation in OpenAI chat format, oldest first

        Returns:
            The assistant's reply text. Errors propagate to the caller.
        """
        pass
