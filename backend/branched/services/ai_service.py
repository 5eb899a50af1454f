import logging

from openai import AsyncOpenAI

from branched.config import get_settings
from branched.core.errors import WorkerUnavailableError
from branched.services.base import AIService

logger = logging.getLogger(__name__)


def _ensure_system_prompt(
    messages: list[dict[str, str]],
    system_prompt: str
) -> list[dict[str, str]]:
    """Make sure the message list starts with the system prompt."""
    if not system_prompt:
        return messages

    if not messages:
        return [{"role": "system", "content": system_prompt}]

    if messages[0].get("role") != "system":
        return [{"role": "system", "content": system_prompt}] + messages

    return messages


class OpenAIChatService(AIService):
    """Chat completions against any OpenAI-compatible endpoint (DeepSeek by default)."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        temperature: float = 0.7,
        system_prompt: str = "",
    ):
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)
        self.model = model
        self.temperature = temperature
        self.system_prompt = system_prompt

        logger.info(f"Chat service initialized with model: {self.model}, base_url: {base_url}")

    async def complete(self, messages: list[dict[str, str]]) -> str:
        messages = _ensure_system_prompt(list(messages), self.system_prompt)

        logger.info(f"Requesting completion: {len(messages)} messages, model={self.model}")

        response = await self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=self.temperature,
        )
        content = response.choices[0].message.content or ""

        logger.info(f"Completion received: {len(content)} chars")
        return content


class AIServiceFactory:
    """Creates AI service instances from settings."""

    @staticmethod
    def create_service() -> AIService:
        settings = get_settings()

        if not settings.llm_api_key:
            raise WorkerUnavailableError("LLM API key is not configured, set LLM_API_KEY in .env")

        return OpenAIChatService(
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            system_prompt=settings.llm_system_prompt,
        )


def get_ai_service() -> AIService:
    """Get the configured AI service.

    Raises:
        WorkerUnavailableError: no LLM credentials are configured
    """
    return AIServiceFactory.create_service()
