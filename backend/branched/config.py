from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "Branched Chat API"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:3000"]

    # LLM Configuration (any OpenAI-compatible endpoint)
    llm_api_key: str | None = None
    llm_base_url: str = "https://api.deepseek.com"
    llm_model: str = "deepseek-chat"
    llm_temperature: float = 0.7
    llm_system_prompt: str = (
        "You are a helpful assistant. The conversation below is one branch of a "
        "larger tree of messages; answer the last user message in that context."
    )
    response_timeout_seconds: float = 120.0

    # Authentication Configuration
    secret_key: str = "your-secret-key-change-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30
    jwt_public_key: str | None = None  # PEM key of the identity provider (RS256)
    jwt_issuer: str | None = None
    jwt_audience: str | None = None
    api_key_prefix: str = "bk_"  # marks API keys sent as bearer credentials

    # Database Configuration
    database_url: str = "sqlite:///./branched.db"

    # Conversation Tree Configuration
    max_message_length: int = 10000
    max_context_nodes: int = 50  # 0 keeps the whole ancestor path
    session_title_length: int = 60
    session_lock_timeout_seconds: float = 10.0

    # Event Stream Configuration
    event_queue_size: int = 100
    event_ping_interval: float = 15.0

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
