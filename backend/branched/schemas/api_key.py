from datetime import datetime

from pydantic import BaseModel


class ApiKeyResponse(BaseModel):
    """API key as listed to its owner; the secret is never returned again."""
    id: str
    created_at: datetime
    last_used_at: datetime | None = None
    is_active: bool

    class Config:
        from_attributes = True


class ApiKeyCreated(ApiKeyResponse):
    """Freshly generated key, carrying the full secret once."""
    api_key: str
