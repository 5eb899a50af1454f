import uuid

from sqlalchemy import Boolean, Column, DateTime, String

from branched.database import Base
from branched.models.chat_session import utcnow


class ApiKey(Base):
    """Long-lived credential for programmatic access. Only a hash of the secret is stored."""

    __tablename__ = "api_keys"

    id = Column(String, primary_key=True, index=True, default=lambda: uuid.uuid4().hex)
    user_id = Column(String, nullable=False, index=True)
    key_hash = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_used_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<ApiKey(id={self.id}, user_id='{self.user_id}', is_active={self.is_active})>"
