from sqlalchemy import Column, DateTime, Integer, String

from branched.database import Base
from branched.models.chat_session import utcnow


class ApiRequest(Base):
    """One authenticated API call, kept for per-user usage reports."""

    __tablename__ = "api_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    method = Column(String(10), nullable=False)
    endpoint = Column(String, nullable=False)  # route template, e.g. /api/v1/sessions/{session_id}
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<ApiRequest(id={self.id}, user_id='{self.user_id}', {self.method} {self.endpoint})>"
