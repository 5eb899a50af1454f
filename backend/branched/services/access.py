from sqlalchemy.orm import Session

from branched.core.errors import NotFoundOrForbiddenError
from branched.models.chat_session import ChatSession


def ensure_session_access(db: Session, user_id: str, session_id: str) -> ChatSession:
    """Return the session if ``user_id`` owns it.

    A missing session and a session owned by someone else raise the same
    error, so the caller learns nothing about ids it does not own.
    """
    session = db.query(ChatSession).filter(
        ChatSession.id == session_id,
        ChatSession.user_id == user_id
    ).first()

    if not session:
        raise NotFoundOrForbiddenError("Session not found")

    return session
