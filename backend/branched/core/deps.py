import logging
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from branched.config import get_settings
from branched.core.errors import UnauthenticatedError, WorkerUnavailableError
from branched.core.security import decode_access_token
from branched.database import get_db
from branched.services.ai_service import get_ai_service
from branched.services.api_key_service import ApiKeyService
from branched.services.events import get_event_bus
from branched.services.response_worker import ResponseWorker
from branched.services.session_store import SessionStore
from branched.services.tree_engine import TreeEngine
from branched.services.usage_service import UsageService

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    api_key: Optional[str] = Depends(api_key_header),
    db: Session = Depends(get_db),
) -> str:
    """Get the id of the authenticated user.

    Accepts an API key (``X-API-Key`` header, or a bearer credential with the
    key prefix) or a JWT bearer token whose ``sub`` claim is the user id.
    """
    if api_key is None and credentials is not None and ApiKeyService.is_api_key(credentials.credentials):
        api_key = credentials.credentials

    if api_key is not None:
        user_id = ApiKeyService.authenticate(db, api_key)
        if user_id is None:
            raise UnauthenticatedError("Invalid API key")
        return user_id

    if credentials is None:
        raise UnauthenticatedError("Not authenticated")

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise UnauthenticatedError("Invalid authentication credentials")

    user_id = payload.get("sub")
    if not user_id:
        raise UnauthenticatedError("Invalid authentication credentials")

    return str(user_id)


def _route_template(request: Request) -> str:
    """Route path with placeholders, so usage groups by endpoint rather than by id."""
    route = request.scope.get("route")
    if route is not None and getattr(route, "path", None):
        return route.path

    segments = request.url.path.split("/")
    for name, value in request.path_params.items():
        segments = [f"{{{name}}}" if segment == str(value) else segment for segment in segments]
    return "/".join(segments)


def track_usage(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
) -> None:
    """Record the current request for the usage report."""
    UsageService.record_request(db, user_id, request.method, _route_template(request))


def get_tree_engine(db: Session = Depends(get_db)) -> TreeEngine:
    return TreeEngine(db)


def get_session_store(db: Session = Depends(get_db)) -> SessionStore:
    return SessionStore(db)


def get_response_worker() -> ResponseWorker | None:
    """Worker for new nodes, or None when the LLM is not configured."""
    try:
        ai_service = get_ai_service()
    except WorkerUnavailableError as e:
        logger.warning(f"Response generation unavailable: {e.detail}")
        return None

    return ResponseWorker(
        ai_service,
        event_bus=get_event_bus(),
        timeout=get_settings().response_timeout_seconds,
    )
