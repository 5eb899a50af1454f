import asyncio
import logging
import time

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.orm import Session

from branched.config import get_settings
from branched.core.deps import (
    get_current_user_id,
    get_response_worker,
    get_session_store,
    track_usage,
)
from branched.core.errors import ValidationError
from branched.database import get_db
from branched.models.tree_node import NodeStatus, TreeNode
from branched.schemas.session import ChatSessionCreate, ChatSessionResponse, ChatSessionUpdate
from branched.services.access import ensure_session_access
from branched.services.events import NodeEventBus, get_event_bus
from branched.services.response_worker import ResponseWorker, schedule_response
from branched.services.session_store import SessionStore
from branched.utils.sse import stream_sse

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(
    prefix=f"{settings.api_prefix}/sessions",
    tags=["context-tree"],
    dependencies=[Depends(track_usage)],
)


@router.get("", response_model=list[ChatSessionResponse])
@router.get("/user/", response_model=list[ChatSessionResponse])
async def list_sessions(
    user_id: str = Depends(get_current_user_id),
    store: SessionStore = Depends(get_session_store)
):
    """List all sessions of the current user, each with its node tree."""
    sessions = store.list_sessions(user_id)
    return store.serialize_all(sessions)


@router.post("", response_model=ChatSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    session_create: ChatSessionCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    store: SessionStore = Depends(get_session_store),
    worker: ResponseWorker | None = Depends(get_response_worker)
):
    """Create a session from its first message. The root node comes back pending."""
    session, root = store.create_session(
        user_id, session_create.initial_message, session_create.title
    )
    schedule_response(background_tasks, worker, store.engine, root)
    return store.serialize(session)


@router.get("/{session_id}", response_model=ChatSessionResponse)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    store: SessionStore = Depends(get_session_store)
):
    """Get a session by ID with its full node tree."""
    session = store.get_session(user_id, session_id)
    return store.serialize(session)


@router.put("/{session_id}", response_model=ChatSessionResponse)
async def update_session(
    session_id: str,
    session_update: ChatSessionUpdate,
    user_id: str = Depends(get_current_user_id),
    store: SessionStore = Depends(get_session_store)
):
    """Rename a session."""
    if session_update.title is None or not session_update.title.strip():
        raise ValidationError("Title must not be empty")

    session = store.rename_session(user_id, session_id, session_update.title)
    return store.serialize(session)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    store: SessionStore = Depends(get_session_store),
    event_bus: NodeEventBus = Depends(get_event_bus)
):
    """Delete a session and all of its nodes."""
    store.delete_session(user_id, session_id)
    event_bus.publish(session_id, {
        "event": "session_deleted",
        "data": {"chat_session_id": session_id},
    })


@router.get("/{session_id}/events")
async def stream_node_events(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
    event_bus: NodeEventBus = Depends(get_event_bus)
):
    """SSE stream of node events of a session.

    Only events published after the connection opens are sent, preceded by
    a ``sync`` event listing the nodes still pending. Polling
    ``GET /sessions/{id}`` remains the source of truth.
    """
    ensure_session_access(db, user_id, session_id)

    # subscribed before the query, so a node settling in between is not lost
    queue = event_bus.subscribe(session_id)
    pending_ids = [
        node_id for (node_id,) in db.query(TreeNode.id).filter(
            TreeNode.chat_session_id == session_id,
            TreeNode.status == NodeStatus.PENDING
        ).order_by(TreeNode.sequence.asc()).all()
    ]

    async def event_generator():
        ping_counter = 0
        try:
            yield {
                "event": "sync",
                "data": {"chat_session_id": session_id, "pending_node_ids": pending_ids},
            }

            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=settings.event_ping_interval)
                except asyncio.TimeoutError:
                    # heartbeat keeps proxies from closing an idle stream
                    ping_counter += 1
                    yield {
                        "event": "ping",
                        "data": {"ping": ping_counter, "timestamp": time.time()},
                        "id": f"ping_{ping_counter}",
                    }
                    continue

                yield event
                if event.get("event") == "session_deleted":
                    break
        finally:
            event_bus.unsubscribe(session_id, queue)
            logger.info(f"[SSE] Stream closed for session {session_id}")

    return await stream_sse(event_generator())
