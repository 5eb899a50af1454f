import logging

from fastapi import APIRouter, BackgroundTasks, Depends, status

from branched.config import get_settings
from branched.core.deps import (
    get_current_user_id,
    get_response_worker,
    get_tree_engine,
    track_usage,
)
from branched.core.errors import ValidationError
from branched.schemas.session import BranchCreate, MessageCreate, TreeNodeResponse
from branched.services.events import NodeEventBus, get_event_bus, node_event
from branched.services.response_worker import ResponseWorker, schedule_response
from branched.services.tree_engine import TreeEngine

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(
    prefix=f"{settings.api_prefix}/sessions/{{session_id}}/branches",
    tags=["context-tree"],
    dependencies=[Depends(track_usage)],
)


def _start_node(
    engine: TreeEngine,
    worker: ResponseWorker | None,
    event_bus: NodeEventBus,
    background_tasks: BackgroundTasks,
    user_id: str,
    session_id: str,
    parent_id: str | None,
    user_message: str,
    is_new_branch: bool,
) -> TreeNodeResponse:
    """Insert a pending node, queue its response and announce it."""
    node = engine.create_branch(user_id, session_id, parent_id, user_message, is_new_branch)
    schedule_response(background_tasks, worker, engine, node)
    event_bus.publish(session_id, node_event("node_created", node))
    return TreeNodeResponse.model_validate(node)


@router.post("", response_model=TreeNodeResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    session_id: str,
    branch_create: BranchCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    engine: TreeEngine = Depends(get_tree_engine),
    worker: ResponseWorker | None = Depends(get_response_worker),
    event_bus: NodeEventBus = Depends(get_event_bus)
):
    """Create a node under ``parent_id`` (or a new root) and return it pending.

    The response is generated in a background task; poll the session or
    listen on the event stream to see it arrive.
    """
    return _start_node(
        engine, worker, event_bus, background_tasks,
        user_id, session_id,
        branch_create.parent_id, branch_create.user_message, branch_create.is_new_branch,
    )


@router.post(
    "/{branch_id}/msgs", response_model=TreeNodeResponse, status_code=status.HTTP_201_CREATED
)
async def send_message(
    session_id: str,
    branch_id: str,
    message_create: MessageCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    engine: TreeEngine = Depends(get_tree_engine),
    worker: ResponseWorker | None = Depends(get_response_worker),
    event_bus: NodeEventBus = Depends(get_event_bus)
):
    """Reply to node ``branch_id``: the new node becomes its child."""
    if message_create.parent_id is not None and message_create.parent_id != branch_id:
        raise ValidationError("parent_id does not match the branch in the path")

    return _start_node(
        engine, worker, event_bus, background_tasks,
        user_id, session_id,
        branch_id, message_create.user_message, False,
    )


@router.delete("/{branch_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_branch(
    session_id: str,
    branch_id: str,
    user_id: str = Depends(get_current_user_id),
    engine: TreeEngine = Depends(get_tree_engine),
    event_bus: NodeEventBus = Depends(get_event_bus)
):
    """Delete a node and its entire subtree."""
    removed = engine.delete_branch(user_id, session_id, branch_id)
    event_bus.publish(session_id, {
        "event": "node_deleted",
        "id": f"node_deleted_{branch_id}",
        "data": {"chat_session_id": session_id, "node_ids": removed},
    })
