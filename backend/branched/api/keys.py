from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from branched.config import get_settings
from branched.core.deps import get_current_user_id, track_usage
from branched.database import get_db
from branched.schemas.api_key import ApiKeyCreated, ApiKeyResponse
from branched.services.api_key_service import ApiKeyService

settings = get_settings()

router = APIRouter(
    prefix=f"{settings.api_prefix}/keys",
    tags=["api-keys"],
    dependencies=[Depends(track_usage)],
)


@router.get("", response_model=list[ApiKeyResponse])
@router.get("/", response_model=list[ApiKeyResponse])
async def list_keys(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """List the current user's API keys, revoked ones included."""
    return ApiKeyService.list_keys(db, user_id)


@router.post("/generate", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
async def generate_key(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Generate an API key. The full key is only ever returned here."""
    api_key, raw_key = ApiKeyService.generate(db, user_id)
    return ApiKeyCreated(
        id=api_key.id,
        created_at=api_key.created_at,
        last_used_at=api_key.last_used_at,
        is_active=api_key.is_active,
        api_key=raw_key,
    )


@router.delete("/{key_id}", response_model=ApiKeyResponse)
async def deactivate_key(
    key_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """Deactivate an API key. It stays listed as inactive."""
    return ApiKeyService.deactivate(db, user_id, key_id)
