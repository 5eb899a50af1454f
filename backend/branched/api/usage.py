from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from branched.config import get_settings
from branched.core.deps import get_current_user_id, track_usage
from branched.database import get_db
from branched.schemas.usage import UsageResponse
from branched.services.usage_service import UsageService

settings = get_settings()

router = APIRouter(
    prefix=settings.api_prefix,
    tags=["usage"],
    dependencies=[Depends(track_usage)],
)


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    start_date: date | None = Query(None, description="First day, defaults to 7 days ago"),
    end_date: date | None = Query(None, description="Last day (inclusive), defaults to today"),
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db)
):
    """API usage of the current user grouped by endpoint and method."""
    today = datetime.now(timezone.utc).date()
    end_date = end_date or today
    start_date = start_date or end_date - timedelta(days=7)
    return UsageService.summarize(db, user_id, start_date, end_date)
