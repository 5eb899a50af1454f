import logging
from collections import defaultdict
from datetime import date, datetime, time, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from branched.core.errors import ValidationError
from branched.models.api_request import ApiRequest
from branched.schemas.usage import EndpointStats, UsageResponse

logger = logging.getLogger(__name__)


class UsageService:
    """Per-user API request accounting."""

    @staticmethod
    def record_request(db: Session, user_id: str, method: str, endpoint: str) -> ApiRequest:
        """Store one authenticated request."""
        request = ApiRequest(user_id=user_id, method=method.upper(), endpoint=endpoint)
        db.add(request)
        db.commit()
        return request

    @staticmethod
    def summarize(db: Session, user_id: str, start_date: date, end_date: date) -> UsageResponse:
        """Request counts per endpoint and method between two dates, both inclusive."""
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        start = datetime.combine(start_date, time.min)
        end = datetime.combine(end_date + timedelta(days=1), time.min)

        rows = db.query(
            ApiRequest.endpoint,
            ApiRequest.method,
            func.count(ApiRequest.id)
        ).filter(
            ApiRequest.user_id == user_id,
            ApiRequest.created_at >= start,
            ApiRequest.created_at < end
        ).group_by(ApiRequest.endpoint, ApiRequest.method).all()

        by_endpoint: dict[str, dict[str, int]] = defaultdict(dict)
        total = 0
        for endpoint, method, count in rows:
            by_endpoint[endpoint][method] = count
            total += count

        return UsageResponse(
            user_id=user_id,
            start_date=start_date,
            end_date=end_date,
            total_requests=total,
            by_endpoint=[
                EndpointStats(endpoint=endpoint, methods=methods)
                for endpoint, methods in sorted(by_endpoint.items())
            ],
        )
