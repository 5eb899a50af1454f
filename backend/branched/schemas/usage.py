from datetime import date

from pydantic import BaseModel, Field


class EndpointStats(BaseModel):
    """Request counts of one route template, per HTTP method."""
    endpoint: str
    methods: dict[str, int] = Field(default_factory=dict)


class UsageResponse(BaseModel):
    """API usage of the current user over an inclusive date range."""
    user_id: str
    start_date: date
    end_date: date
    total_requests: int = 0
    by_endpoint: list[EndpointStats] = Field(default_factory=list)
