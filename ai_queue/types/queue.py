"""
Queue request and response type definitions.
"""

import math
from datetime import datetime
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ai_queue.constants import (
    DEFAULT_PAGE_SIZE,
    MAX_ATTEMPTS_CEILING,
    MAX_PAGE_SIZE,
    JobStatus,
    RequestType,
)

SortField = Literal["created_at", "processed_at", "status"]
SortOrder = Literal["asc", "desc"]


class CreateJobRequest(BaseModel):
    """Producer request for a new job."""

    user_id: str | None = Field(default=None, description="Originating user")
    request_type: RequestType = Field(..., description="Kind of generation work")
    input_data: dict[str, Any] = Field(..., description="Handler payload")
    max_attempts: int | None = Field(
        default=None,
        ge=1,
        le=MAX_ATTEMPTS_CEILING,
        description="Claim ceiling; settings default when omitted",
    )


class JobRecord(BaseModel):
    """Full job details."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    user_id: str | None
    request_type: RequestType
    input_data: dict[str, Any]
    status: JobStatus
    result: dict[str, Any] | None
    error_message: str | None
    attempts: int
    max_attempts: int
    locked_at: datetime | None
    locked_by: str | None
    lease_expires_at: datetime | None
    created_at: datetime
    processed_at: datetime | None


class ListJobsParams(BaseModel):
    """Filters, sort and pagination for listing jobs."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    status: JobStatus | None = None
    request_type: RequestType | None = None
    user_id: str | None = None
    sort_by: SortField = "created_at"
    sort_order: SortOrder = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class Pagination(BaseModel):
    """Pagination metadata."""

    page: int
    limit: int
    total: int
    total_pages: int

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        )


class JobPage(BaseModel):
    """Paginated list of jobs."""

    jobs: list[JobRecord]
    pagination: Pagination


class JobStats(BaseModel):
    """Job counts per status."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    dead_letter: int = 0
    total: int = 0

    @classmethod
    def from_counts(cls, counts: dict[str, int]) -> "JobStats":
        """Build stats from a status -> count mapping, zero-filling gaps."""
        per_status = {status.value: counts.get(status.value, 0) for status in JobStatus}
        return cls(**per_status, total=sum(per_status.values()))
