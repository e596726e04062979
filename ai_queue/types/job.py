"""
Job-related type definitions for internal use.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel

from ai_queue.constants import PROMPT_FIELD, SYSTEM_FIELD, RequestType


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    error_code: str | None = None

    @property
    def error_message(self) -> str:
        """Failure reason as stored on the job."""
        message = self.error or "Unknown error"
        if self.error_code:
            return f"{self.error_code}: {message}"
        return message


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains job metadata and utilities for the handler.
    """

    job_id: UUID
    user_id: str | None
    request_type: RequestType
    attempt: int
    max_attempts: int
    input_data: dict[str, Any]
    lease_owner: str
    lease_expires_at: datetime

    @property
    def prompt(self) -> str | None:
        """The user prompt for the generation, if present."""
        return self.input_data.get(PROMPT_FIELD) or None

    @property
    def system_prompt(self) -> str | None:
        """Optional system instructions for the generation."""
        return self.input_data.get(SYSTEM_FIELD) or None

    @property
    def is_last_attempt(self) -> bool:
        """Check if this is the last claim the job will get."""
        return self.attempt >= self.max_attempts

    @property
    def remaining_attempts(self) -> int:
        """Get remaining claim attempts."""
        return max(0, self.max_attempts - self.attempt)


@dataclass
class LeaseInfo:
    """
    Information about a job lease.
    Used by workers to track their in-flight jobs.
    """

    job_id: UUID
    lease_owner: str
    lease_expires_at: datetime
    acquired_at: datetime

    @property
    def is_expired(self) -> bool:
        """Check if the lease has expired."""
        return datetime.now(UTC) > self.lease_expires_at

    @property
    def time_remaining_seconds(self) -> float:
        """Get remaining time on the lease in seconds."""
        remaining = (self.lease_expires_at - datetime.now(UTC)).total_seconds()
        return max(0.0, remaining)


@dataclass
class ProcessingOutcome:
    """What happened to a single worker pass over the queue."""

    processed: bool
    job_id: UUID | None = None
    error: str | None = None


@dataclass
class SupervisorReport:
    """Counts from one supervisor sweep."""

    dead_lettered: int = 0
    purged: int = 0
