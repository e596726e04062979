"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    AI queue job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed, attempts + 1)
    - PROCESSING -> PROCESSING (lease expired, reclaimed, attempts + 1)
    - PROCESSING -> COMPLETED (success)
    - PROCESSING -> FAILED (execution failure)
    - PENDING -> CANCELLED (cancelled before claim)
    - FAILED -> PENDING (manual retry)
    - PENDING/PROCESSING -> DEAD_LETTER (retries exhausted, supervisor only)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    DEAD_LETTER = "dead_letter"


class RequestType(StrEnum):
    """Kinds of AI generation work accepted by the queue."""

    POST_GENERATION = "post_generation"
    NEWSLETTER_INTRO = "newsletter_intro"
    CONTENT_SUMMARY = "content_summary"


# States that carry a processed_at timestamp
RESOLVED_STATUSES: frozenset[JobStatus] = frozenset(
    {
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
        JobStatus.DEAD_LETTER,
    }
)

# Jobs in these states never block a resubmission with the same idempotency key
IDEMPOTENCY_IGNORED_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.FAILED, JobStatus.DEAD_LETTER, JobStatus.CANCELLED}
)

# Default values
DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_CEILING = 10
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# input_data fields with meaning to the queue and its handlers
IDEMPOTENCY_KEY_FIELD = "idempotencyKey"
PROMPT_FIELD = "prompt"
SYSTEM_FIELD = "system"

# Error messages written to error_message
CANCELLED_MESSAGE = "Cancelled by user"
DEAD_LETTER_MESSAGE = "Retry budget exhausted"
MISSING_PROMPT_MESSAGE = "Missing required prompt in inputData"

# Metrics names
METRIC_QUEUE_DEPTH = "ai_queue_jobs"
METRIC_JOBS_CLAIMED = "ai_queue_jobs_claimed_total"
METRIC_JOBS_RESOLVED = "ai_queue_jobs_resolved_total"
METRIC_JOB_DURATION = "ai_queue_job_duration_seconds"
METRIC_LEASE_EXTENDED = "ai_queue_lease_extended_total"
METRIC_LEASE_LOST = "ai_queue_lease_lost_total"
METRIC_DEAD_LETTERED = "ai_queue_dead_lettered_total"
METRIC_JOBS_PURGED = "ai_queue_jobs_purged_total"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_SUPERVISOR_SWEEP = "supervisor_sweep"
