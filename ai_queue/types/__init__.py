"""
Type definitions for the AI queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from ai_queue.types.job import (
    JobContext,
    JobResult,
    LeaseInfo,
    ProcessingOutcome,
    SupervisorReport,
)
from ai_queue.types.queue import (
    CreateJobRequest,
    JobPage,
    JobRecord,
    JobStats,
    ListJobsParams,
    Pagination,
)

__all__ = [
    # Queue types
    "CreateJobRequest",
    "JobRecord",
    "JobPage",
    "JobStats",
    "ListJobsParams",
    "Pagination",
    # Job types
    "JobContext",
    "JobResult",
    "LeaseInfo",
    "ProcessingOutcome",
    "SupervisorReport",
]
