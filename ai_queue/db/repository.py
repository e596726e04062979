"""
Job repository for database operations.
Implements the core data access patterns for the AI queue.

Every state change is a single conditional UPDATE scoped to one row (or,
for the supervisor, to the rows matching its predicate). Callers own the
transaction and commit.
"""

import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, delete, func, insert, or_, select, type_coerce, update
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased
from sqlalchemy.sql.elements import ColumnElement

from ai_queue.config import Settings, get_settings
from ai_queue.constants import (
    CANCELLED_MESSAGE,
    DEAD_LETTER_MESSAGE,
    IDEMPOTENCY_IGNORED_STATUSES,
    IDEMPOTENCY_KEY_FIELD,
    RESOLVED_STATUSES,
    JobStatus,
    RequestType,
)
from ai_queue.db.models import AiQueueJob
from ai_queue.types.queue import (
    CreateJobRequest,
    JobPage,
    JobRecord,
    JobStats,
    ListJobsParams,
    Pagination,
)

logger = logging.getLogger(__name__)

# Cleared whenever a job stops being processed
_RELEASED_OWNERSHIP: dict[str, Any] = {
    "locked_at": None,
    "locked_by": None,
    "lease_expires_at": None,
}

_SORT_COLUMNS = {
    "created_at": AiQueueJob.created_at,
    "processed_at": AiQueueJob.processed_at,
    "status": AiQueueJob.status,
}


class JobRepository:
    """
    Repository for AI queue job operations.

    Implements atomic operations for:
    - Job submission with idempotency-key deduplication
    - Claiming with FOR UPDATE SKIP LOCKED
    - Lease extension guarded by ownership
    - Outcome reporting and manual retry/cancel
    - Introspection and supervision
    """

    def __init__(self, session: AsyncSession, settings: Settings | None = None):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
            settings: Application settings. Uses cached settings if omitted.
        """
        self._session = session
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Producer
    # ------------------------------------------------------------------

    async def create_job(
        self,
        request_type: RequestType,
        input_data: dict[str, Any],
        user_id: str | None = None,
        max_attempts: int | None = None,
    ) -> AiQueueJob:
        """
        Insert a new pending job. Performs no deduplication.

        Args:
            request_type: The kind of work.
            input_data: The handler payload.
            user_id: Optional originating user.
            max_attempts: Claim ceiling. Defaults to settings.

        Returns:
            The created job.

        Raises:
            ValueError: If max_attempts is below 1.
        """
        if max_attempts is None:
            max_attempts = self._settings.default_max_attempts
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1, got {max_attempts}")

        stmt = (
            insert(AiQueueJob)
            .values(
                user_id=user_id,
                request_type=request_type,
                input_data=input_data,
                max_attempts=max_attempts,
                status=JobStatus.PENDING,
                attempts=0,
            )
            .returning(AiQueueJob)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one()

        logger.info(
            "Created AI queue job",
            extra={
                "job_id": str(job.id),
                "request_type": job.request_type.value,
                "user_id": user_id,
            },
        )
        return job

    async def submit_job(
        self,
        request_type: RequestType,
        input_data: dict[str, Any],
        user_id: str | None = None,
        max_attempts: int | None = None,
    ) -> tuple[AiQueueJob, bool]:
        """
        Create a job unless a live job with the same idempotency key exists.

        Submissions of the same (user, request type, key) are serialized by a
        transaction-scoped advisory lock, so the lookup and the insert cannot
        interleave with a concurrent submission. The lock is released when the
        caller's transaction ends.

        Args:
            request_type: The kind of work.
            input_data: The handler payload, optionally holding idempotencyKey.
            user_id: Optional originating user.
            max_attempts: Claim ceiling. Defaults to settings.

        Returns:
            Tuple of (job, created) where created is False for a duplicate.
        """
        key = input_data.get(IDEMPOTENCY_KEY_FIELD)

        if key is not None:
            # Keys are matched as JSON values, so true and "true" stay distinct
            encoded = json.dumps(key, sort_keys=True)
            lock_name = f"ai_queue:{user_id or ''}:{request_type.value}:{encoded}"
            await self._session.execute(
                select(func.pg_advisory_xact_lock(func.hashtext(lock_name)))
            )

            existing = await self.find_by_idempotency_key(user_id, request_type, key)
            if existing is not None:
                logger.info(
                    "Returned existing job (idempotent)",
                    extra={
                        "job_id": str(existing.id),
                        "status": existing.status.value,
                        "user_id": user_id,
                    },
                )
                return existing, False

        job = await self.create_job(
            request_type=request_type,
            input_data=input_data,
            user_id=user_id,
            max_attempts=max_attempts,
        )
        return job, True

    async def submit_request(self, request: CreateJobRequest) -> tuple[AiQueueJob, bool]:
        """Submit a validated producer request. See `submit_job`."""
        return await self.submit_job(
            request_type=request.request_type,
            input_data=request.input_data,
            user_id=request.user_id,
            max_attempts=request.max_attempts,
        )

    async def find_by_idempotency_key(
        self,
        user_id: str | None,
        request_type: RequestType,
        idempotency_key: Any,
    ) -> AiQueueJob | None:
        """
        Find the newest job that blocks a resubmission with this key.

        Failed, cancelled and dead-lettered jobs never block. Completed jobs
        block only when `idempotency_reuse_after_completion` is disabled.

        Args:
            user_id: The originating user (None matches anonymous jobs).
            request_type: The kind of work.
            idempotency_key: The JSON value stored in input_data.

        Returns:
            The matching Job or None.
        """
        ignored = set(IDEMPOTENCY_IGNORED_STATUSES)
        if self._settings.idempotency_reuse_after_completion:
            ignored.add(JobStatus.COMPLETED)

        user_filter = (
            AiQueueJob.user_id.is_(None)
            if user_id is None
            else AiQueueJob.user_id == user_id
        )

        stmt = (
            select(AiQueueJob)
            .where(
                and_(
                    user_filter,
                    AiQueueJob.request_type == request_type,
                    AiQueueJob.input_data[IDEMPOTENCY_KEY_FIELD]
                    == type_coerce(idempotency_key, JSONB),
                    AiQueueJob.status.not_in(sorted(ignored)),
                )
            )
            .order_by(AiQueueJob.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Claim protocol and leases
    # ------------------------------------------------------------------

    @staticmethod
    def _claimable(job, now: datetime) -> ColumnElement[bool]:
        """Rows a worker may claim at `now`."""
        return and_(
            job.attempts < job.max_attempts,
            or_(
                job.status == JobStatus.PENDING,
                and_(
                    job.status == JobStatus.PROCESSING,
                    job.lease_expires_at < now,
                ),
            ),
        )

    async def claim_next(
        self,
        worker_id: str,
        lease_seconds: float | None = None,
    ) -> AiQueueJob | None:
        """
        Atomically claim the oldest eligible job.

        This is the critical path for job distribution. Selection and locking
        happen in one statement: rows locked by a concurrent claim are skipped
        rather than waited on, so two callers can never receive the same row.

        Args:
            worker_id: The claiming worker's identifier.
            lease_seconds: Lease length. Defaults to settings.

        Returns:
            The claimed job, or None if nothing is eligible.
        """
        if lease_seconds is None:
            lease_seconds = self._settings.worker_lease_duration_seconds

        now = datetime.now(UTC)

        # Aliased so the subquery is not correlated to the UPDATE target
        queued = aliased(AiQueueJob, name="candidate")
        candidate = (
            select(queued.id)
            .where(self._claimable(queued, now))
            .order_by(queued.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(AiQueueJob)
            .where(AiQueueJob.id == candidate)
            .values(
                status=JobStatus.PROCESSING,
                attempts=AiQueueJob.attempts + 1,
                locked_by=worker_id,
                locked_at=now,
                lease_expires_at=now + timedelta(seconds=lease_seconds),
                error_message=None,
            )
            .returning(AiQueueJob)
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={
                    "job_id": str(job.id),
                    "worker_id": worker_id,
                    "attempt": job.attempts,
                    "max_attempts": job.max_attempts,
                },
            )

        return job

    async def extend_lease(
        self,
        job_id: UUID,
        worker_id: str,
        lease_seconds: float | None = None,
    ) -> bool:
        """
        Extend the lease on a job the worker still owns (heartbeat).

        Args:
            job_id: The job UUID.
            worker_id: The worker identifier.
            lease_seconds: New lease length from now. Defaults to settings.

        Returns:
            True if the lease was extended, False if ownership was lost.
        """
        if lease_seconds is None:
            lease_seconds = self._settings.worker_lease_duration_seconds

        new_expires_at = datetime.now(UTC) + timedelta(seconds=lease_seconds)

        stmt = (
            update(AiQueueJob)
            .where(
                and_(
                    AiQueueJob.id == job_id,
                    AiQueueJob.status == JobStatus.PROCESSING,
                    AiQueueJob.locked_by == worker_id,
                )
            )
            .values(lease_expires_at=new_expires_at)
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def _owned_by(self, job_id: UUID, worker_id: str | None) -> ColumnElement[bool]:
        filters = [
            AiQueueJob.id == job_id,
            AiQueueJob.status == JobStatus.PROCESSING,
        ]
        if worker_id is not None:
            filters.append(AiQueueJob.locked_by == worker_id)
        return and_(*filters)

    async def complete_job(
        self,
        job_id: UUID,
        result: dict[str, Any] | None,
        worker_id: str | None = None,
    ) -> AiQueueJob | None:
        """
        Mark a processing job as completed.

        Args:
            job_id: The job UUID.
            result: The job result data.
            worker_id: When given, the job must still be locked by this worker.

        Returns:
            Updated job, or None if the job is not processing (or not ours).
        """
        stmt = (
            update(AiQueueJob)
            .where(self._owned_by(job_id, worker_id))
            .values(
                status=JobStatus.COMPLETED,
                result=result,
                processed_at=datetime.now(UTC),
                **_RELEASED_OWNERSHIP,
            )
            .returning(AiQueueJob)
            .execution_options(synchronize_session="fetch")
        )

        result_obj = await self._session.execute(stmt)
        job = result_obj.scalar_one_or_none()

        if job:
            logger.info("Job completed successfully", extra={"job_id": str(job_id)})
        else:
            logger.warning(
                "Rejected completion for job not held by caller",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )

        return job

    async def fail_job(
        self,
        job_id: UUID,
        error_message: str,
        result: dict[str, Any] | None = None,
        worker_id: str | None = None,
    ) -> AiQueueJob | None:
        """
        Mark a processing job as failed. Never re-queues it.

        Args:
            job_id: The job UUID.
            error_message: Human readable failure reason.
            result: Optional partial result for diagnostics.
            worker_id: When given, the job must still be locked by this worker.

        Returns:
            Updated job, or None if the job is not processing (or not ours).
        """
        stmt = (
            update(AiQueueJob)
            .where(self._owned_by(job_id, worker_id))
            .values(
                status=JobStatus.FAILED,
                error_message=error_message,
                result=result,
                processed_at=datetime.now(UTC),
                **_RELEASED_OWNERSHIP,
            )
            .returning(AiQueueJob)
            .execution_options(synchronize_session="fetch")
        )

        result_obj = await self._session.execute(stmt)
        job = result_obj.scalar_one_or_none()

        if job:
            logger.warning(
                "Job failed",
                extra={
                    "job_id": str(job_id),
                    "error": error_message,
                    "attempt": job.attempts,
                },
            )
        else:
            logger.warning(
                "Rejected failure report for job not held by caller",
                extra={"job_id": str(job_id), "worker_id": worker_id},
            )

        return job

    async def reset_to_pending(self, job_id: UUID) -> AiQueueJob | None:
        """
        Manually retry a failed job.

        The attempt counter is kept, so a job that already used its budget
        stays unclaimable.

        Args:
            job_id: The job UUID.

        Returns:
            Updated job, or None if not found or not failed.
        """
        stmt = (
            update(AiQueueJob)
            .where(
                and_(
                    AiQueueJob.id == job_id,
                    AiQueueJob.status == JobStatus.FAILED,
                )
            )
            .values(
                status=JobStatus.PENDING,
                error_message=None,
                processed_at=None,
                **_RELEASED_OWNERSHIP,
            )
            .returning(AiQueueJob)
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info(
                "Job reset to pending",
                extra={
                    "job_id": str(job_id),
                    "attempts": job.attempts,
                    "max_attempts": job.max_attempts,
                },
            )

        return job

    async def cancel_job(self, job_id: UUID) -> AiQueueJob | None:
        """
        Cancel a job that has not been claimed yet.

        Args:
            job_id: The job UUID.

        Returns:
            Cancelled job, or None if not found or not pending.
        """
        stmt = (
            update(AiQueueJob)
            .where(
                and_(
                    AiQueueJob.id == job_id,
                    AiQueueJob.status == JobStatus.PENDING,
                )
            )
            .values(
                status=JobStatus.CANCELLED,
                error_message=CANCELLED_MESSAGE,
                processed_at=datetime.now(UTC),
            )
            .returning(AiQueueJob)
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job:
            logger.info("Job cancelled", extra={"job_id": str(job_id)})

        return job

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def get_job(self, job_id: UUID) -> AiQueueJob | None:
        """
        Get a job by ID.

        Args:
            job_id: The job UUID.

        Returns:
            The job or None if not found.
        """
        stmt = (
            select(AiQueueJob)
            .where(AiQueueJob.id == job_id)
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_jobs(self, params: ListJobsParams | None = None) -> JobPage:
        """
        List jobs with filtering, sorting and pagination.

        Args:
            params: Filters, sort and page. Defaults to newest first, page 1.

        Returns:
            The requested page with pagination metadata.
        """
        params = params or ListJobsParams()

        filters = []
        if params.status is not None:
            filters.append(AiQueueJob.status == params.status)
        if params.request_type is not None:
            filters.append(AiQueueJob.request_type == params.request_type)
        if params.user_id is not None:
            filters.append(AiQueueJob.user_id == params.user_id)

        count_stmt = select(func.count()).select_from(AiQueueJob)
        if filters:
            count_stmt = count_stmt.where(and_(*filters))
        count_result = await self._session.execute(count_stmt)
        total = count_result.scalar() or 0

        sort_column = _SORT_COLUMNS[params.sort_by]
        order = sort_column.asc() if params.sort_order == "asc" else sort_column.desc()

        stmt = (
            select(AiQueueJob)
            .order_by(order, AiQueueJob.created_at.desc())
            .limit(params.limit)
            .offset(params.offset)
        )
        if filters:
            stmt = stmt.where(and_(*filters))

        result = await self._session.execute(stmt)
        jobs = result.scalars().all()

        return JobPage(
            jobs=[JobRecord.model_validate(job) for job in jobs],
            pagination=Pagination.build(params.page, params.limit, total),
        )

    async def get_stats(self) -> JobStats:
        """
        Get job counts by status.

        Returns:
            Count per status plus total.
        """
        stmt = select(AiQueueJob.status, func.count()).group_by(AiQueueJob.status)
        result = await self._session.execute(stmt)
        return JobStats.from_counts(
            {status.value: count for status, count in result.all()}
        )

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def dead_letter_exhausted(self) -> int:
        """
        Move jobs that can never be claimed again to DEAD_LETTER.

        A job qualifies once its attempts reached max_attempts and it is either
        pending or processing under an expired lease. A final attempt that is
        still inside its lease is left to finish.

        Returns:
            Number of jobs dead-lettered.
        """
        now = datetime.now(UTC)

        stmt = (
            update(AiQueueJob)
            .where(
                and_(
                    AiQueueJob.attempts >= AiQueueJob.max_attempts,
                    or_(
                        AiQueueJob.status == JobStatus.PENDING,
                        and_(
                            AiQueueJob.status == JobStatus.PROCESSING,
                            AiQueueJob.lease_expires_at < now,
                        ),
                    ),
                )
            )
            .values(
                status=JobStatus.DEAD_LETTER,
                error_message=func.coalesce(
                    AiQueueJob.error_message, DEAD_LETTER_MESSAGE
                ),
                processed_at=now,
                **_RELEASED_OWNERSHIP,
            )
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(f"Moved {count} exhausted jobs to dead letter")

        return count

    async def purge_resolved(self, older_than_days: int) -> int:
        """
        Delete resolved jobs processed more than `older_than_days` ago.

        Args:
            older_than_days: Retention window in days.

        Returns:
            Number of jobs deleted.
        """
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)

        stmt = (
            delete(AiQueueJob)
            .where(
                and_(
                    AiQueueJob.status.in_(sorted(RESOLVED_STATUSES)),
                    AiQueueJob.processed_at < cutoff,
                )
            )
            .execution_options(synchronize_session="fetch")
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.info(
                f"Purged {count} resolved jobs",
                extra={"older_than_days": older_than_days},
            )

        return count
