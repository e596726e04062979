"""
Worker process for executing AI queue jobs.

The worker polls the queue, claims jobs atomically, runs the registered
handler for each, keeps leases alive while handlers run, and reports the
outcome. Any number of worker processes may share one database.
"""

import asyncio
import logging
import os
import signal
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress
from datetime import UTC, datetime, timedelta
from uuid import UUID

from ai_queue.config import Settings, get_settings
from ai_queue.constants import SPAN_CLAIM_JOB, SPAN_EXECUTE_JOB
from ai_queue.db import AiQueueJob, Database, JobRepository
from ai_queue.observability.logging import bind_context, setup_logging
from ai_queue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    start_metrics_server,
)
from ai_queue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from ai_queue.types.job import JobContext, JobResult, LeaseInfo, ProcessingOutcome
from ai_queue.worker.handlers import JobHandler, execute_job

logger = logging.getLogger(__name__)


class Worker:
    """
    Job worker that polls for and executes jobs.

    Features:
    - Atomic claims using FOR UPDATE SKIP LOCKED
    - Heartbeat to extend leases for long-running jobs
    - Ownership-guarded outcome reporting
    - Exponential backoff while the database is unavailable
    - Graceful shutdown on SIGTERM/SIGINT
    """

    def __init__(
        self,
        database: Database,
        settings: Settings | None = None,
        worker_id: str | None = None,
        concurrency: int | None = None,
        poll_interval: float | None = None,
        lease_seconds: float | None = None,
        executor: JobHandler = execute_job,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the worker.

        Args:
            database: Database handle shared by the process.
            settings: Application settings. Uses cached settings if omitted.
            worker_id: Unique worker identifier. Defaults to hostname + PID.
            concurrency: Maximum jobs executed at once.
            poll_interval: Seconds between polls when the queue is empty.
            lease_seconds: Lease length requested on claim and renewal.
            executor: Coroutine that runs a job. Defaults to handler dispatch.
            metrics: Metrics collector. Uses the process collector if omitted.
        """
        self._database = database
        self._settings = settings or get_settings()

        self.worker_id = (
            worker_id
            or self._settings.worker_id
            or f"{os.uname().nodename}-{os.getpid()}"
        )
        self.concurrency = concurrency or self._settings.worker_concurrency
        self.poll_interval = poll_interval or self._settings.worker_poll_interval_seconds
        self.lease_seconds = lease_seconds or self._settings.worker_lease_duration_seconds
        self.heartbeat_interval = self._settings.worker_heartbeat_interval_seconds
        self.max_backoff = self._settings.worker_max_backoff_seconds

        self._executor = executor
        self._metrics = metrics or get_metrics()
        self._running = False
        self._stop_event = asyncio.Event()
        self._leases: dict[UUID, LeaseInfo] = {}

    @property
    def is_running(self) -> bool:
        """Check if the polling loop is active."""
        return self._running

    @property
    def in_flight(self) -> int:
        """Number of jobs currently executing."""
        return len(self._leases)

    async def start(self) -> None:
        """Run the polling loop until `stop()` is called."""
        if not self._settings.worker_enabled:
            logger.info("AI queue worker is disabled (WORKER_ENABLED=false)")
            return

        if self._running:
            logger.warning("AI queue worker is already running")
            return

        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "concurrency": self.concurrency,
                "poll_interval": self.poll_interval,
            },
        )

        self._running = True
        self._stop_event.clear()
        bind_context(worker_id=self.worker_id)
        backoff = self.poll_interval

        async with self._heartbeat():
            while self._running:
                try:
                    jobs_processed = await self._poll_and_execute()
                    backoff = self.poll_interval

                    # If no jobs were processed, wait before polling again
                    if jobs_processed == 0:
                        await self._sleep(self.poll_interval)

                except Exception as e:
                    logger.exception(
                        f"Error in worker loop: {e}",
                        extra={"worker_id": self.worker_id, "retry_in": backoff},
                    )
                    await self._sleep(backoff)
                    backoff = min(backoff * 2, self.max_backoff)

        logger.info("Worker stopped", extra={"worker_id": self.worker_id})

    async def stop(self) -> None:
        """
        Stop the worker gracefully.

        Jobs already claimed run to completion before `start()` returns.
        """
        if not self._running:
            return
        logger.info("Worker stopping", extra={"worker_id": self.worker_id})
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> ProcessingOutcome:
        """
        Claim and process a single job, outside the polling loop.

        Returns:
            Whether a job was processed, which one, and any error.
        """
        try:
            jobs = await self._claim_batch(limit=1)
        except Exception as e:
            logger.exception("Error during manual trigger processing")
            return ProcessingOutcome(processed=False, error=str(e))

        if not jobs:
            return ProcessingOutcome(processed=False)

        async with self._heartbeat():
            return await self._execute_job(jobs[0])

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early if the worker is stopped."""
        with suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)

    async def _poll_and_execute(self) -> int:
        """
        Poll for jobs and execute them.

        Returns:
            Number of jobs processed.
        """
        jobs = await self._claim_batch(limit=self.concurrency)

        if not jobs:
            return 0

        await asyncio.gather(
            *(self._execute_job(job) for job in jobs),
            return_exceptions=True,
        )

        return len(jobs)

    async def _claim_batch(self, limit: int) -> list[AiQueueJob]:
        """
        Claim up to `limit` jobs in one short transaction.

        Args:
            limit: Maximum number of jobs to claim.

        Returns:
            The claimed jobs, oldest first.
        """
        jobs: list[AiQueueJob] = []

        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)

            async with self._database.session() as session:
                repo = JobRepository(session, self._settings)

                for _ in range(limit):
                    job = await repo.claim_next(self.worker_id, self.lease_seconds)
                    if job is None:
                        break
                    jobs.append(job)

            span.set_attribute("job_count", len(jobs))

        if jobs:
            self._metrics.record_jobs_claimed(self.worker_id, len(jobs))

        return jobs

    async def _execute_job(self, job: AiQueueJob) -> ProcessingOutcome:
        """
        Execute a single claimed job and report its outcome.

        Args:
            job: The claimed job.

        Returns:
            The processing outcome.
        """
        start_time = time.monotonic()
        job_id = job.id

        self._leases[job_id] = LeaseInfo(
            job_id=job_id,
            lease_owner=self.worker_id,
            lease_expires_at=job.lease_expires_at,
            acquired_at=job.locked_at or datetime.now(UTC),
        )

        context = JobContext(
            job_id=job_id,
            user_id=job.user_id,
            request_type=job.request_type,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            input_data=job.input_data,
            lease_owner=self.worker_id,
            lease_expires_at=job.lease_expires_at,
        )

        logger.info(
            "Processing AI queue job",
            extra={
                "job_id": str(job_id),
                "request_type": job.request_type.value,
                "attempt": context.attempt,
                "max_attempts": context.max_attempts,
            },
        )

        try:
            with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                span.set_attribute("job_id", str(job_id))
                span.set_attribute("request_type", job.request_type.value)
                span.set_attribute("attempt", context.attempt)

                result = await self._executor(context)

            await self._report(job, result, time.monotonic() - start_time)
            return ProcessingOutcome(processed=True, job_id=job_id)

        except Exception as e:
            logger.exception(
                "Exception executing job",
                extra={"job_id": str(job_id), "error": str(e)},
            )

            try:
                async with self._database.session() as session:
                    repo = JobRepository(session, self._settings)
                    await repo.fail_job(
                        job_id=job_id,
                        error_message=f"Worker exception: {e}",
                        worker_id=self.worker_id,
                    )
            except Exception:
                logger.exception("Failed to mark job as failed")

            return ProcessingOutcome(processed=False, job_id=job_id, error=str(e))

        finally:
            self._leases.pop(job_id, None)

    async def _report(self, job: AiQueueJob, result: JobResult, duration: float) -> None:
        """
        Write the handler result back, guarded by our ownership of the job.

        Args:
            job: The claimed job.
            result: The handler result.
            duration: Execution time in seconds.
        """
        async with self._database.session() as session:
            repo = JobRepository(session, self._settings)

            if result.success:
                resolved = await repo.complete_job(
                    job_id=job.id,
                    result=result.output,
                    worker_id=self.worker_id,
                )
            else:
                resolved = await repo.fail_job(
                    job_id=job.id,
                    error_message=result.error_message,
                    result=result.output,
                    worker_id=self.worker_id,
                )

        if resolved is None:
            lease = self._leases.get(job.id)
            logger.warning(
                "Lease lost before outcome was recorded, result discarded",
                extra={
                    "job_id": str(job.id),
                    "worker_id": self.worker_id,
                    "lease_expired": lease is None or lease.is_expired,
                },
            )
            self._metrics.record_lease_lost(self.worker_id)
            return

        logger.info(
            "Job resolved",
            extra={
                "job_id": str(job.id),
                "status": resolved.status.value,
                "duration": f"{duration:.2f}s",
            },
        )
        self._metrics.record_job_resolved(
            request_type=job.request_type.value,
            status=resolved.status.value,
            duration_seconds=duration,
        )

    @asynccontextmanager
    async def _heartbeat(self) -> AsyncIterator[None]:
        """Keep leases of in-flight jobs alive for the duration of the block."""
        task = asyncio.create_task(self._heartbeat_loop())
        try:
            yield
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _heartbeat_loop(self) -> None:
        """
        Periodically extend leases on running jobs.

        This prevents jobs from becoming claimable by other workers
        while they're still being executed.
        """
        while True:
            try:
                await asyncio.sleep(self.heartbeat_interval)
                await self.extend_leases()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"Error in heartbeat loop: {e}")

    async def extend_leases(self) -> int:
        """
        Extend the lease of every in-flight job once.

        Jobs whose lease could not be extended are no longer ours; they are
        dropped from the heartbeat and their outcome will be rejected. A job
        that finished while the renewal was in flight is simply skipped.

        Returns:
            Number of leases extended.
        """
        if not self._leases:
            return 0

        extended = 0
        async with self._database.session() as session:
            repo = JobRepository(session, self._settings)

            for job_id, lease in list(self._leases.items()):
                if lease.is_expired:
                    logger.warning(
                        "Lease expired before heartbeat, job may be reclaimed",
                        extra={"job_id": str(job_id), "worker_id": self.worker_id},
                    )

                if await repo.extend_lease(job_id, self.worker_id, self.lease_seconds):
                    extended += 1
                    lease.lease_expires_at = datetime.now(UTC) + timedelta(seconds=self.lease_seconds)
                    self._metrics.record_lease_extended(self.worker_id)
                    logger.debug(
                        "Extended lease",
                        extra={
                            "job_id": str(job_id),
                            "time_remaining": f"{lease.time_remaining_seconds:.0f}s",
                        },
                    )
                elif self._leases.pop(job_id, None) is None:
                    # Already reported and released by _execute_job
                    logger.debug(
                        "Job resolved before lease extension",
                        extra={"job_id": str(job_id)},
                    )
                else:
                    held_for = (datetime.now(UTC) - lease.acquired_at).total_seconds()
                    logger.warning(
                        "Lost lease on job",
                        extra={
                            "job_id": str(job_id),
                            "worker_id": self.worker_id,
                            "held_for": f"{held_for:.1f}s",
                        },
                    )

        return extended


async def run_async() -> None:
    """Run the worker asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    setup_tracing(settings)

    database = Database.from_settings(settings)
    if settings.otel_enabled:
        instrument_sqlalchemy(database.engine)
    start_metrics_server(settings.prometheus_port)

    worker = Worker(database, settings)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(worker.stop())
        )

    try:
        await worker.start()
    finally:
        await database.dispose()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
