"""
Supervisor for jobs that workers can no longer make progress on.

The claim protocol only skips jobs whose retry budget is spent; it never
changes their status. The supervisor runs as its own process and, on each
sweep:
1. Moves exhausted jobs (pending, or processing under an expired lease)
   to DEAD_LETTER
2. Deletes resolved jobs older than the retention window, if configured
3. Refreshes the per-status gauges
"""

import asyncio
import logging
import signal

from ai_queue.config import Settings, get_settings
from ai_queue.constants import SPAN_SUPERVISOR_SWEEP
from ai_queue.db import Database, JobRepository
from ai_queue.observability.logging import setup_logging
from ai_queue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    start_metrics_server,
)
from ai_queue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing
from ai_queue.types.job import SupervisorReport

logger = logging.getLogger(__name__)


class Supervisor:
    """Periodic dead-letter and retention sweeper."""

    def __init__(
        self,
        database: Database,
        settings: Settings | None = None,
        interval_seconds: int | None = None,
        metrics: MetricsCollector | None = None,
    ):
        """
        Initialize the supervisor.

        Args:
            database: Database handle shared by the process.
            settings: Application settings. Uses cached settings if omitted.
            interval_seconds: Seconds between sweeps.
            metrics: Metrics collector. Uses the process collector if omitted.
        """
        self._database = database
        self._settings = settings or get_settings()
        self.interval = interval_seconds or self._settings.supervisor_interval_seconds
        self._running = False
        self._stop_event = asyncio.Event()
        self._metrics = metrics or get_metrics()

    async def start(self) -> None:
        """Start the supervisor loop."""
        logger.info(
            f"Supervisor starting with interval {self.interval}s",
            extra={
                "dead_letter_enabled": self._settings.supervisor_dead_letter_enabled,
                "retention_days": self._settings.retention_days,
            },
        )
        self._running = True
        self._stop_event.clear()

        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Error in supervisor loop: {e}")

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Supervisor stopped")

    async def stop(self) -> None:
        """Stop the supervisor."""
        logger.info("Supervisor stopping")
        self._running = False
        self._stop_event.set()

    async def run_once(self) -> SupervisorReport:
        """
        Run one sweep (for testing or cron-style execution).

        Returns:
            Counts of dead-lettered and purged jobs.
        """
        report = SupervisorReport()

        with get_tracer().start_as_current_span(SPAN_SUPERVISOR_SWEEP) as span:
            async with self._database.session() as session:
                repo = JobRepository(session, self._settings)

                if self._settings.supervisor_dead_letter_enabled:
                    report.dead_lettered = await repo.dead_letter_exhausted()

                if self._settings.retention_days is not None:
                    report.purged = await repo.purge_resolved(self._settings.retention_days)

                stats = await repo.get_stats()

            span.set_attribute("dead_lettered", report.dead_lettered)
            span.set_attribute("purged", report.purged)

        self._metrics.record_sweep(report.dead_lettered, report.purged)
        self._metrics.update_queue_depth(stats)

        if report.dead_lettered or report.purged:
            logger.info(
                "Supervisor sweep finished",
                extra={
                    "dead_lettered": report.dead_lettered,
                    "purged": report.purged,
                    "pending": stats.pending,
                    "processing": stats.processing,
                },
            )

        return report


async def run_async() -> None:
    """Run the supervisor asynchronously."""
    settings = get_settings()
    setup_logging(settings)
    setup_tracing(settings)

    database = Database.from_settings(settings)
    if settings.otel_enabled:
        instrument_sqlalchemy(database.engine)
    start_metrics_server(settings.prometheus_port)

    supervisor = Supervisor(database, settings)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: asyncio.create_task(supervisor.stop())
        )

    try:
        await supervisor.start()
    finally:
        await database.dispose()


def run() -> None:
    """Run the supervisor."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
