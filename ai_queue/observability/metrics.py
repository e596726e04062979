"""
Prometheus metrics collection.
"""

import logging

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from ai_queue.constants import (
    METRIC_DEAD_LETTERED,
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_PURGED,
    METRIC_JOBS_RESOLVED,
    METRIC_LEASE_EXTENDED,
    METRIC_LEASE_LOST,
    METRIC_QUEUE_DEPTH,
)
from ai_queue.types.queue import JobStats

logger = logging.getLogger(__name__)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the AI queue.

    Collects metrics for:
    - Jobs per status
    - Claims and resolutions
    - Job execution duration
    - Lease extensions and lost leases
    - Supervisor dead-lettering and purges
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs in the queue table",
            ["status"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed",
            ["worker_id"],
            registry=self._registry,
        )

        self.jobs_resolved = Counter(
            METRIC_JOBS_RESOLVED,
            "Total number of jobs resolved by a worker",
            ["request_type", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Job execution duration in seconds",
            ["request_type", "status"],
            buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
            registry=self._registry,
        )

        self.lease_extended = Counter(
            METRIC_LEASE_EXTENDED,
            "Total number of lease extensions",
            ["worker_id"],
            registry=self._registry,
        )

        self.lease_lost = Counter(
            METRIC_LEASE_LOST,
            "Total number of jobs whose lease was lost before resolution",
            ["worker_id"],
            registry=self._registry,
        )

        self.dead_lettered = Counter(
            METRIC_DEAD_LETTERED,
            "Total number of jobs moved to dead letter",
            registry=self._registry,
        )

        self.jobs_purged = Counter(
            METRIC_JOBS_PURGED,
            "Total number of resolved jobs deleted by retention",
            registry=self._registry,
        )

    def record_jobs_claimed(self, worker_id: str, count: int = 1) -> None:
        """Record claimed jobs."""
        self.jobs_claimed.labels(worker_id=worker_id).inc(count)

    def record_job_resolved(
        self,
        request_type: str,
        status: str,
        duration_seconds: float,
    ) -> None:
        """Record a job resolution."""
        self.jobs_resolved.labels(request_type=request_type, status=status).inc()
        self.job_duration.labels(request_type=request_type, status=status).observe(
            duration_seconds
        )

    def record_lease_extended(self, worker_id: str) -> None:
        """Record a lease extension."""
        self.lease_extended.labels(worker_id=worker_id).inc()

    def record_lease_lost(self, worker_id: str) -> None:
        """Record a job lost to lease expiry or reclaim."""
        self.lease_lost.labels(worker_id=worker_id).inc()

    def record_sweep(self, dead_lettered: int, purged: int) -> None:
        """Record supervisor sweep results."""
        if dead_lettered:
            self.dead_lettered.inc(dead_lettered)
        if purged:
            self.jobs_purged.inc(purged)

    def update_queue_depth(self, stats: JobStats) -> None:
        """Update the per-status job gauge from a stats snapshot."""
        for status, count in stats.model_dump(exclude={"total"}).items():
            self.queue_depth.labels(status=status).set(count)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Args:
        registry: Optional custom registry for the first setup.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics


def start_metrics_server(port: int | None) -> None:
    """
    Expose the default registry over HTTP for scraping.

    Args:
        port: Port to listen on. Nothing is started when None.
    """
    if port is None:
        return
    start_http_server(port)
    logger.info("Metrics server listening", extra={"port": port})
