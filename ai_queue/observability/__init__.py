"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from ai_queue.observability.logging import setup_logging
from ai_queue.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    start_metrics_server,
)
from ai_queue.observability.tracing import get_tracer, instrument_sqlalchemy, setup_tracing

__all__ = [
    "setup_logging",
    "setup_metrics",
    "get_metrics",
    "start_metrics_server",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_sqlalchemy",
]
