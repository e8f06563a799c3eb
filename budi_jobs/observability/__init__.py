"""
Observability module.
Contains logging, metrics, and tracing setup.
"""

from budi_jobs.observability.logging import get_logger, job_log_context, setup_logging
from budi_jobs.observability.metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
)
from budi_jobs.observability.tracing import get_tracer, instrument_redis, setup_tracing

__all__ = [
    "setup_logging",
    "get_logger",
    "job_log_context",
    "setup_metrics",
    "get_metrics",
    "MetricsCollector",
    "setup_tracing",
    "get_tracer",
    "instrument_redis",
]
