"""
Prometheus metrics collection.

Exposition is left to the host process; this module only records.
"""

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

from budi_jobs.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_COMPLETED,
    METRIC_JOBS_DEAD_LETTERED,
    METRIC_JOBS_REQUEUED,
    METRIC_JOBS_SUBMITTED,
    METRIC_LEASE_EXPIRED,
    METRIC_QUEUE_DEPTH,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth per queue (live, dead-letter and in-flight)
    - Submissions, completions, requeues and dead letters
    - Handler execution duration
    - Expired leases and store errors
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
            "Number of entries in a queue",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_submitted = Counter(
            METRIC_JOBS_SUBMITTED,
            "Total number of jobs accepted by the gateway",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_completed = Counter(
            METRIC_JOBS_COMPLETED,
            "Total number of handler invocations by outcome",
            ["queue", "status"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Handler execution duration in seconds",
            ["queue", "status"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0),
            registry=self._registry,
        )

        self.jobs_requeued = Counter(
            METRIC_JOBS_REQUEUED,
            "Total number of jobs pushed back after a failed attempt",
            ["queue"],
            registry=self._registry,
        )

        self.jobs_dead_lettered = Counter(
            METRIC_JOBS_DEAD_LETTERED,
            "Total number of entries moved to a dead-letter queue",
            ["queue", "reason"],
            registry=self._registry,
        )

        self.lease_expired = Counter(
            METRIC_LEASE_EXPIRED,
            "Total number of in-flight entries returned by the reaper",
            ["queue"],
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of failed queue store operations",
            ["operation"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    def record_job_submitted(self, queue: str) -> None:
        self.jobs_submitted.labels(queue=queue).inc()

    def record_job_completed(self, queue: str, status: str, duration_seconds: float) -> None:
        """Record a handler invocation and its duration."""
        self.jobs_completed.labels(queue=queue, status=status).inc()
        self.job_duration.labels(queue=queue, status=status).observe(duration_seconds)

    def record_requeue(self, queue: str) -> None:
        self.jobs_requeued.labels(queue=queue).inc()

    def record_dead_letter(self, queue: str, reason: str) -> None:
        self.jobs_dead_lettered.labels(queue=queue, reason=reason).inc()

    def record_lease_expired(self, queue: str, count: int = 1) -> None:
        self.lease_expired.labels(queue=queue).inc(count)

    def record_store_error(self, operation: str) -> None:
        self.store_errors.labels(operation=operation).inc()

    def update_queue_depth(self, queue: str, depth: int) -> None:
        self.queue_depth.labels(queue=queue).set(depth)


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsCollector:
    """
    Set up and return the process-wide metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector(registry)
    return _metrics


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector, creating it on first use."""
    if _metrics is None:
        return setup_metrics()
    return _metrics
