"""
Queue monitor.

Read-only view of the queues for admin and metrics layers: depths of every
live, dead-letter and in-flight queue, a store health check, and a peek at
recent dead letters.
"""

import logging
import time
from datetime import datetime, timezone

from budi_jobs import __version__
from budi_jobs.constants import (
    ALL_QUEUES,
    JobType,
    dead_letter_queue,
    inflight_queue,
    queue_name_for,
)
from budi_jobs.errors import StoreUnavailable
from budi_jobs.observability.metrics import MetricsCollector, get_metrics
from budi_jobs.serialization import deserialize_dead_letter
from budi_jobs.store.base import QueueStore
from budi_jobs.types.job import DeadLetter
from budi_jobs.types.results import HealthReport

logger = logging.getLogger(__name__)


def known_queues(include_inflight: bool = False) -> list[str]:
    """Every queue name the system uses, in a stable order."""
    names = list(ALL_QUEUES)
    names.extend(dead_letter_queue(queue) for queue in ALL_QUEUES)
    if include_inflight:
        names.extend(inflight_queue(queue) for queue in ALL_QUEUES)
    return names


class QueueMonitor:
    """Observability boundary over a queue store."""

    def __init__(self, store: QueueStore, metrics: MetricsCollector | None = None):
        self._store = store
        self._metrics = metrics or get_metrics()

    async def depths(self, include_inflight: bool = False) -> dict[str, int]:
        """
        Current depth of every known queue.

        Also refreshes the queue depth gauge.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        depths = {}
        for queue in known_queues(include_inflight):
            depth = await self._store.length(queue)
            depths[queue] = depth
            self._metrics.update_queue_depth(queue, depth)
        return depths

    async def health(self) -> HealthReport:
        """Ping the store and report whether it is reachable."""
        started = time.perf_counter()
        try:
            await self._store.ping()
        except StoreUnavailable as e:
            self._metrics.record_store_error("ping")
            logger.warning("Queue store health check failed", extra={"error": str(e)})
            return HealthReport(
                status="degraded",
                version=__version__,
                store="unhealthy",
                error=str(e),
                timestamp=datetime.now(timezone.utc),
            )

        return HealthReport(
            status="healthy",
            version=__version__,
            store="healthy",
            latency_ms=round((time.perf_counter() - started) * 1000, 3),
            timestamp=datetime.now(timezone.utc),
        )

    async def peek_dead_letters(self, job_type: JobType, count: int = 10) -> list[DeadLetter]:
        """Oldest dead letters for a job kind, without removing them."""
        raw_entries = await self._store.peek(dead_letter_queue(queue_name_for(job_type)), count)
        records = []
        for raw in raw_entries:
            record = deserialize_dead_letter(raw)
            if record is not None:
                records.append(record)
        return records
