"""
Lease reaper for recovering expired in-flight jobs.

Workers in lease mode move each job to ``<queue>-inflight`` and hold a
lease on it while the handler runs. If a worker dies, the lease is never
acked or extended; the reaper returns such entries to the queue tail so
another worker picks them up. This turns pop-and-delete into
at-least-once delivery.
"""

import asyncio
import logging
import signal
from collections.abc import Iterable

from budi_jobs.config import Settings, get_settings
from budi_jobs.constants import ALL_QUEUES, SPAN_REAP_LEASES
from budi_jobs.errors import StoreUnavailable
from budi_jobs.observability.logging import setup_logging
from budi_jobs.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from budi_jobs.observability.tracing import get_tracer, instrument_redis, setup_tracing
from budi_jobs.store import create_store
from budi_jobs.store.base import QueueStore

logger = logging.getLogger(__name__)


class Reaper:
    """
    Lease reaper that recovers expired in-flight entries.

    Runs periodically to:
    1. Give orphaned in-flight entries (moved but never leased) a lease
    2. Return entries with expired leases to their queue's tail
    3. Record metrics for monitoring
    """

    def __init__(
        self,
        store: QueueStore,
        queues: Iterable[str] = ALL_QUEUES,
        interval_seconds: float | None = None,
        orphan_grace_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the reaper.

        Args:
            store: Queue store to sweep.
            queues: Queue names to sweep.
            interval_seconds: Seconds between sweeps.
            orphan_grace_seconds: Lease given to in-flight entries that
                have none. Defaults to the worker lease length, or 30s.
            metrics: Metrics collector. Defaults to the process-wide one.
            settings: Settings for unspecified options.
        """
        settings = settings or get_settings()
        self.interval = (
            settings.reaper_interval_seconds if interval_seconds is None else interval_seconds
        )
        if orphan_grace_seconds is None:
            orphan_grace_seconds = settings.worker_lease_seconds or 30.0
        self.orphan_grace = orphan_grace_seconds
        self.queues = list(queues)
        self._store = store
        self._metrics = metrics or get_metrics()
        self._stop = asyncio.Event()

    async def start(self) -> None:
        """Start the reaper loop."""
        logger.info(
            f"Reaper starting with interval {self.interval}s",
            extra={"queues": self.queues},
        )

        while not self._stop.is_set():
            try:
                recovered = await self.run_once()

                if recovered > 0:
                    logger.info(f"Recovered {recovered} expired leases")

            except StoreUnavailable as e:
                self._metrics.record_store_error("requeue_expired")
                logger.warning("Queue store unavailable", extra={"error": str(e)})
            except Exception as e:
                logger.exception(f"Error in reaper loop: {e}")

            try:
                await asyncio.wait_for(self._stop.wait(), self.interval)
            except TimeoutError:
                pass

        logger.info("Reaper stopped")

    async def stop(self) -> None:
        """Stop the reaper."""
        logger.info("Reaper stopping")
        self._stop.set()

    async def run_once(self, now: float | None = None) -> int:
        """
        Sweep every queue once (for testing or cron-style execution).

        Args:
            now: Unix timestamp to compare lease deadlines against.

        Returns:
            Number of entries returned to their queues.
        """
        total = 0
        with get_tracer().start_as_current_span(SPAN_REAP_LEASES) as span:
            for queue in self.queues:
                count = await self._store.requeue_expired(
                    queue, now=now, orphan_grace_seconds=self.orphan_grace
                )
                if count:
                    self._metrics.record_lease_expired(queue, count)
                    logger.warning(
                        "Returned expired in-flight jobs",
                        extra={"queue": queue, "count": count},
                    )
                total += count
            span.set_attribute("recovered", total)
        return total


async def run_async(settings: Settings | None = None) -> None:
    """Run the reaper asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)

    if settings.store_backend == "redis":
        instrument_redis()

    async with create_store(settings) as store:
        reaper = Reaper(store, queues=settings.worker_queues, settings=settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: asyncio.create_task(reaper.stop())
            )

        await reaper.start()


def run() -> None:
    """Run the reaper."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
