"""
Worker process for executing jobs.

Each Worker runs one dispatch loop against one queue: pop a job, run the
handler registered for its kind, then ack, requeue or dead-letter it.
Several loops, in this process or others, can share a queue; the store's
atomic pop is the only coordination between them.
"""

import asyncio
import importlib
import logging
import os
import signal
import time
from contextlib import suppress
from dataclasses import dataclass

from budi_jobs.config import Settings, get_settings
from budi_jobs.constants import (
    SPAN_DEAD_LETTER_JOB,
    SPAN_EXECUTE_JOB,
    DeadLetterReason,
    JobType,
    WorkerState,
    dead_letter_queue,
    queue_name_for,
)
from budi_jobs.errors import HandlerFailure, PoisonPayload, StoreUnavailable
from budi_jobs.observability.logging import job_log_context, setup_logging
from budi_jobs.observability.metrics import MetricsCollector, get_metrics, setup_metrics
from budi_jobs.observability.tracing import get_tracer, instrument_redis, setup_tracing
from budi_jobs.serialization import serialize, serialize_dead_letter
from budi_jobs.store import create_store
from budi_jobs.store.base import QueueStore
from budi_jobs.types.job import DeadLetter, Delivery, JobContext, QueuedJob
from budi_jobs.worker.handlers import HandlerRegistry

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    """Counters for one dispatch loop."""

    processed: int = 0
    succeeded: int = 0
    requeued: int = 0
    dead_lettered: int = 0


class Worker:
    """
    Dispatch loop for a single queue.

    Features:
    - Blocking pop with a bounded timeout, so stop requests are seen at
      least once per cycle
    - Requeue to the tail on failure, dead-letter once retries run out
    - Poison payloads dead-lettered immediately
    - Optional lease mode with heartbeats, for crash recovery via the reaper
    - Graceful stop: the job in flight finishes before run() returns
    """

    def __init__(
        self,
        store: QueueStore,
        registry: HandlerRegistry,
        job_type: JobType,
        worker_id: str | None = None,
        pop_timeout: float | None = None,
        lease_seconds: float | None = None,
        store_backoff: float | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the worker.

        Args:
            store: Queue store to consume from.
            registry: Handlers per job kind.
            job_type: The job kind, and therefore the queue, to serve.
            worker_id: Identifier for logs. Defaults to hostname + PID.
            pop_timeout: Seconds a pop may block before the loop re-checks
                for a stop request.
            lease_seconds: Lease length; values above 0 enable lease mode.
            store_backoff: Seconds to wait after a store outage.
            metrics: Metrics collector. Defaults to the process-wide one.
            settings: Settings for unspecified options.
        """
        settings = settings or get_settings()

        self.job_type = JobType(job_type)
        self.queue = queue_name_for(self.job_type)
        self.worker_id = (
            worker_id or settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"
        )
        self.pop_timeout = (
            settings.worker_pop_timeout_seconds if pop_timeout is None else pop_timeout
        )
        self.lease_seconds = (
            settings.worker_lease_seconds if lease_seconds is None else lease_seconds
        )
        self.store_backoff = (
            settings.worker_store_backoff_seconds if store_backoff is None else store_backoff
        )
        if self.pop_timeout <= 0:
            raise ValueError("pop_timeout must be > 0 so the loop can block")

        self._store = store
        self._registry = registry
        self._metrics = metrics or get_metrics()
        self._stop = asyncio.Event()
        self._state = WorkerState.IDLE
        self.stats = WorkerStats()

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def lease_mode(self) -> bool:
        return self.lease_seconds > 0

    async def run(self) -> None:
        """
        Run the dispatch loop until stop() is called.

        Raises:
            RuntimeError: If no handler is registered for this worker's kind.
        """
        if self._registry.get(self.job_type) is None:
            raise RuntimeError(f"No handler registered for job type: {self.job_type}")

        logger.info(
            "Worker starting",
            extra={
                "worker_id": self.worker_id,
                "queue": self.queue,
                "lease_seconds": self.lease_seconds,
            },
        )

        while not self._stop.is_set():
            try:
                await self.run_once()
            except Exception as e:
                self._state = WorkerState.IDLE
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id, "queue": self.queue},
                )
                await self._sleep(self.store_backoff)

        self._state = WorkerState.IDLE
        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "queue": self.queue, **vars(self.stats)},
        )

    async def stop(self) -> None:
        """Stop fetching new jobs; the current job is allowed to finish."""
        logger.info("Worker stopping", extra={"worker_id": self.worker_id, "queue": self.queue})
        self._stop.set()

    async def run_once(self) -> bool:
        """
        Run a single fetch/process cycle.

        Returns:
            True if an entry was taken off the queue, False if the pop
            timed out or the store was unavailable.
        """
        self._state = WorkerState.FETCHING
        delivery: Delivery | None = None

        try:
            if self.lease_mode:
                delivery = await self._store.reserve(
                    self.queue, self.pop_timeout, self.lease_seconds
                )
                envelope = delivery.envelope if delivery else None
            else:
                envelope = await self._store.pop(self.queue, self.pop_timeout)
        except PoisonPayload as e:
            await self._handle_poison(e)
            return True
        except StoreUnavailable as e:
            self._state = WorkerState.IDLE
            self._metrics.record_store_error("pop")
            logger.warning(
                "Queue store unavailable",
                extra={"worker_id": self.worker_id, "queue": self.queue, "error": str(e)},
            )
            await self._sleep(self.store_backoff)
            return False

        if envelope is None:
            self._state = WorkerState.IDLE
            return False

        await self._process(envelope, delivery)
        return True

    async def _process(self, envelope: QueuedJob, delivery: Delivery | None) -> None:
        """
        Execute one job and act on the outcome.

        Args:
            envelope: The popped job envelope.
            delivery: The reservation when running in lease mode.
        """
        context = JobContext.from_envelope(envelope, self.queue, self.worker_id)
        self._state = WorkerState.PROCESSING
        self.stats.processed += 1

        with job_log_context(
            job_id=envelope.job_id,
            queue=self.queue,
            attempt=envelope.attempt,
            worker_id=self.worker_id,
        ):
            logger.info(
                "Executing job",
                extra={"track_id": envelope.job.track_id, "group_id": envelope.group_id},
            )

            heartbeat = None
            lease_lost = asyncio.Event()
            if delivery is not None:
                heartbeat = asyncio.create_task(self._heartbeat(delivery, lease_lost))

            try:
                with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
                    span.set_attribute("job_id", envelope.job_id)
                    span.set_attribute("queue", self.queue)
                    span.set_attribute("attempt", envelope.attempt)

                    result = await self._registry.execute(context)
            finally:
                if heartbeat is not None:
                    heartbeat.cancel()
                    with suppress(asyncio.CancelledError):
                        await heartbeat

            duration = (result.duration_ms or 0.0) / 1000

            if lease_lost.is_set():
                # the reaper has handed the entry back; its redelivery owns the outcome
                self._state = WorkerState.IDLE
                self._metrics.record_job_completed(self.queue, "lease_lost", duration)
                logger.warning(
                    "Lease lost while the job ran, outcome discarded",
                    extra={"success": result.success},
                )
                return

            try:
                if result.success:
                    self._state = WorkerState.ACKING
                    self.stats.succeeded += 1
                    self._metrics.record_job_completed(self.queue, "succeeded", duration)
                    logger.info(
                        "Job completed successfully",
                        extra={"duration": f"{duration:.2f}s"},
                    )
                else:
                    failure = HandlerFailure(
                        envelope.job_id,
                        envelope.attempt,
                        result.error or "Unknown error",
                    )
                    await self._handle_failure(envelope, failure, duration)

                if delivery is not None:
                    self._state = WorkerState.ACKING
                    acked = await self._store.ack(
                        self.queue, delivery.raw, delivery.lease_token
                    )
                    if not acked:
                        logger.warning("Lease lost before ack; the job may run again")
            except StoreUnavailable as e:
                self._metrics.record_store_error("ack")
                logger.error(
                    "Could not record job outcome",
                    extra={"error": str(e), "lease_mode": self.lease_mode},
                )
            finally:
                self._state = WorkerState.IDLE

    async def _handle_failure(
        self,
        envelope: QueuedJob,
        failure: HandlerFailure,
        duration: float,
    ) -> None:
        """Requeue a failed job, or dead-letter it once retries are exhausted."""
        error = str(failure)

        if envelope.can_retry:
            self._state = WorkerState.REQUEUEING
            retry = envelope.next_attempt(error)
            await self._store.push(self.queue, retry)

            self.stats.requeued += 1
            self._metrics.record_requeue(self.queue)
            self._metrics.record_job_completed(self.queue, "requeued", duration)
            logger.warning(
                "Job failed, requeued",
                extra={
                    "error": error,
                    "next_attempt": retry.attempt,
                    "max_retries": envelope.max_retries,
                },
            )
            return

        self._state = WorkerState.DEAD_LETTERING
        failed = envelope.model_copy(update={"last_error": error})
        await self._dead_letter(
            DeadLetter(
                reason=DeadLetterReason.HANDLER_FAILURE,
                queue=self.queue,
                error=error,
                attempts=envelope.attempt + 1,
                job_id=envelope.job_id,
                payload=serialize(failed).decode("utf-8"),
            )
        )
        self._metrics.record_job_completed(self.queue, "dead_lettered", duration)

    async def _handle_poison(self, exc: PoisonPayload) -> None:
        """Dead-letter an undecodable entry; retrying it cannot help."""
        self._state = WorkerState.DEAD_LETTERING
        try:
            await self._dead_letter(
                DeadLetter(
                    reason=DeadLetterReason.POISON_PAYLOAD,
                    queue=self.queue,
                    error=str(exc),
                    payload=exc.raw,
                )
            )
            if exc.lease_token is not None:
                await self._store.ack(self.queue, exc.raw, exc.lease_token)
        finally:
            self._state = WorkerState.IDLE

    async def _dead_letter(self, record: DeadLetter) -> None:
        with get_tracer().start_as_current_span(SPAN_DEAD_LETTER_JOB) as span:
            span.set_attribute("queue", self.queue)
            span.set_attribute("reason", record.reason.value)
            await self._store.push_raw(
                dead_letter_queue(self.queue), serialize_dead_letter(record)
            )

        self.stats.dead_lettered += 1
        self._metrics.record_dead_letter(self.queue, record.reason.value)
        logger.error(
            "Job dead-lettered",
            extra={
                "job_id": record.job_id,
                "queue": self.queue,
                "reason": record.reason.value,
                "error": record.error,
                "attempts": record.attempts,
            },
        )

    async def _heartbeat(self, delivery: Delivery, lease_lost: asyncio.Event) -> None:
        """
        Keep the lease on an in-flight entry alive while its handler runs.

        Sets ``lease_lost`` once the store reports the lease gone.
        """
        interval = max(self.lease_seconds / 3, 0.1)
        while True:
            await asyncio.sleep(interval)
            try:
                extended = await self._store.extend_lease(
                    self.queue, delivery.raw, delivery.lease_token, self.lease_seconds
                )
            except StoreUnavailable as e:
                logger.warning("Could not extend lease", extra={"error": str(e)})
                continue
            if not extended:
                lease_lost.set()
                logger.warning("Lease lost; the job may be redelivered")
                return

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early if stop() is called."""
        with suppress(TimeoutError):
            await asyncio.wait_for(self._stop.wait(), seconds)


def build_workers(
    store: QueueStore,
    registry: HandlerRegistry,
    settings: Settings | None = None,
    metrics: MetricsCollector | None = None,
) -> list[Worker]:
    """
    Create ``worker_concurrency`` workers for every queue in ``worker_queues``.

    Raises:
        ValueError: If a configured queue is not a known job kind.
    """
    settings = settings or get_settings()
    base_id = settings.worker_id or f"{os.uname().nodename}-{os.getpid()}"

    workers = []
    for queue in settings.worker_queues:
        job_type = JobType(queue)
        for index in range(settings.worker_concurrency):
            workers.append(
                Worker(
                    store,
                    registry,
                    job_type,
                    worker_id=f"{base_id}-{job_type.value}-{index}",
                    metrics=metrics,
                    settings=settings,
                )
            )
    return workers


async def run_workers(workers: list[Worker]) -> None:
    """Run dispatch loops concurrently until all of them stop."""
    await asyncio.gather(*(worker.run() for worker in workers))


def load_registry(target: str) -> HandlerRegistry:
    """
    Import a HandlerRegistry from a ``module:attribute`` path.

    Raises:
        ValueError: If the path is malformed or does not name a registry.
    """
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {target!r}")

    registry = getattr(importlib.import_module(module_name), attribute)
    if not isinstance(registry, HandlerRegistry):
        raise ValueError(f"{target} is not a HandlerRegistry")
    return registry


async def run_async(settings: Settings | None = None) -> None:
    """Run the configured workers asynchronously."""
    settings = settings or get_settings()
    setup_logging(settings)
    setup_metrics()
    setup_tracing(settings)

    if not settings.worker_handlers:
        raise RuntimeError("WORKER_HANDLERS must name a HandlerRegistry (module:attribute)")
    registry = load_registry(settings.worker_handlers)

    if settings.store_backend == "redis":
        instrument_redis()

    async with create_store(settings) as store:
        workers = build_workers(store, registry, settings)

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda: [asyncio.create_task(worker.stop()) for worker in workers],
            )

        started = time.monotonic()
        await run_workers(workers)
        logger.info(
            "All workers stopped",
            extra={"uptime_seconds": round(time.monotonic() - started, 1)},
        )


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async())


if __name__ == "__main__":
    run()
