"""
Enqueue gateway.

The one entry point the HTTP layer needs: validate a job record, route it
to the queue named after its kind and push it. An accepted submission
means "queued", never "done".
"""

import logging
from collections.abc import Mapping
from typing import Any

from budi_jobs.config import get_settings
from budi_jobs.constants import (
    SPAN_SUBMIT_JOB,
    DeadLetterReason,
    JobType,
    dead_letter_queue,
    queue_name_for,
)
from budi_jobs.errors import PoisonPayload, StoreUnavailable, ValidationError
from budi_jobs.ids import new_group_id, new_job_id
from budi_jobs.observability.metrics import MetricsCollector, get_metrics
from budi_jobs.observability.tracing import get_tracer
from budi_jobs.serialization import deserialize, deserialize_dead_letter
from budi_jobs.store.base import QueueStore
from budi_jobs.types.job import Job, JobBase, MasterJob, QueuedJob, parse_job
from budi_jobs.types.results import AlbumEnqueueResult, EnqueueResult, ReplayResult

logger = logging.getLogger(__name__)


def _check_max_retries(max_retries: int) -> None:
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")


class EnqueueGateway:
    """
    Validates and enqueues job records.

    The gateway holds no state beyond its store reference, so one instance
    can serve any number of concurrent request handlers. It never retries
    and never deduplicates: identical submissions become distinct jobs.
    """

    def __init__(
        self,
        store: QueueStore,
        metrics: MetricsCollector | None = None,
        max_retries: int | None = None,
    ):
        """
        Initialize the gateway.

        Args:
            store: Queue store to push to.
            metrics: Metrics collector. Defaults to the process-wide one.
            max_retries: Requeue bound stamped on new jobs. Defaults to
                ``default_max_retries`` from settings.
        """
        if max_retries is None:
            max_retries = get_settings().default_max_retries
        _check_max_retries(max_retries)

        self._store = store
        self._metrics = metrics or get_metrics()
        self._max_retries = max_retries

    async def submit(
        self,
        record: Mapping[str, Any] | JobBase,
        *,
        max_retries: int | None = None,
        group_id: str | None = None,
    ) -> EnqueueResult:
        """
        Validate a job record and push it to its queue.

        Args:
            record: Job model or a mapping with a ``type`` discriminant.
            max_retries: Per-job override of the requeue bound.
            group_id: Optional grouping id carried on the envelope.

        Returns:
            EnqueueResult; ``accepted`` is False with reason
            ``ValidationError`` when the record is malformed, in which case
            nothing was pushed.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        try:
            job = parse_job(record)
        except ValidationError as e:
            logger.info(
                "Rejected job record",
                extra={"errors": e.errors},
            )
            return EnqueueResult.rejected("ValidationError", e.errors)

        return await self._push(job, max_retries=max_retries, group_id=group_id)

    async def _push(
        self,
        job: Job,
        max_retries: int | None = None,
        group_id: str | None = None,
    ) -> EnqueueResult:
        if max_retries is None:
            max_retries = self._max_retries
        _check_max_retries(max_retries)

        envelope = QueuedJob(
            job_id=new_job_id(),
            job=job,
            max_retries=max_retries,
            group_id=group_id,
        )
        queue = queue_name_for(job.type)

        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            span.set_attribute("job_id", envelope.job_id)
            span.set_attribute("queue", queue)

            try:
                ack = await self._store.push(queue, envelope)
            except StoreUnavailable:
                self._metrics.record_store_error("push")
                logger.error(
                    "Queue store unavailable, job not enqueued",
                    extra={"queue": queue, "track_id": job.track_id},
                )
                raise

        self._metrics.record_job_submitted(queue)
        logger.info(
            "Job enqueued",
            extra={
                "job_id": envelope.job_id,
                "queue": queue,
                "track_id": job.track_id,
                "queue_length": ack.length,
            },
        )
        return EnqueueResult.enqueued(ack)

    async def submit_album_master(
        self,
        project_id: str,
        tracks: Mapping[str, str],
        profile: str,
        *,
        max_retries: int | None = None,
    ) -> AlbumEnqueueResult:
        """
        Fan an album master out into one master job per track.

        All per-track records are validated before anything is pushed; one
        bad record rejects the whole album. Accepted jobs share a group id.
        If the store fails midway, jobs already pushed stay queued and
        StoreUnavailable propagates.

        Args:
            project_id: Owning project.
            tracks: Mapping of track id to source URL, in mastering order.
            profile: Mastering preset applied to every track.
            max_retries: Per-job override of the requeue bound.

        Returns:
            AlbumEnqueueResult with one EnqueueResult per track.
        """
        if not tracks:
            return AlbumEnqueueResult(
                accepted=False,
                project_id=project_id,
                profile=profile,
                reason="ValidationError",
            )

        jobs: dict[str, MasterJob] = {}
        rejected: dict[str, EnqueueResult] = {}
        for track_id, source_url in tracks.items():
            try:
                jobs[track_id] = parse_job(
                    {
                        "type": JobType.MASTER.value,
                        "trackId": track_id,
                        "sourceUrl": source_url,
                        "profile": profile,
                    }
                )
            except ValidationError as e:
                rejected[track_id] = EnqueueResult.rejected("ValidationError", e.errors)

        if rejected:
            logger.info(
                "Rejected album master",
                extra={"project_id": project_id, "invalid_tracks": sorted(rejected)},
            )
            return AlbumEnqueueResult(
                accepted=False,
                project_id=project_id,
                profile=profile,
                results=rejected,
                reason="ValidationError",
            )

        group_id = new_group_id()
        results: dict[str, EnqueueResult] = {}
        for track_id, job in jobs.items():
            results[track_id] = await self._push(
                job, max_retries=max_retries, group_id=group_id
            )

        logger.info(
            "Album master enqueued",
            extra={"project_id": project_id, "group_id": group_id, "tracks": len(results)},
        )
        return AlbumEnqueueResult(
            accepted=True,
            project_id=project_id,
            group_id=group_id,
            profile=profile,
            results=results,
        )

    async def retry_dead_letters(
        self,
        job_type: JobType,
        limit: int | None = None,
        reset_attempts: bool = True,
    ) -> ReplayResult:
        """
        Move dead-lettered jobs back onto their live queue.

        Only handler failures are replayed; poison payloads cannot succeed
        on retry and stay dead. Each entry is rotated to the dead-letter
        tail before it is examined and only removed once its job is back on
        the live queue, so a failure partway through loses nothing. If the
        removal itself fails, the record stays dead and a later replay
        queues the job again.

        Args:
            job_type: Which queue's dead letters to replay.
            limit: Maximum number of entries to examine. Defaults to the
                dead-letter depth at call time.
            reset_attempts: Reset the attempt counter to 0.

        Returns:
            ReplayResult with replayed and skipped counts.
        """
        queue = queue_name_for(job_type)
        dead_queue = dead_letter_queue(queue)
        budget = await self._store.length(dead_queue)
        if limit is not None:
            budget = min(budget, limit)

        result = ReplayResult(queue=queue)
        for _ in range(budget):
            raw = await self._store.rotate_raw(dead_queue)
            if raw is None:
                break

            record = deserialize_dead_letter(raw)
            if record is None or record.reason != DeadLetterReason.HANDLER_FAILURE:
                result.skipped += 1
                continue

            try:
                envelope = deserialize(record.payload, queue=queue)
            except PoisonPayload:
                logger.warning(
                    "Dead letter payload is undecodable, left in place",
                    extra={"queue": dead_queue, "job_id": record.job_id},
                )
                result.skipped += 1
                continue

            if reset_attempts:
                envelope = envelope.model_copy(update={"attempt": 0, "last_error": None})
            await self._store.push(queue, envelope)
            await self._store.remove_raw(dead_queue, raw)
            result.replayed += 1

        logger.info(
            "Replayed dead letters",
            extra={"queue": queue, "replayed": result.replayed, "skipped": result.skipped},
        )
        return result
