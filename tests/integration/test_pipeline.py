"""
End-to-end tests: gateway, workers and reaper sharing one store.
"""

import asyncio

import pytest

from budi_jobs.constants import JobType, inflight_queue
from budi_jobs.monitor import QueueMonitor
from budi_jobs.reaper.main import Reaper
from budi_jobs.serialization import deserialize_dead_letter
from budi_jobs.types.job import JobResult
from budi_jobs.worker.main import build_workers, run_workers


async def wait_until(predicate, timeout: float = 5.0) -> None:
    async def poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(poll(), timeout)


class TestPipeline:
    """Full job lifecycle across components."""

    @pytest.mark.asyncio
    async def test_full_lifecycle(
        self,
        gateway,
        store,
        registry,
        metrics,
        test_settings,
        analyze_record,
        master_record,
        codec_preview_record,
    ):
        """Test jobs of every kind are routed, executed once and leave empty queues."""
        seen: dict[str, list[str]] = {"analyze": [], "master": [], "codec-preview": []}

        @registry.handler(JobType.ANALYZE)
        async def analyze(context):
            seen["analyze"].append(context.job_id)
            return JobResult(success=True, output={"lufs": -9.1})

        @registry.handler(JobType.MASTER)
        async def master(context):
            seen["master"].append(context.job_id)
            return JobResult(success=True)

        @registry.handler(JobType.CODEC_PREVIEW)
        async def codec_preview(context):
            seen["codec-preview"].append(context.job_id)
            return JobResult(success=True)

        submitted = [
            await gateway.submit(analyze_record),
            await gateway.submit(master_record),
            await gateway.submit(codec_preview_record),
        ]
        settings = test_settings.model_copy(
            update={
                "worker_queues": ["analyze", "master", "codec-preview"],
                "worker_concurrency": 2,
            }
        )
        workers = build_workers(store, registry, settings, metrics)
        task = asyncio.create_task(run_workers(workers))

        await wait_until(lambda: sum(len(ids) for ids in seen.values()) == 3)
        for worker in workers:
            await worker.stop()
        await asyncio.wait_for(task, 1)

        assert {result.queue: [result.job_id] for result in submitted} == seen
        depths = await QueueMonitor(store, metrics=metrics).depths()
        assert set(depths.values()) == {0}

    @pytest.mark.asyncio
    async def test_album_partial_failure(self, gateway, store, registry, metrics, test_settings):
        """Test one failing track of an album ends in the dead-letter queue while the rest succeed."""

        @registry.handler(JobType.MASTER)
        async def master(context):
            if context.job.track_id == "t2":
                return JobResult(success=False, error="clipping after limiter")
            return JobResult(success=True)

        album = await gateway.submit_album_master(
            "proj_1",
            {"t1": "https://x/1.wav", "t2": "https://x/2.wav", "t3": "https://x/3.wav"},
            "loud-streaming",
            max_retries=1,
        )
        settings = test_settings.model_copy(update={"worker_queues": ["master"]})
        workers = build_workers(store, registry, settings, metrics)
        task = asyncio.create_task(run_workers(workers))

        await wait_until(lambda: workers[0].stats.processed == 4)
        await workers[0].stop()
        await asyncio.wait_for(task, 1)

        assert workers[0].stats.succeeded == 2
        assert workers[0].stats.requeued == 1
        record = deserialize_dead_letter(await store.pop_raw("master-dead"))
        assert record.job_id == album.results["t2"].job_id
        assert record.attempts == 2

    @pytest.mark.asyncio
    async def test_lease_recovery(
        self, gateway, store, registry, metrics, test_settings, fix_record
    ):
        """Test a job stranded in flight is redelivered by the reaper and completed."""
        done = []

        @registry.handler(JobType.FIX)
        async def fix(context):
            done.append(context.job_id)
            return JobResult(success=True)

        result = await gateway.submit(fix_record)
        # a worker that reserved the job and then died
        delivery = await store.reserve("fix", 0, lease_seconds=30)

        reaper = Reaper(store, queues=["fix"], metrics=metrics, settings=test_settings)
        assert await reaper.run_once(now=delivery.lease_expires_at + 1) == 1

        settings = test_settings.model_copy(
            update={"worker_queues": ["fix"], "worker_lease_seconds": 30}
        )
        workers = build_workers(store, registry, settings, metrics)
        task = asyncio.create_task(run_workers(workers))

        await wait_until(lambda: done == [result.job_id])
        await workers[0].stop()
        await asyncio.wait_for(task, 1)

        assert await store.length(inflight_queue("fix")) == 0
