"""
Unit tests for the handler registry.
"""

from datetime import datetime, timezone

import pytest

from budi_jobs.constants import JobType
from budi_jobs.types.job import JobContext, JobResult, parse_job
from budi_jobs.worker.handlers import HandlerRegistry


@pytest.fixture
def master_context(master_record) -> JobContext:
    return JobContext(
        job_id="job_test",
        job=parse_job(master_record),
        queue="master",
        attempt=0,
        max_retries=3,
        worker_id="test-worker",
        enqueued_at=datetime.now(timezone.utc),
    )


class TestRegistration:
    """Tests for handler registration."""

    def test_register(self, registry):
        """Test registering a handler."""

        async def handler(context):
            return JobResult(success=True)

        registry.register(JobType.MASTER, handler)

        assert registry.get(JobType.MASTER) is handler
        assert registry.registered() == [JobType.MASTER]

    def test_decorator(self, registry):
        """Test the decorator form registers and returns the function."""

        @registry.handler(JobType.FIX)
        async def fix(context):
            return JobResult(success=True)

        assert registry.get(JobType.FIX) is fix

    def test_duplicate_rejected(self, registry):
        """Test a kind can only have one handler."""

        async def handler(context):
            return JobResult(success=True)

        registry.register(JobType.ANALYZE, handler)

        with pytest.raises(ValueError, match="already registered"):
            registry.register(JobType.ANALYZE, handler)

    def test_string_key_rejected(self, registry):
        """Test registration is closed over JobType."""

        async def handler(context):
            return JobResult(success=True)

        with pytest.raises(TypeError):
            registry.register("master", handler)  # type: ignore[arg-type]

    def test_missing(self, registry):
        async def handler(context):
            return JobResult(success=True)

        registry.register(JobType.ANALYZE, handler)

        assert registry.missing() == [JobType.FIX, JobType.MASTER, JobType.CODEC_PREVIEW]


class TestExecute:
    """Tests for handler execution."""

    @pytest.mark.asyncio
    async def test_success(self, registry, master_context):
        """Test the handler receives the context and its result is returned."""
        seen = []

        @registry.handler(JobType.MASTER)
        async def master(context):
            seen.append(context)
            return JobResult(success=True, output={"lufs": -14.0})

        result = await registry.execute(master_context)

        assert result.success is True
        assert result.output == {"lufs": -14.0}
        assert result.duration_ms is not None
        assert seen == [master_context]

    @pytest.mark.asyncio
    async def test_exception_becomes_failure(self, registry, master_context):
        """Test a raising handler yields a failed result."""

        @registry.handler(JobType.MASTER)
        async def master(context):
            raise RuntimeError("limiter overflow")

        result = await registry.execute(master_context)

        assert result.success is False
        assert "RuntimeError" in result.error
        assert "limiter overflow" in result.error

    @pytest.mark.asyncio
    async def test_missing_handler(self, registry, master_context):
        result = await registry.execute(master_context)

        assert result.success is False
        assert "No handler" in result.error

    @pytest.mark.asyncio
    async def test_wrong_return_type(self, registry, master_context):
        """Test a handler returning something other than JobResult fails."""

        @registry.handler(JobType.MASTER)
        async def master(context):
            return {"success": True}

        result = await registry.execute(master_context)

        assert result.success is False
        assert "expected JobResult" in result.error

    @pytest.mark.asyncio
    async def test_handler_duration_kept(self, registry, master_context):
        @registry.handler(JobType.MASTER)
        async def master(context):
            return JobResult(success=True, duration_ms=12.5)

        result = await registry.execute(master_context)

        assert result.duration_ms == 12.5
