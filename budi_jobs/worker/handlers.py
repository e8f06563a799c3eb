"""
Job handler registry.

Handlers are registered per JobType, the closed set of job kinds; there is
no free-form string lookup. Handlers must be idempotent: a job can run
more than once after a requeue or an expired lease.
"""

import logging
import time
from collections.abc import Awaitable, Callable

from budi_jobs.constants import JobType
from budi_jobs.types.job import JobContext, JobResult

logger = logging.getLogger(__name__)

# Type alias for job handler functions
JobHandler = Callable[[JobContext], Awaitable[JobResult]]


class HandlerRegistry:
    """
    Maps each job kind to exactly one handler.

    Example:
        registry = HandlerRegistry()

        @registry.handler(JobType.MASTER)
        async def master(context: JobContext) -> JobResult:
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[JobType, JobHandler] = {}

    def register(self, job_type: JobType, handler: JobHandler) -> JobHandler:
        """
        Register a handler for a job kind.

        Raises:
            TypeError: If ``job_type`` is not a JobType.
            ValueError: If the kind already has a handler.
        """
        if not isinstance(job_type, JobType):
            raise TypeError(f"job_type must be a JobType, got {job_type!r}")
        if job_type in self._handlers:
            raise ValueError(f"Handler already registered for job type: {job_type}")

        self._handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")
        return handler

    def handler(self, job_type: JobType) -> Callable[[JobHandler], JobHandler]:
        """Decorator form of ``register``."""

        def decorator(handler: JobHandler) -> JobHandler:
            return self.register(job_type, handler)

        return decorator

    def get(self, job_type: JobType) -> JobHandler | None:
        return self._handlers.get(job_type)

    def registered(self) -> list[JobType]:
        """List job kinds that have a handler."""
        return [job_type for job_type in JobType if job_type in self._handlers]

    def missing(self) -> list[JobType]:
        """List job kinds with no handler."""
        return [job_type for job_type in JobType if job_type not in self._handlers]

    async def execute(self, context: JobContext) -> JobResult:
        """
        Run the handler for the context's job kind.

        Never raises for handler errors: an exception or a missing handler
        becomes a failed JobResult.

        Args:
            context: The job context.

        Returns:
            JobResult from the handler, with ``duration_ms`` filled in.
        """
        job_type = JobType(context.job.type)
        handler = self._handlers.get(job_type)

        if handler is None:
            logger.error(
                f"No handler for job type: {job_type}",
                extra={"job_id": context.job_id},
            )
            return JobResult(
                success=False,
                error=f"No handler registered for job type: {job_type}",
            )

        started = time.perf_counter()
        try:
            result = await handler(context)
        except Exception as e:
            logger.exception(
                "Handler raised exception",
                extra={"job_id": context.job_id, "error": str(e)},
            )
            result = JobResult(
                success=False,
                error=f"Handler exception: {type(e).__name__}: {e}",
            )

        if not isinstance(result, JobResult):
            logger.error(
                "Handler returned unexpected value",
                extra={"job_id": context.job_id, "returned": type(result).__name__},
            )
            result = JobResult(
                success=False,
                error=f"Handler returned {type(result).__name__}, expected JobResult",
            )

        if result.duration_ms is None:
            duration_ms = (time.perf_counter() - started) * 1000
            result = result.model_copy(update={"duration_ms": duration_ms})
        return result
