"""
Result type definitions returned across the submission and observability
boundaries.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResultModel(BaseModel):
    """Base for boundary results; serializes with the camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PushAck(ResultModel):
    """
    Acknowledgement that an entry was durably appended.

    Not a completion signal: the job has only been queued.
    """

    queue: str
    job_id: str
    length: int


class EnqueueResult(ResultModel):
    """Outcome of a single submission."""

    accepted: bool
    job_id: str | None = None
    queue: str | None = None
    queue_length: int | None = None
    reason: str | None = None
    detail: list[str] = Field(default_factory=list)

    @classmethod
    def enqueued(cls, ack: PushAck) -> "EnqueueResult":
        return cls(
            accepted=True,
            job_id=ack.job_id,
            queue=ack.queue,
            queue_length=ack.length,
        )

    @classmethod
    def rejected(cls, reason: str, detail: list[str] | None = None) -> "EnqueueResult":
        return cls(accepted=False, reason=reason, detail=detail or [])


class AlbumEnqueueResult(ResultModel):
    """Outcome of an album mastering fan-out."""

    accepted: bool
    project_id: str
    group_id: str | None = None
    profile: str
    results: dict[str, EnqueueResult] = Field(default_factory=dict)
    reason: str | None = None


class ReplayResult(ResultModel):
    """Outcome of replaying a dead-letter queue."""

    queue: str
    replayed: int = 0
    skipped: int = 0


class HealthReport(ResultModel):
    """Queue store health snapshot."""

    status: str
    version: str
    store: str
    latency_ms: float | None = None
    error: str | None = None
    timestamp: datetime
