"""
Job record type definitions.

A Job is a closed tagged union with one frozen model per job kind. The
``type`` discriminant selects the variant and the queue the job is routed
to. Field names follow the camelCase wire contract shared with the HTTP
layer; Python callers may use either spelling.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from budi_jobs.constants import DEFAULT_MAX_RETRIES, DeadLetterReason, JobType
from budi_jobs.errors import ValidationError

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class JobBase(BaseModel):
    """Fields and configuration shared by every job kind."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    track_id: NonEmptyStr

    @property
    def job_type(self) -> JobType:
        return JobType(self.type)  # type: ignore[attr-defined]


class AnalyzeJob(JobBase):
    """Loudness/spectral analysis of a source file."""

    type: Literal["analyze"] = "analyze"
    source_url: NonEmptyStr


class FixJob(JobBase):
    """Repair pass; ``modules`` run in the order given."""

    type: Literal["fix"] = "fix"
    source_url: NonEmptyStr
    modules: tuple[NonEmptyStr, ...] = Field(min_length=1)


class MasterJob(JobBase):
    """
    Mastering pass with a named preset.

    ``profile`` is usually one of MasteringProfile but any preset name
    the mastering workers understand is accepted.
    """

    type: Literal["master"] = "master"
    source_url: NonEmptyStr
    profile: NonEmptyStr


class CodecPreviewJob(JobBase):
    """Render codec previews of an existing master."""

    type: Literal["codec-preview"] = "codec-preview"
    master_url: NonEmptyStr
    codecs: tuple[NonEmptyStr, ...] = Field(min_length=1)

    @field_validator("codecs")
    @classmethod
    def normalise_codecs(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        """Codecs are a set; store them sorted so serialization is stable."""
        return tuple(sorted(set(value)))


Job = Annotated[
    AnalyzeJob | FixJob | MasterJob | CodecPreviewJob,
    Field(discriminator="type"),
]

job_adapter: TypeAdapter[Job] = TypeAdapter(Job)


def format_errors(exc: PydanticValidationError) -> list[str]:
    """Flatten pydantic errors into ``location: message`` strings."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "job"
        messages.append(f"{location}: {error['msg']}")
    return messages


def parse_job(data: Mapping[str, Any] | JobBase) -> Job:
    """
    Build a Job from a caller-supplied record.

    Args:
        data: A mapping carrying the ``type`` discriminant and variant
            fields, or an already constructed job.

    Returns:
        The validated job.

    Raises:
        ValidationError: If the discriminant is missing or unknown, or a
            required field is missing or malformed.
    """
    if isinstance(data, JobBase):
        return data  # type: ignore[return-value]

    if not isinstance(data, Mapping):
        raise ValidationError(
            "Job record must be a mapping",
            errors=[f"job: expected a mapping, got {type(data).__name__}"],
        )

    try:
        return job_adapter.validate_python(dict(data))
    except PydanticValidationError as e:
        errors = format_errors(e)
        raise ValidationError(
            f"Invalid job record ({len(errors)} error(s))", errors=errors
        ) from e


class QueuedJob(BaseModel):
    """
    Envelope stored on a queue.

    The wrapped job never changes; retries produce a new envelope with a
    bumped ``attempt``.
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    job_id: NonEmptyStr
    job: Job
    attempt: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    group_id: str | None = None
    last_error: str | None = None

    @property
    def job_type(self) -> JobType:
        return JobType(self.job.type)

    @property
    def can_retry(self) -> bool:
        """True while another requeue is allowed."""
        return self.attempt < self.max_retries

    def next_attempt(self, error: str) -> "QueuedJob":
        """Return the envelope to push back after a failed attempt."""
        return self.model_copy(update={"attempt": self.attempt + 1, "last_error": error})


class DeadLetter(BaseModel):
    """
    Record pushed to a dead-letter queue.

    ``payload`` is the raw queue entry so undecodable entries survive as-is.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    reason: DeadLetterReason
    queue: str
    error: str
    attempts: int = 0
    job_id: str | None = None
    payload: str
    dead_lettered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class JobResult(BaseModel):
    """
    Result of job execution.
    Returned by job handlers after processing.
    """

    success: bool
    output: dict[str, Any] | None = None
    error: str | None = None
    duration_ms: float | None = None


@dataclass
class JobContext:
    """
    Context passed to job handlers during execution.
    Contains the job and its delivery metadata.
    """

    job_id: str
    job: Job
    queue: str
    attempt: int
    max_retries: int
    worker_id: str
    enqueued_at: datetime
    group_id: str | None = None

    @classmethod
    def from_envelope(cls, envelope: QueuedJob, queue: str, worker_id: str) -> "JobContext":
        return cls(
            job_id=envelope.job_id,
            job=envelope.job,
            queue=queue,
            attempt=envelope.attempt,
            max_retries=envelope.max_retries,
            worker_id=worker_id,
            enqueued_at=envelope.enqueued_at,
            group_id=envelope.group_id,
        )

    @property
    def is_last_attempt(self) -> bool:
        """Check if a failure now would dead-letter the job."""
        return self.attempt >= self.max_retries

    @property
    def remaining_retries(self) -> int:
        return max(0, self.max_retries - self.attempt)


@dataclass
class Delivery:
    """
    A job reserved under a lease.

    ``raw`` is the exact stored entry and is what ``ack`` removes;
    ``lease_token`` identifies this delivery, so a worker whose lease was
    reaped cannot ack or extend a later redelivery of the same entry.
    """

    queue: str
    envelope: QueuedJob
    raw: str
    lease_token: str
    lease_expires_at: float
