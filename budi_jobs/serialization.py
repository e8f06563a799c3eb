"""
Wire codec for queue entries.

Entries are compact JSON using the camelCase field names. Field order
follows the model declarations, so the same envelope always produces the
same bytes.
"""

from pydantic import ValidationError as PydanticValidationError

from budi_jobs.errors import PoisonPayload
from budi_jobs.types.job import DeadLetter, Job, QueuedJob, job_adapter


def _text(data: bytes | str) -> str:
    if isinstance(data, bytes):
        return data.decode("utf-8", errors="replace")
    return data


def serialize(envelope: QueuedJob) -> bytes:
    """Serialize a queue envelope."""
    return envelope.model_dump_json(by_alias=True).encode("utf-8")


def deserialize(data: bytes | str, queue: str = "") -> QueuedJob:
    """
    Decode a queue envelope.

    Raises:
        PoisonPayload: If the entry is not a valid envelope.
    """
    try:
        return QueuedJob.model_validate_json(data)
    except PydanticValidationError as e:
        raise PoisonPayload(
            queue=queue,
            raw=_text(data),
            message=f"Undecodable queue entry: {e.error_count()} error(s)",
        ) from e


def serialize_job(job: Job) -> bytes:
    """Serialize a bare job record."""
    return job_adapter.dump_json(job, by_alias=True)


def deserialize_job(data: bytes | str) -> Job:
    """Decode a bare job record; raises pydantic's ValidationError on bad input."""
    return job_adapter.validate_json(data)


def serialize_dead_letter(record: DeadLetter) -> bytes:
    return record.model_dump_json(by_alias=True).encode("utf-8")


def deserialize_dead_letter(data: bytes | str) -> DeadLetter | None:
    """Decode a dead-letter record, or None if the entry is not one."""
    try:
        return DeadLetter.model_validate_json(data)
    except PydanticValidationError:
        return None
