"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobType(StrEnum):
    """
    Job kinds accepted by the gateway.

    The value doubles as the name of the queue the job is routed to.
    Changing a value orphans every entry already queued under the old name.
    """

    ANALYZE = "analyze"
    FIX = "fix"
    MASTER = "master"
    CODEC_PREVIEW = "codec-preview"


class MasteringProfile(StrEnum):
    """Mastering presets known to the mastering workers."""

    LOUD_STREAMING = "loud-streaming"
    BALANCED = "balanced"
    DYNAMIC = "dynamic"
    VINYL = "vinyl"


class WorkerState(StrEnum):
    """
    Dispatch loop states.

    State transitions:
    - IDLE -> FETCHING (pop issued)
    - FETCHING -> IDLE (pop timed out)
    - FETCHING -> PROCESSING (job received)
    - FETCHING -> DEAD_LETTERING (poison payload)
    - PROCESSING -> ACKING (handler succeeded)
    - PROCESSING -> REQUEUEING (handler failed, retries left)
    - PROCESSING -> DEAD_LETTERING (handler failed, retries exhausted)
    - ACKING / REQUEUEING / DEAD_LETTERING -> IDLE
    """

    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "processing"
    ACKING = "acking"
    REQUEUEING = "requeueing"
    DEAD_LETTERING = "dead_lettering"


class DeadLetterReason(StrEnum):
    """Why an entry ended up in a dead-letter queue."""

    HANDLER_FAILURE = "handler_failure"
    POISON_PAYLOAD = "poison_payload"


# Queue name suffixes
DEAD_LETTER_SUFFIX = "-dead"
INFLIGHT_SUFFIX = "-inflight"
LEASES_SUFFIX = "-leases"
LEASE_OWNERS_SUFFIX = "-lease-owners"

# Identifier prefixes
JOB_ID_PREFIX = "job_"
TRACK_ID_PREFIX = "trk_"
PROJECT_ID_PREFIX = "proj_"
GROUP_ID_PREFIX = "grp_"
LEASE_TOKEN_PREFIX = "lease_"

# Default values
DEFAULT_MAX_RETRIES = 3

# Metrics names
METRIC_QUEUE_DEPTH = "job_queue_depth"
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_REQUEUED = "jobs_requeued_total"
METRIC_JOBS_DEAD_LETTERED = "jobs_dead_lettered_total"
METRIC_LEASE_EXPIRED = "lease_expired_total"
METRIC_STORE_ERRORS = "store_errors_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_DEAD_LETTER_JOB = "dead_letter_job"
SPAN_REAP_LEASES = "reap_leases"


def queue_name_for(job_type: JobType | str) -> str:
    """Return the queue a job kind is routed to."""
    return JobType(job_type).value


def dead_letter_queue(queue: str) -> str:
    """Return the dead-letter queue paired with a queue."""
    return f"{queue}{DEAD_LETTER_SUFFIX}"


def inflight_queue(queue: str) -> str:
    """Return the in-flight list used by lease mode."""
    return f"{queue}{INFLIGHT_SUFFIX}"


def leases_key(queue: str) -> str:
    """Return the sorted set holding lease deadlines for a queue."""
    return f"{queue}{LEASES_SUFFIX}"


def lease_owners_key(queue: str) -> str:
    """Return the hash mapping in-flight entries to the token of their current lease."""
    return f"{queue}{LEASE_OWNERS_SUFFIX}"


ALL_QUEUES: tuple[str, ...] = tuple(queue_name_for(t) for t in JobType)
