"""
Type definitions for the job queue.
Contains the job records, queue envelopes and boundary result types.
"""

from budi_jobs.types.job import (
    AnalyzeJob,
    CodecPreviewJob,
    DeadLetter,
    Delivery,
    FixJob,
    Job,
    JobContext,
    JobResult,
    MasterJob,
    QueuedJob,
    parse_job,
)
from budi_jobs.types.results import (
    AlbumEnqueueResult,
    EnqueueResult,
    HealthReport,
    PushAck,
    ReplayResult,
)

__all__ = [
    # Job records
    "Job",
    "AnalyzeJob",
    "FixJob",
    "MasterJob",
    "CodecPreviewJob",
    "parse_job",
    # Queue types
    "QueuedJob",
    "DeadLetter",
    "Delivery",
    "JobContext",
    "JobResult",
    # Results
    "PushAck",
    "EnqueueResult",
    "AlbumEnqueueResult",
    "ReplayResult",
    "HealthReport",
]
