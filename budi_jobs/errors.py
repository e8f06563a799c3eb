"""
Exception taxonomy for the job queue.

- ValidationError: malformed job record, rejected before any push.
- StoreUnavailable: the queue store could not be reached.
- HandlerFailure: a handler failed while processing a job.
- PoisonPayload: a queued entry could not be decoded.
"""


class QueueError(Exception):
    """Base class for all job queue errors."""


class ValidationError(QueueError):
    """Raised when a job record does not match its kind's required fields."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class StoreUnavailable(QueueError):
    """Raised when the queue store cannot be reached."""

    def __init__(self, operation: str, message: str):
        super().__init__(f"{operation}: {message}")
        self.operation = operation


class HandlerFailure(QueueError):
    """Raised inside the dispatch loop when a handler does not succeed."""

    def __init__(self, job_id: str, attempt: int, message: str):
        super().__init__(message)
        self.job_id = job_id
        self.attempt = attempt


class PoisonPayload(QueueError):
    """
    Raised when a popped entry fails deserialization.

    The entry has already been removed from its queue; ``raw`` holds the
    undecodable text so it can be dead-lettered verbatim. When the entry
    was reserved under a lease, ``lease_token`` is needed to ack it.
    """

    def __init__(
        self,
        queue: str,
        raw: str,
        message: str,
        lease_token: str | None = None,
    ):
        super().__init__(message)
        self.queue = queue
        self.raw = raw
        self.lease_token = lease_token
