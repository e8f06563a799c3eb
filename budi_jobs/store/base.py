"""
Queue store interface.

A queue store is a set of named FIFO lists: push appends to the tail, pop
removes the head. Head removal is atomic, so a single entry is delivered
to exactly one popping caller; that is the only coordination workers rely
on.

Subclasses implement the raw, string-level primitives; the typed
operations below encode and decode envelopes on top of them.
"""

from abc import ABC, abstractmethod

from budi_jobs.errors import PoisonPayload
from budi_jobs.serialization import deserialize, serialize
from budi_jobs.types.job import Delivery, QueuedJob
from budi_jobs.types.results import PushAck


def _check_timeout(timeout: float) -> None:
    if timeout < 0:
        raise ValueError(f"timeout must be >= 0, got {timeout}")


class QueueStore(ABC):
    """
    Durable, ordered, multi-producer/multi-consumer list store.

    Stores are constructed explicitly and passed to the gateway, workers
    and reaper; call ``connect()`` before use and ``close()`` afterwards,
    or use the store as an async context manager.
    """

    backend: str = "abstract"

    async def connect(self) -> None:
        """Open the underlying connection."""

    async def close(self) -> None:
        """Release the underlying connection."""

    async def __aenter__(self) -> "QueueStore":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Raw primitives
    # ------------------------------------------------------------------

    @abstractmethod
    async def push_raw(self, queue: str, payload: bytes | str) -> int:
        """Append an entry to the tail; returns the new length."""

    @abstractmethod
    async def pop_raw(self, queue: str, timeout: float = 0) -> str | None:
        """
        Remove and return the head entry.

        A zero timeout returns immediately; a positive timeout waits up to
        that many seconds for an entry without polling.
        """

    @abstractmethod
    async def length(self, queue: str) -> int:
        """Current depth of a queue. Approximate under concurrent use."""

    @abstractmethod
    async def peek(self, queue: str, count: int = 10) -> list[str]:
        """Return up to ``count`` entries from the head without removing them."""

    @abstractmethod
    async def ping(self) -> None:
        """Raise StoreUnavailable if the store cannot be reached."""

    @abstractmethod
    async def rotate_raw(self, queue: str) -> str | None:
        """
        Atomically move the head entry to the tail and return it.

        The entry never leaves the queue, so a caller that fails halfway
        through handling it loses nothing.
        """

    @abstractmethod
    async def remove_raw(self, queue: str, raw: str) -> bool:
        """Remove one occurrence of ``raw``, searching from the tail."""

    @abstractmethod
    async def reserve_raw(
        self,
        queue: str,
        timeout: float,
        lease_seconds: float,
    ) -> tuple[str, str, float] | None:
        """
        Move the head entry to the queue's in-flight list under a lease.

        Returns:
            Tuple of (raw entry, lease token, lease deadline as a unix
            timestamp), or None if nothing arrived before the timeout.
        """

    @abstractmethod
    async def ack(self, queue: str, raw: str, lease_token: str) -> bool:
        """
        Drop a reserved entry and its lease.

        Returns False, and changes nothing, unless ``lease_token`` still
        owns the entry's lease.
        """

    @abstractmethod
    async def extend_lease(
        self,
        queue: str,
        raw: str,
        lease_token: str,
        lease_seconds: float,
    ) -> bool:
        """Push a lease deadline forward. Returns False if the token no longer owns it."""

    @abstractmethod
    async def requeue_expired(
        self,
        queue: str,
        now: float | None = None,
        orphan_grace_seconds: float = 30.0,
    ) -> int:
        """
        Return in-flight entries whose lease has expired to the queue tail.

        In-flight entries without a lease get one that expires after
        ``orphan_grace_seconds``.

        Returns:
            Number of entries requeued.
        """

    # ------------------------------------------------------------------
    # Typed operations
    # ------------------------------------------------------------------

    async def push(self, queue: str, envelope: QueuedJob) -> PushAck:
        """
        Append a job envelope to the tail of a queue.

        Raises:
            StoreUnavailable: If the store cannot be reached.
        """
        length = await self.push_raw(queue, serialize(envelope))
        return PushAck(queue=queue, job_id=envelope.job_id, length=length)

    async def pop(self, queue: str, timeout: float = 0) -> QueuedJob | None:
        """
        Remove and decode the head envelope.

        Raises:
            PoisonPayload: If the removed entry cannot be decoded.
            StoreUnavailable: If the store cannot be reached.
        """
        _check_timeout(timeout)
        raw = await self.pop_raw(queue, timeout)
        if raw is None:
            return None
        return deserialize(raw, queue=queue)

    async def reserve(
        self,
        queue: str,
        timeout: float,
        lease_seconds: float,
    ) -> Delivery | None:
        """
        Reserve and decode the head envelope under a lease.

        A PoisonPayload raised here leaves the entry in flight; the caller
        dead-letters ``exc.raw`` and acks it with ``exc.lease_token``.
        """
        _check_timeout(timeout)
        if lease_seconds <= 0:
            raise ValueError(f"lease_seconds must be > 0, got {lease_seconds}")
        reserved = await self.reserve_raw(queue, timeout, lease_seconds)
        if reserved is None:
            return None
        raw, token, deadline = reserved
        try:
            envelope = deserialize(raw, queue=queue)
        except PoisonPayload as e:
            e.lease_token = token
            raise
        return Delivery(
            queue=queue,
            envelope=envelope,
            raw=raw,
            lease_token=token,
            lease_expires_at=deadline,
        )
