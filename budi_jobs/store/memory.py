"""
In-process queue store.

Backs tests and single-process deployments (``store_backend=memory``).
All operations run on one event loop; head removal happens under the
condition lock with no await in between, which gives the same
single-delivery guarantee as Redis LPOP.
"""

import asyncio
import time
from collections import defaultdict, deque
from collections.abc import Callable

from budi_jobs.constants import inflight_queue
from budi_jobs.errors import StoreUnavailable
from budi_jobs.ids import new_lease_token
from budi_jobs.store.base import QueueStore


class MemoryQueueStore(QueueStore):
    """
    Queue store held in process memory.

    Set ``available = False`` to make every operation raise
    StoreUnavailable, which simulates an outage.
    """

    backend = "memory"

    def __init__(self, clock: Callable[[], float] | None = None):
        self._queues: dict[str, deque[str]] = defaultdict(deque)
        self._leases: dict[str, dict[str, float]] = defaultdict(dict)
        self._owners: dict[str, dict[str, str]] = defaultdict(dict)
        self._condition = asyncio.Condition()
        self._clock = clock or time.time
        self.available = True

    def _check(self, operation: str) -> None:
        if not self.available:
            raise StoreUnavailable(operation, "memory store marked unavailable")

    async def _notify(self) -> None:
        async with self._condition:
            self._condition.notify_all()

    async def push_raw(self, queue: str, payload: bytes | str) -> int:
        self._check("push")
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        self._queues[queue].append(payload)
        await self._notify()
        return len(self._queues[queue])

    async def _take(self, queue: str, timeout: float) -> str | None:
        entries = self._queues[queue]
        if entries:
            return entries.popleft()
        if timeout == 0:
            return None

        async with self._condition:
            try:
                await asyncio.wait_for(
                    self._condition.wait_for(lambda: bool(self._queues[queue])),
                    timeout,
                )
            except TimeoutError:
                return None
            self._check("pop")
            return self._queues[queue].popleft()

    async def pop_raw(self, queue: str, timeout: float = 0) -> str | None:
        self._check("pop")
        return await self._take(queue, timeout)

    async def length(self, queue: str) -> int:
        self._check("length")
        return len(self._queues.get(queue, ()))

    async def peek(self, queue: str, count: int = 10) -> list[str]:
        self._check("peek")
        return list(self._queues.get(queue, ()))[:count]

    async def ping(self) -> None:
        self._check("ping")

    async def rotate_raw(self, queue: str) -> str | None:
        self._check("rotate")
        entries = self._queues[queue]
        if not entries:
            return None
        entries.rotate(-1)
        return entries[-1]

    async def remove_raw(self, queue: str, raw: str) -> bool:
        self._check("remove")
        entries = self._queues[queue]
        for index in range(len(entries) - 1, -1, -1):
            if entries[index] == raw:
                del entries[index]
                return True
        return False

    async def reserve_raw(
        self,
        queue: str,
        timeout: float,
        lease_seconds: float,
    ) -> tuple[str, str, float] | None:
        self._check("reserve")
        raw = await self._take(queue, timeout)
        if raw is None:
            return None
        token = new_lease_token()
        deadline = self._clock() + lease_seconds
        self._queues[inflight_queue(queue)].append(raw)
        self._leases[queue][raw] = deadline
        self._owners[queue][raw] = token
        return raw, token, deadline

    def _owns(self, queue: str, raw: str, lease_token: str) -> bool:
        return self._owners[queue].get(raw) == lease_token

    async def ack(self, queue: str, raw: str, lease_token: str) -> bool:
        self._check("ack")
        if not self._owns(queue, raw, lease_token):
            return False
        del self._owners[queue][raw]
        self._leases[queue].pop(raw, None)
        try:
            self._queues[inflight_queue(queue)].remove(raw)
        except ValueError:
            return False
        return True

    async def extend_lease(
        self,
        queue: str,
        raw: str,
        lease_token: str,
        lease_seconds: float,
    ) -> bool:
        self._check("extend_lease")
        if not self._owns(queue, raw, lease_token) or raw not in self._leases[queue]:
            return False
        self._leases[queue][raw] = self._clock() + lease_seconds
        return True

    async def requeue_expired(
        self,
        queue: str,
        now: float | None = None,
        orphan_grace_seconds: float = 30.0,
    ) -> int:
        self._check("requeue_expired")
        now = self._clock() if now is None else now
        leases = self._leases[queue]
        owners = self._owners[queue]
        inflight = self._queues[inflight_queue(queue)]

        for raw in inflight:
            leases.setdefault(raw, now + orphan_grace_seconds)

        expired = [raw for raw, deadline in leases.items() if deadline <= now]
        moved = 0
        for raw in expired:
            del leases[raw]
            owners.pop(raw, None)
            try:
                inflight.remove(raw)
            except ValueError:
                continue
            self._queues[queue].append(raw)
            moved += 1

        if moved:
            await self._notify()
        return moved
