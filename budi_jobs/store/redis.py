"""
Redis-backed queue store.

Each queue is a Redis list: RPUSH appends, LPOP/BLPOP remove the head.
Lease mode moves entries with BLMOVE into ``<queue>-inflight``, tracks
deadlines in the ``<queue>-leases`` sorted set and the token of the
current lease in the ``<queue>-lease-owners`` hash.
"""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager

from redis import asyncio as aioredis
from redis.commands.core import AsyncScript
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from budi_jobs.constants import inflight_queue, lease_owners_key, leases_key
from budi_jobs.errors import StoreUnavailable
from budi_jobs.ids import new_lease_token
from budi_jobs.store.base import QueueStore

logger = logging.getLogger(__name__)

# KEYS: inflight, leases, owners. ARGV: raw, token.
ACK_SCRIPT = """
if redis.call('HGET', KEYS[3], ARGV[1]) ~= ARGV[2] then
  return 0
end
redis.call('HDEL', KEYS[3], ARGV[1])
redis.call('ZREM', KEYS[2], ARGV[1])
return redis.call('LREM', KEYS[1], 1, ARGV[1])
"""

# KEYS: leases, owners. ARGV: raw, token, deadline.
EXTEND_LEASE_SCRIPT = """
if redis.call('HGET', KEYS[2], ARGV[1]) ~= ARGV[2] then
  return 0
end
return redis.call('ZADD', KEYS[1], 'XX', 'CH', ARGV[3], ARGV[1])
"""

# Gives orphaned in-flight entries a lease, then moves every expired one
# back to the queue tail. KEYS: queue, inflight, leases, owners.
REQUEUE_EXPIRED_SCRIPT = """
local inflight = redis.call('LRANGE', KEYS[2], 0, -1)
for _, raw in ipairs(inflight) do
  if not redis.call('ZSCORE', KEYS[3], raw) then
    redis.call('ZADD', KEYS[3], tonumber(ARGV[1]) + tonumber(ARGV[2]), raw)
  end
end
local expired = redis.call('ZRANGEBYSCORE', KEYS[3], '-inf', ARGV[1])
local moved = 0
for _, raw in ipairs(expired) do
  redis.call('ZREM', KEYS[3], raw)
  redis.call('HDEL', KEYS[4], raw)
  if redis.call('LREM', KEYS[2], 1, raw) > 0 then
    redis.call('RPUSH', KEYS[1], raw)
    moved = moved + 1
  end
end
return moved
"""


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate Redis connectivity errors into StoreUnavailable."""
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise StoreUnavailable(operation, str(e)) from e


class RedisQueueStore(QueueStore):
    """
    Queue store on a Redis server.

    The client uses a connection pool, so a worker blocked in BLPOP does
    not hold up pushes from the gateway sharing the same store.
    """

    backend = "redis"

    def __init__(
        self,
        url: str,
        max_connections: int = 50,
        socket_connect_timeout: float = 5.0,
        client: aioredis.Redis | None = None,
    ):
        """
        Initialize the store.

        Args:
            url: Redis connection URL.
            max_connections: Connection pool size.
            socket_connect_timeout: Seconds to wait when connecting.
            client: Pre-built client, mainly for tests.
        """
        self._url = url
        self._max_connections = max_connections
        self._socket_connect_timeout = socket_connect_timeout
        self._client = client
        self._scripts: dict[str, AsyncScript] = {}

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            raise RuntimeError("Redis store not connected. Call connect() first.")
        return self._client

    async def connect(self) -> None:
        if self._client is None:
            self._client = aioredis.Redis.from_url(
                self._url,
                decode_responses=True,
                encoding_errors="replace",
                max_connections=self._max_connections,
                socket_connect_timeout=self._socket_connect_timeout,
                health_check_interval=30,
            )
        self._scripts = {
            "ack": self._client.register_script(ACK_SCRIPT),
            "extend_lease": self._client.register_script(EXTEND_LEASE_SCRIPT),
            "requeue_expired": self._client.register_script(REQUEUE_EXPIRED_SCRIPT),
        }
        await self.ping()
        logger.info("Redis queue store connected")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self._scripts = {}
            logger.info("Redis queue store closed")

    async def push_raw(self, queue: str, payload: bytes | str) -> int:
        with store_errors("push"):
            return await self.client.rpush(queue, payload)

    async def pop_raw(self, queue: str, timeout: float = 0) -> str | None:
        with store_errors("pop"):
            if timeout == 0:
                return await self.client.lpop(queue)
            result = await self.client.blpop([queue], timeout=timeout)
        if result is None:
            return None
        _, raw = result
        return raw

    async def length(self, queue: str) -> int:
        with store_errors("length"):
            return await self.client.llen(queue)

    async def peek(self, queue: str, count: int = 10) -> list[str]:
        if count <= 0:
            return []
        with store_errors("peek"):
            return await self.client.lrange(queue, 0, count - 1)

    async def ping(self) -> None:
        with store_errors("ping"):
            await self.client.ping()

    async def rotate_raw(self, queue: str) -> str | None:
        with store_errors("rotate"):
            return await self.client.lmove(queue, queue, "LEFT", "RIGHT")

    async def remove_raw(self, queue: str, raw: str) -> bool:
        with store_errors("remove"):
            return await self.client.lrem(queue, -1, raw) > 0

    async def reserve_raw(
        self,
        queue: str,
        timeout: float,
        lease_seconds: float,
    ) -> tuple[str, str, float] | None:
        inflight = inflight_queue(queue)
        with store_errors("reserve"):
            if timeout == 0:
                raw = await self.client.lmove(queue, inflight, "LEFT", "RIGHT")
            else:
                raw = await self.client.blmove(queue, inflight, timeout, "LEFT", "RIGHT")
            if raw is None:
                return None
            token = new_lease_token()
            deadline = time.time() + lease_seconds
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.zadd(leases_key(queue), {raw: deadline})
                pipe.hset(lease_owners_key(queue), raw, token)
                await pipe.execute()
        return raw, token, deadline

    def _script(self, name: str) -> AsyncScript:
        if name not in self._scripts:
            raise RuntimeError("Redis store not connected. Call connect() first.")
        return self._scripts[name]

    async def ack(self, queue: str, raw: str, lease_token: str) -> bool:
        with store_errors("ack"):
            removed = await self._script("ack")(
                keys=[inflight_queue(queue), leases_key(queue), lease_owners_key(queue)],
                args=[raw, lease_token],
            )
        return int(removed) > 0

    async def extend_lease(
        self,
        queue: str,
        raw: str,
        lease_token: str,
        lease_seconds: float,
    ) -> bool:
        deadline = time.time() + lease_seconds
        with store_errors("extend_lease"):
            changed = await self._script("extend_lease")(
                keys=[leases_key(queue), lease_owners_key(queue)],
                args=[raw, lease_token, deadline],
            )
        return int(changed) > 0

    async def requeue_expired(
        self,
        queue: str,
        now: float | None = None,
        orphan_grace_seconds: float = 30.0,
    ) -> int:
        script = self._script("requeue_expired")
        now = time.time() if now is None else now
        with store_errors("requeue_expired"):
            moved = await script(
                keys=[
                    queue,
                    inflight_queue(queue),
                    leases_key(queue),
                    lease_owners_key(queue),
                ],
                args=[now, orphan_grace_seconds],
            )
        return int(moved)
