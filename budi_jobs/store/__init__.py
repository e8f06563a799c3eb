"""
Queue store module.
Contains the store interface and its Redis and in-memory backends.
"""

from budi_jobs.config import Settings
from budi_jobs.store.base import QueueStore
from budi_jobs.store.memory import MemoryQueueStore
from budi_jobs.store.redis import RedisQueueStore


def create_store(settings: Settings) -> QueueStore:
    """
    Build the queue store selected by ``store_backend``.

    The store is returned unconnected; call ``connect()`` or use it as an
    async context manager.
    """
    if settings.store_backend == "memory":
        return MemoryQueueStore()
    if settings.store_backend == "redis":
        return RedisQueueStore(
            settings.redis_url,
            max_connections=settings.redis_max_connections,
            socket_connect_timeout=settings.redis_socket_connect_timeout,
        )
    raise ValueError(f"Unknown store backend: {settings.store_backend}")


__all__ = [
    "QueueStore",
    "MemoryQueueStore",
    "RedisQueueStore",
    "create_store",
]
