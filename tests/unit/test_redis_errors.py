"""
Unit tests for Redis store behaviour that needs no server.
"""

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError

from budi_jobs.errors import StoreUnavailable
from budi_jobs.store.redis import RedisQueueStore, store_errors


class TestStoreErrors:
    def test_connection_error_translated(self):
        with pytest.raises(StoreUnavailable) as exc_info:
            with store_errors("push"):
                raise RedisConnectionError("Connection refused")

        assert exc_info.value.operation == "push"

    def test_other_errors_propagate(self):
        """Test command errors are not mistaken for an outage."""
        with pytest.raises(ResponseError):
            with store_errors("push"):
                raise ResponseError("WRONGTYPE")


class TestRedisQueueStore:
    def test_requires_connect(self):
        store = RedisQueueStore("redis://localhost:6379/0")

        with pytest.raises(RuntimeError, match="not connected"):
            store.client

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        """Test an unreachable server surfaces as StoreUnavailable."""
        store = RedisQueueStore("redis://localhost:1/0", socket_connect_timeout=0.5)
        try:
            with pytest.raises(StoreUnavailable):
                await store.connect()
        finally:
            await store.close()
