"""
Unit tests for settings and store selection.
"""

import pytest

from budi_jobs.config import Settings
from budi_jobs.store import MemoryQueueStore, RedisQueueStore, create_store


class TestCreateStore:
    def test_memory(self, test_settings):
        assert isinstance(create_store(test_settings), MemoryQueueStore)

    def test_redis(self, test_settings):
        """Test the redis backend is built unconnected."""
        settings = test_settings.model_copy(update={"store_backend": "redis"})

        store = create_store(settings)

        assert isinstance(store, RedisQueueStore)
        assert store.backend == "redis"

    def test_unknown_backend(self, test_settings):
        settings = test_settings.model_copy(update={"store_backend": "sqs"})

        with pytest.raises(ValueError, match="Unknown store backend"):
            create_store(settings)


class TestSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REDIS_URL", raising=False)
        monkeypatch.delenv("STORE_BACKEND", raising=False)

        settings = Settings(_env_file=None)

        assert settings.store_backend == "redis"
        assert settings.redis_url == "redis://localhost:6379/0"
        assert settings.default_max_retries == 3
        assert settings.worker_lease_seconds == 0

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_MAX_RETRIES", "5")
        monkeypatch.setenv("WORKER_CONCURRENCY", "4")

        settings = Settings(_env_file=None)

        assert settings.default_max_retries == 5
        assert settings.worker_concurrency == 4
