"""
Pytest configuration and shared fixtures.
"""

from collections.abc import Callable
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from budi_jobs.config import Settings
from budi_jobs.gateway import EnqueueGateway
from budi_jobs.ids import new_job_id
from budi_jobs.observability.metrics import MetricsCollector
from budi_jobs.store.memory import MemoryQueueStore
from budi_jobs.types.job import QueuedJob, parse_job
from budi_jobs.worker.handlers import HandlerRegistry


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        store_backend="memory",
        worker_id="test-worker",
        worker_pop_timeout_seconds=0.05,
        worker_store_backoff_seconds=0.01,
        worker_lease_seconds=0,
        reaper_interval_seconds=1,
        default_max_retries=3,
        log_level="DEBUG",
        log_format="console",
        tracing_enabled=False,
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on an isolated registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def store() -> MemoryQueueStore:
    """Create an in-memory queue store."""
    return MemoryQueueStore()


@pytest.fixture
def gateway(store: MemoryQueueStore, metrics: MetricsCollector) -> EnqueueGateway:
    """Create a gateway over the in-memory store."""
    return EnqueueGateway(store, metrics=metrics, max_retries=3)


@pytest.fixture
def registry() -> HandlerRegistry:
    """Create an empty handler registry."""
    return HandlerRegistry()


@pytest.fixture
def master_record() -> dict[str, Any]:
    return {
        "type": "master",
        "trackId": "trk_abc123",
        "sourceUrl": "https://x/y.wav",
        "profile": "loud-streaming",
    }


@pytest.fixture
def analyze_record() -> dict[str, Any]:
    return {
        "type": "analyze",
        "trackId": "trk_an1",
        "sourceUrl": "https://cdn.example.com/raw/an1.wav",
    }


@pytest.fixture
def fix_record() -> dict[str, Any]:
    return {
        "type": "fix",
        "trackId": "trk_fx1",
        "sourceUrl": "https://cdn.example.com/raw/fx1.wav",
        "modules": ["declip", "denoise", "dehum"],
    }


@pytest.fixture
def codec_preview_record() -> dict[str, Any]:
    return {
        "type": "codec-preview",
        "trackId": "trk_cp1",
        "masterUrl": "https://cdn.example.com/masters/cp1.wav",
        "codecs": ["opus", "aac", "mp3"],
    }


@pytest.fixture
def make_envelope() -> Callable[..., QueuedJob]:
    """Factory building a queue envelope around a job record."""

    def factory(record: dict[str, Any], **overrides: Any) -> QueuedJob:
        fields: dict[str, Any] = {"job_id": new_job_id(), "job": parse_job(record)}
        fields.update(overrides)
        return QueuedJob(**fields)

    return factory
