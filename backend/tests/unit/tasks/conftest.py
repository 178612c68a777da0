"""Shared fixtures for Celery task tests."""

from unittest.mock import MagicMock, patch

import pytest


@pytest.fixture
def mock_sync_redis():
    """Patch the synchronous Redis client used for the sweep lock."""
    with patch("lookout.tasks.correlation.Redis") as redis_cls:
        client = MagicMock()
        lock = MagicMock()
        lock.acquire.return_value = True
        client.lock.return_value = lock
        redis_cls.from_url.return_value = client
        yield client


@pytest.fixture
def sweep_summary() -> dict:
    """Serialized summary of a sweep that produced one alert."""
    return {
        "processed_rules": 3,
        "processed_events": 42,
        "alerts_generated": 1,
        "alerts": [],
        "failed_rules": [],
        "timed_out": False,
    }
