"""Test doubles for Lookout stores."""

from tests.mocks.stores import (
    InMemoryAlertStore,
    InMemoryEventStore,
    InMemoryRuleStore,
    mock_session,
)

__all__ = [
    "InMemoryAlertStore",
    "InMemoryEventStore",
    "InMemoryRuleStore",
    "mock_session",
]
