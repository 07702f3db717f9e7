"""Shared in-memory fixtures for the rolodex unit tests."""

from __future__ import annotations

import pytest

from rolodex.core.logging import _owner_context
from rolodex.testing.memory import (
    InMemoryContactSourceStore,
    InMemoryContactStore,
    InMemoryDatabase,
    InMemorySyncStateStore,
    InMemoryVerificationQueueStore,
)


@pytest.fixture(autouse=True)
def _reset_owner_context():
    token = _owner_context.set(None)
    yield
    _owner_context.reset(token)


@pytest.fixture
def memory_db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def contact_store(memory_db: InMemoryDatabase) -> InMemoryContactStore:
    return InMemoryContactStore(memory_db)


@pytest.fixture
def queue_store(memory_db: InMemoryDatabase) -> InMemoryVerificationQueueStore:
    return InMemoryVerificationQueueStore(memory_db)


@pytest.fixture
def source_store(memory_db: InMemoryDatabase) -> InMemoryContactSourceStore:
    return InMemoryContactSourceStore(memory_db)


@pytest.fixture
def sync_state_store(memory_db: InMemoryDatabase) -> InMemorySyncStateStore:
    return InMemorySyncStateStore(memory_db, lease_timeout_s=900)
