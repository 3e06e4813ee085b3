"""
Pytest configuration and shared fixtures for idempotent_coordinator tests.
"""

from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from idempotent_coordinator.models import DataRecord
from idempotent_coordinator.storage.memory import MemoryPersistenceStore

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class CountingStore:
    """Wraps a store and counts calls per operation."""

    def __init__(self, inner: MemoryPersistenceStore | None = None) -> None:
        self.inner = inner or MemoryPersistenceStore()
        self.calls: Counter[str] = Counter()

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def get_record(self, idempotency_key: str) -> DataRecord:
        self.calls["get_record"] += 1
        return await self.inner.get_record(idempotency_key)

    async def put_record(self, record: DataRecord, now: datetime) -> None:
        self.calls["put_record"] += 1
        await self.inner.put_record(record, now)

    async def update_record(self, record: DataRecord, expected_expiry: int | None = None) -> bool:
        self.calls["update_record"] += 1
        return await self.inner.update_record(record, expected_expiry)

    async def delete_record(self, idempotency_key: str) -> None:
        self.calls["delete_record"] += 1
        await self.inner.delete_record(idempotency_key)

    async def cleanup_expired(self, now: datetime) -> int:
        self.calls["cleanup_expired"] += 1
        return await self.inner.cleanup_expired(now)


class FakeClock:
    """Manually advanced clock for lifecycle tests."""

    def __init__(self, start: datetime = NOW) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def now() -> datetime:
    """A fixed, timezone-aware instant."""
    return NOW


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryPersistenceStore:
    """Create a fresh in-memory store for each test."""
    return MemoryPersistenceStore()


@pytest.fixture
def counting_store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def order_event() -> dict:
    return {"user_id": 7, "product_id": 42, "quantity": 3, "note": "gift"}
