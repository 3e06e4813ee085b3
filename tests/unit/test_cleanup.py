"""Unit tests for the background cleanup task."""

import asyncio
from datetime import timedelta

import pytest

from idempotent_coordinator.core.cleanup import (
    cleanup_loop,
    cleanup_once,
    start_cleanup_task,
    stop_cleanup_task,
)
from idempotent_coordinator.models import DataRecord, DataRecordStatus, epoch_seconds


def record(now, key: str, ttl: int) -> DataRecord:
    return DataRecord(
        idempotency_key=key,
        status=DataRecordStatus.IN_PROGRESS,
        expiry_timestamp=epoch_seconds(now) + ttl,
    )


class FailingStore:
    def __init__(self) -> None:
        self.calls = 0

    async def cleanup_expired(self, now):
        self.calls += 1
        raise ConnectionError("unavailable")


@pytest.mark.asyncio
async def test_cleanup_once_removes_expired(store, now, clock):
    await store.put_record(record(now, "a#1", 5), now)
    await store.put_record(record(now, "b#1", 500), now)
    clock.advance(10)

    assert await cleanup_once(store, clock) == 1
    assert len(store) == 1


@pytest.mark.asyncio
async def test_start_and_stop_task(store, now, clock):
    await store.put_record(record(now, "a#1", 5), now)
    clock.advance(10)

    task = await start_cleanup_task(store, interval_seconds=0.01, clock=clock)
    await asyncio.sleep(0.05)
    await stop_cleanup_task(task)

    assert task.done()
    assert len(store) == 0


@pytest.mark.asyncio
async def test_loop_survives_failures():
    store = FailingStore()
    stop_event = asyncio.Event()

    task = asyncio.create_task(cleanup_loop(store, interval_seconds=0.01, stop_event=stop_event))
    await asyncio.sleep(0.05)
    stop_event.set()
    await asyncio.wait_for(task, timeout=1)

    assert store.calls >= 2


@pytest.mark.asyncio
async def test_loop_stops_immediately_when_event_set(store):
    stop_event = asyncio.Event()
    stop_event.set()
    await asyncio.wait_for(cleanup_loop(store, stop_event=stop_event), timeout=1)


@pytest.mark.asyncio
async def test_unexpired_records_survive(store, now, clock):
    await store.put_record(record(now, "a#1", 60), now)
    clock.advance(timedelta(seconds=60).total_seconds())
    assert await cleanup_once(store, clock) == 0
