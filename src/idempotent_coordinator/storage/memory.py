"""In-memory persistence store with asyncio concurrency control.

This module provides an in-memory implementation of the PersistenceStore
protocol. It is suitable for:
    - Single-process applications
    - Development and testing

For coordination across processes use SQLAlchemyPersistenceStore instead.

Concurrency:
    - A single asyncio.Lock makes the check-and-insert of put_record atomic
      with respect to every other coroutine on the event loop
    - Records are immutable, so reads hand out the stored object directly

Examples:
    Two concurrent creators for the same key::

        store = MemoryPersistenceStore()
        results = await asyncio.gather(
            store.put_record(record, now),
            store.put_record(record, now),
            return_exceptions=True,
        )
        # exactly one result is an IdempotencyItemAlreadyExistsError
"""

import asyncio
from datetime import datetime

from idempotent_coordinator.exceptions import (
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
)
from idempotent_coordinator.models import DataRecord, DataRecordStatus
from idempotent_coordinator.observability.logging import get_logger

logger = get_logger(__name__)


class MemoryPersistenceStore:
    """In-memory persistence store.

    Attributes:
        _records: Dictionary mapping keys to DataRecord objects.
        _lock: Lock serializing every mutation.
    """

    def __init__(self) -> None:
        self._records: dict[str, DataRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def get_record(self, idempotency_key: str) -> DataRecord:
        record = self._records.get(idempotency_key)
        if record is None:
            raise IdempotencyItemNotFoundError(
                f"No record found for idempotency key: {idempotency_key}",
                key=idempotency_key,
            )
        return record

    async def put_record(self, record: DataRecord, now: datetime) -> None:
        """Insert unless a record exists whose expiry is at or after ``now``."""
        async with self._lock:
            existing = self._records.get(record.idempotency_key)
            if existing is not None and not existing.is_expired(now):
                logger.debug("store.put_conflict", key=record.idempotency_key)
                raise IdempotencyItemAlreadyExistsError(
                    "Failed to put record for already existing idempotency key: "
                    f"{record.idempotency_key}",
                    key=record.idempotency_key,
                )
            self._records[record.idempotency_key] = record

    async def update_record(
        self,
        record: DataRecord,
        expected_expiry: int | None = None,
    ) -> bool:
        async with self._lock:
            if expected_expiry is not None:
                existing = self._records.get(record.idempotency_key)
                if (
                    existing is None
                    or existing.status != DataRecordStatus.IN_PROGRESS
                    or existing.expiry_timestamp != expected_expiry
                ):
                    return False
            self._records[record.idempotency_key] = record
            return True

    async def delete_record(self, idempotency_key: str) -> None:
        async with self._lock:
            self._records.pop(idempotency_key, None)

    async def cleanup_expired(self, now: datetime) -> int:
        async with self._lock:
            expired_keys = [
                key for key, record in self._records.items() if record.is_expired(now)
            ]
            for key in expired_keys:
                del self._records[key]
        return len(expired_keys)
