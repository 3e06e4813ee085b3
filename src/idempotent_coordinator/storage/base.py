"""Persistence store protocol for the idempotency coordinator.

This module defines the contract every backing store must fulfil. The
contract is deliberately small: read, conditional create, overwrite and
delete. The conditional create is the single cross-process coordination
point of the whole system.

Examples:
    Implementing a custom store::

        from idempotent_coordinator.exceptions import (
            IdempotencyItemAlreadyExistsError,
            IdempotencyItemNotFoundError,
        )
        from idempotent_coordinator.models import DataRecord

        class MyStore:
            async def get_record(self, key: str) -> DataRecord:
                data = await self.backend.get(key)
                if data is None:
                    raise IdempotencyItemNotFoundError(f"No record for {key}", key=key)
                return DataRecord.model_validate_json(data)

            async def put_record(self, record: DataRecord, now: datetime) -> None:
                # Insert unless a record exists whose expiry >= now
                ...

Atomicity Requirements:
    All PersistenceStore implementations MUST guarantee:

    1. **Atomic conditional create**: put_record() must check for a live record
       and write the new one as a single atomic step (conditional put,
       unique constraint plus compare-and-swap, transaction). Of N concurrent
       callers for the same key exactly one succeeds.

    2. **Expired records are absent**: put_record() must replace a record whose
       expiry is before ``now``.

    3. **Idempotent delete**: delete_record() on a missing key is not an error.

    4. **Opaque data**: response data and payload hashes are stored as text
       and returned unchanged.
"""

from datetime import datetime
from typing import Protocol, runtime_checkable

from idempotent_coordinator.models import DataRecord


@runtime_checkable
class PersistenceStore(Protocol):
    """Protocol defining the interface for idempotency backing stores.

    All methods are async and must be safe to call concurrently from multiple
    tasks, threads and processes. Callers cancel a slow call by cancelling the
    task awaiting it; stores add no timeout of their own.

    Error Handling:
        Stores raise IdempotencyItemNotFoundError and
        IdempotencyItemAlreadyExistsError for the two expected signals, and
        IdempotencyPersistenceLayerError for backend failures. Backend-specific
        exceptions should not escape.
    """

    async def get_record(self, idempotency_key: str) -> DataRecord:
        """Retrieve a record by key.

        Args:
            idempotency_key: The idempotency key to look up.

        Returns:
            The stored record, which may be expired.

        Raises:
            IdempotencyItemNotFoundError: If no record exists for the key.
        """
        ...

    async def put_record(self, record: DataRecord, now: datetime) -> None:
        """Atomically create a record unless a live one exists.

        Args:
            record: The record to install.
            now: The instant against which existing records are checked.

        Raises:
            IdempotencyItemAlreadyExistsError: If a record for the key exists
                and is not expired as of ``now``.
        """
        ...

    async def update_record(
        self,
        record: DataRecord,
        expected_expiry: int | None = None,
    ) -> bool:
        """Overwrite the record for ``record.idempotency_key``.

        Used for the IN_PROGRESS -> COMPLETED transition. Without
        ``expected_expiry`` the write is unconditional. With it, the write
        only succeeds if the stored record is still IN_PROGRESS with exactly
        that expiry, i.e. it is still the slot the caller installed.

        Args:
            record: The new record.
            expected_expiry: Expiry of the in-progress record being completed.

        Returns:
            True if the record was written, False if the fence rejected it.
        """
        ...

    async def delete_record(self, idempotency_key: str) -> None:
        """Remove the record for a key. No error if it is already absent."""
        ...

    async def cleanup_expired(self, now: datetime) -> int:
        """Remove records expired as of ``now``.

        Returns:
            The number of records removed.
        """
        ...
