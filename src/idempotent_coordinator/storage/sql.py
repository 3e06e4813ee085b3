"""SQLAlchemy persistence store with conditional-write semantics.

This store keeps idempotency records in a relational table and works with
any SQLAlchemy async engine (PostgreSQL via asyncpg, MySQL via aiomysql,
SQLite via aiosqlite, ...). Table and column names are configurable.

Conditional create:
    put_record() first attempts a plain INSERT. The primary key constraint
    rejects it if a row already exists for the key, in which case a single
    guarded statement replaces the row only if it has expired::

        UPDATE idempotency_records SET ... WHERE id = :key AND expiration < :now

    If that statement touches no row, a live record exists and the caller
    gets IdempotencyItemAlreadyExistsError. Both statements are atomic on
    their own, so of N racing creators exactly one wins.

Examples:
    Creating the store::

        from sqlalchemy.ext.asyncio import create_async_engine

        engine = create_async_engine("postgresql+asyncpg://localhost/app")
        store = SQLAlchemyPersistenceStore(
            engine,
            SQLTableOptions(table_name="payments_idempotency"),
        )
        await store.create_table()
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy import BigInteger, Column, MetaData, String, Table, Text, delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from idempotent_coordinator.exceptions import (
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
)
from idempotent_coordinator.models import DataRecord, DataRecordStatus, epoch_seconds
from idempotent_coordinator.observability.logging import get_logger

logger = get_logger(__name__)


class SQLTableOptions(BaseModel):
    """Table and column names used by SQLAlchemyPersistenceStore.

    Attributes:
        table_name: Name of the idempotency table.
        key_column: Primary key column holding the idempotency key.
        expiry_column: Integer column holding the expiry in epoch seconds.
        status_column: Column holding the stored status.
        data_column: Text column holding the serialized response.
        validation_column: Column holding the payload hash.
    """

    table_name: str = Field(default="idempotency_records", min_length=1)
    key_column: str = Field(default="id", min_length=1)
    expiry_column: str = Field(default="expiration", min_length=1)
    status_column: str = Field(default="status", min_length=1)
    data_column: str = Field(default="data", min_length=1)
    validation_column: str = Field(default="validation", min_length=1)

    model_config = {"frozen": True}


def build_table(metadata: MetaData, options: SQLTableOptions) -> Table:
    """Declare the idempotency table on ``metadata``."""
    return Table(
        options.table_name,
        metadata,
        Column(options.key_column, String(255), primary_key=True),
        Column(options.expiry_column, BigInteger, nullable=False, index=True),
        Column(options.status_column, String(20), nullable=False),
        Column(options.data_column, Text, nullable=True),
        Column(options.validation_column, String(128), nullable=False, default=""),
    )


class SQLAlchemyPersistenceStore:
    """Relational persistence store built on SQLAlchemy Core.

    Attributes:
        engine: The async engine used for every statement.
        options: Table and column naming.
        table: The SQLAlchemy Table object.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        options: SQLTableOptions | None = None,
        metadata: MetaData | None = None,
    ) -> None:
        self.engine = engine
        self.options = options or SQLTableOptions()
        self.metadata = metadata if metadata is not None else MetaData()
        self.table = build_table(self.metadata, self.options)
        self._key = self.table.c[self.options.key_column]
        self._expiry = self.table.c[self.options.expiry_column]
        self._status = self.table.c[self.options.status_column]

    async def create_table(self) -> None:
        """Create the idempotency table if it does not exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(self.metadata.create_all, tables=[self.table])

    async def get_record(self, idempotency_key: str) -> DataRecord:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(select(self.table).where(self._key == idempotency_key))
                row = result.first()
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to read record for idempotency key {idempotency_key}: {e}",
                cause=e,
            ) from e

        if row is None:
            raise IdempotencyItemNotFoundError(
                f"No record found for idempotency key: {idempotency_key}",
                key=idempotency_key,
            )
        return self._row_to_record(row._mapping)

    async def put_record(self, record: DataRecord, now: datetime) -> None:
        key = record.idempotency_key
        values = self._record_values(record)
        logger.debug("store.put_record", key=key)

        try:
            async with self.engine.begin() as conn:
                await conn.execute(insert(self.table).values(values))
            return
        except IntegrityError:
            # A row exists for this key; it may only be replaced if expired
            logger.debug("store.put_existing_key", key=key)
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to put record for idempotency key {key}: {e}",
                cause=e,
            ) from e

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    update(self.table)
                    .where(self._key == key, self._expiry < epoch_seconds(now))
                    .values(values)
                )
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to replace expired record for idempotency key {key}: {e}",
                cause=e,
            ) from e

        if result.rowcount == 0:
            logger.debug("store.put_conflict", key=key)
            raise IdempotencyItemAlreadyExistsError(
                f"Failed to put record for already existing idempotency key: {key}",
                key=key,
            )

    async def update_record(
        self,
        record: DataRecord,
        expected_expiry: int | None = None,
    ) -> bool:
        key = record.idempotency_key
        values = self._record_values(record)
        logger.debug("store.update_record", key=key, fenced=expected_expiry is not None)

        statement = update(self.table).where(self._key == key)
        if expected_expiry is not None:
            statement = statement.where(
                self._status == DataRecordStatus.IN_PROGRESS.value,
                self._expiry == expected_expiry,
            )

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(statement.values(values))
                if result.rowcount > 0:
                    return True
                if expected_expiry is not None:
                    return False
                await conn.execute(insert(self.table).values(values))
                return True
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to update record for idempotency key {key}: {e}",
                cause=e,
            ) from e

    async def delete_record(self, idempotency_key: str) -> None:
        logger.debug("store.delete_record", key=idempotency_key)
        try:
            async with self.engine.begin() as conn:
                await conn.execute(delete(self.table).where(self._key == idempotency_key))
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to delete record for idempotency key {idempotency_key}: {e}",
                cause=e,
            ) from e

    async def cleanup_expired(self, now: datetime) -> int:
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(
                    delete(self.table).where(self._expiry < epoch_seconds(now))
                )
        except SQLAlchemyError as e:
            raise IdempotencyPersistenceLayerError(
                f"Failed to remove expired records: {e}",
                cause=e,
            ) from e
        return result.rowcount

    def _record_values(self, record: DataRecord) -> dict[str, Any]:
        o = self.options
        return {
            o.key_column: record.idempotency_key,
            o.expiry_column: record.expiry_timestamp,
            o.status_column: record.status.value,
            o.data_column: record.response_data,
            o.validation_column: record.payload_hash,
        }

    def _row_to_record(self, row: Mapping[Any, Any]) -> DataRecord:
        o = self.options
        try:
            return DataRecord(
                idempotency_key=row[o.key_column],
                status=DataRecordStatus(row[o.status_column]),
                expiry_timestamp=int(row[o.expiry_column]),
                response_data=row[o.data_column],
                payload_hash=row[o.validation_column] or "",
            )
        except ValueError as e:
            raise IdempotencyPersistenceLayerError(
                f"Malformed record for idempotency key {row[o.key_column]}: {e}",
                cause=e,
            ) from e
