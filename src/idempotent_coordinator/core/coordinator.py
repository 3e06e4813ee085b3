"""Idempotency coordinator: the orchestration of one idempotent invocation.

The coordinator derives the idempotency key from a document, consults the
local cache and the persistence store, installs an in-progress record,
runs the wrapped work and finally commits the result or releases the key.
It holds no cross-invocation lock: concurrent invocations for the same key,
possibly in different processes, are arbitrated solely by the store's
conditional create.

State transitions of an invocation::

    NEW -> CHECK -> IN_PROGRESS -> SUCCESS
                               \\-> FAILED

Every primitive operation takes the current time from the caller, so expiry
decisions are deterministic and testable. Only :meth:`IdempotencyCoordinator.execute`
reads a clock, and the clock is injectable.

Examples:
    Building one coordinator per worker::

        from idempotent_coordinator import IdempotencyConfig, IdempotencyCoordinator
        from idempotent_coordinator.storage import MemoryPersistenceStore

        coordinator = IdempotencyCoordinator(
            store=MemoryPersistenceStore(),
            config=IdempotencyConfig(event_key_path="order_id", use_local_cache=True),
            scope="orders.create",
        )

    Driving the primitives directly::

        now = datetime.now(UTC)
        in_progress = await coordinator.save_in_progress(event, now)
        try:
            result = await create_order(event)
        except Exception as e:
            await coordinator.delete_record(event, e)
            raise
        await coordinator.save_success(event, result, datetime.now(UTC), in_progress=in_progress)
"""

import inspect
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from idempotent_coordinator.cache import LRUCache
from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotent_coordinator.extraction import JMESPathExtractor, KeyExtractor
from idempotent_coordinator.keys import KeyBuilder, default_scope, join_scope
from idempotent_coordinator.models import DataRecord, DataRecordStatus, epoch_seconds
from idempotent_coordinator.observability.logging import bound_idempotency_key, get_logger
from idempotent_coordinator.observability.metrics import (
    record_cache_lookup,
    record_execution_time,
    record_invocation,
    record_store_conflict,
)
from idempotent_coordinator.serialization import ResponseSerializer
from idempotent_coordinator.storage.base import PersistenceStore

logger = get_logger(__name__)

T = TypeVar("T")

# Retries after the store changed between the conditional create and the read
MAX_INCONSISTENT_STATE_RETRIES = 2


def utc_now() -> datetime:
    return datetime.now(UTC)


class InvocationState(str, Enum):
    """Per-invocation lifecycle states."""

    NEW = "NEW"
    CHECK = "CHECK"
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class IdempotencyCoordinator:
    """Orchestrates the idempotency lifecycle against a persistence store.

    Construct one instance per worker and operation and pass it explicitly
    to call sites; the instance carries the store, cache and configuration.

    Attributes:
        store: The authoritative persistence store.
        config: Active configuration (see :meth:`configure`).
        scope: Key prefix, the operation name plus optional sub-scope.
        key_builder: Derives keys and validation hashes.
        cache: Per-process LRU cache, None when disabled.
        serializer: Encodes results into ``response_data`` and back.
    """

    def __init__(
        self,
        store: PersistenceStore,
        config: IdempotencyConfig | None = None,
        *,
        scope: str | None = None,
        extractor: KeyExtractor | None = None,
        cache: LRUCache[str, DataRecord] | None = None,
        serializer: ResponseSerializer[Any] | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            store: Persistence store used for every record operation.
            config: Configuration; defaults to ``IdempotencyConfig()``.
            scope: Stable operation name used as key prefix. Defaults to the
                ``IDEMPOTENCY_FUNCTION_NAME`` environment variable.
            extractor: Key extractor; defaults to JMESPath.
            cache: Cache instance to use when ``use_local_cache`` is enabled.
                A new LRUCache is created when omitted.
            serializer: Result serializer; defaults to untyped JSON.
        """
        self.store = store
        self.base_scope = scope or default_scope()
        self.serializer: ResponseSerializer[Any] = serializer or ResponseSerializer()
        self._extractor = extractor or JMESPathExtractor()
        self._provided_cache = cache
        self.configure(config or IdempotencyConfig())

    def configure(self, config: IdempotencyConfig, sub_scope: str | None = None) -> None:
        """Apply a configuration, rebuilding the key builder and cache.

        Args:
            config: The new configuration.
            sub_scope: Optional caller-supplied extension of the scope.
        """
        self.config = config
        self.scope = join_scope(self.base_scope, sub_scope)
        self.key_builder = KeyBuilder(self.scope, config, self._extractor)
        self.cache: LRUCache[str, DataRecord] | None = None
        if config.use_local_cache:
            self.cache = self._provided_cache
            if self.cache is None:
                self.cache = LRUCache(config.local_cache_capacity)
        logger.debug(
            "coordinator.configured",
            scope=self.scope,
            use_local_cache=config.use_local_cache,
            payload_validation=config.payload_validation_enabled,
        )

    def generate_hash(self, value: Any) -> str:
        """Hash a value with the configured algorithm."""
        return self.key_builder.generate_hash(value)

    # ------------------------------------------------------------------
    # Primitive operations
    # ------------------------------------------------------------------

    async def save_in_progress(self, document: Any, now: datetime) -> DataRecord:
        """Install an IN_PROGRESS record for the document's key.

        Args:
            document: The request document.
            now: Current time; the record expires at ``now`` plus the
                in-progress TTL.

        Returns:
            The installed record. Pass it to :meth:`save_success` to fence
            the completion write.

        Raises:
            IdempotencyKeyError: Key material is required but absent. The
                store is not accessed.
            IdempotencyItemAlreadyExistsError: A live record exists for the
                key, either in the local cache or in the store.
            IdempotencyPersistenceLayerError: Any other store failure.
        """
        idempotency_key, validation_hash = self.key_builder.build(document)

        with bound_idempotency_key(idempotency_key):
            if self._retrieve_from_cache(idempotency_key, now) is not None:
                logger.info("record.already_exists", source="cache")
                raise IdempotencyItemAlreadyExistsError(
                    f"Record already cached for idempotency key: {idempotency_key}",
                    key=idempotency_key,
                )

            record = DataRecord(
                idempotency_key=idempotency_key,
                status=DataRecordStatus.IN_PROGRESS,
                expiry_timestamp=epoch_seconds(now)
                + self.config.effective_in_progress_expiration_seconds,
                response_data=None,
                payload_hash=validation_hash,
            )

            try:
                await self.store.put_record(record, now)
            except IdempotencyItemAlreadyExistsError:
                record_store_conflict()
                logger.info("record.already_exists", source="store")
                raise
            except IdempotencyPersistenceLayerError:
                raise
            except Exception as e:
                raise IdempotencyPersistenceLayerError(
                    f"Failed to save in progress record for idempotency key: {idempotency_key}",
                    cause=e,
                ) from e

            logger.debug("record.saved_in_progress", expiry_timestamp=record.expiry_timestamp)
            return record

    async def get_record(self, document: Any, now: datetime) -> DataRecord:
        """Fetch the live record for the document's key.

        The cache is consulted first; a store read happens only on a miss.

        Args:
            document: The request document.
            now: Current time used for expiry checks.

        Returns:
            The live record (IN_PROGRESS or COMPLETED).

        Raises:
            IdempotencyItemNotFoundError: No record exists or it has expired.
            IdempotencyValidationError: Payload validation is enabled and the
                stored hash does not match this document.
            IdempotencyPersistenceLayerError: Store failure.
        """
        idempotency_key = self.key_builder.build_key(document)
        validation_hash = self.key_builder.build_validation_hash(document)

        with bound_idempotency_key(idempotency_key):
            cached = self._retrieve_from_cache(idempotency_key, now)
            if cached is not None:
                self._validate_payload(cached, validation_hash)
                return cached

            try:
                record = await self.store.get_record(idempotency_key)
            except (IdempotencyItemNotFoundError, IdempotencyPersistenceLayerError):
                raise
            except Exception as e:
                raise IdempotencyPersistenceLayerError(
                    f"Failed to get record for idempotency key: {idempotency_key}",
                    cause=e,
                ) from e

            if record.is_expired(now):
                self._delete_from_cache(idempotency_key)
                logger.info("record.expired", expiry_timestamp=record.expiry_timestamp)
                raise IdempotencyItemNotFoundError(
                    f"Record expired for idempotency key: {idempotency_key}",
                    key=idempotency_key,
                )

            self._save_to_cache(record)
            self._validate_payload(record, validation_hash)
            return record

    async def save_success(
        self,
        document: Any,
        result: Any,
        now: datetime,
        in_progress: DataRecord | None = None,
    ) -> DataRecord | None:
        """Transition the document's record to COMPLETED with the result.

        Args:
            document: The request document.
            result: The work's result, serialized into ``response_data``.
            now: Completion time; the record expires at ``now`` plus the
                configured TTL.
            in_progress: The record returned by :meth:`save_in_progress`. When
                given, the write only succeeds if that record is still the
                one in the store.

        Returns:
            The completed record, or None if the fenced write was rejected
            because the slot expired and was reclaimed.

        Raises:
            IdempotencyPersistenceLayerError: The result could not be
                serialized, or the store failed. The record stays IN_PROGRESS.
        """
        idempotency_key, validation_hash = self.key_builder.build(document)
        expiry_timestamp = epoch_seconds(now) + self.config.expiration_seconds
        expected_expiry = in_progress.expiry_timestamp if in_progress is not None else None

        with bound_idempotency_key(idempotency_key):
            try:
                response_data = self.serializer.serialize(result)
                if in_progress is not None:
                    record = in_progress.complete(response_data, expiry_timestamp)
                else:
                    record = DataRecord(
                        idempotency_key=idempotency_key,
                        status=DataRecordStatus.COMPLETED,
                        expiry_timestamp=expiry_timestamp,
                        response_data=response_data,
                        payload_hash=validation_hash,
                    )
                written = await self.store.update_record(record, expected_expiry=expected_expiry)
            except IdempotencyPersistenceLayerError:
                raise
            except Exception as e:
                raise IdempotencyPersistenceLayerError(
                    f"Failed to update record state to success for idempotency key: {idempotency_key}",
                    cause=e,
                ) from e

            if not written:
                logger.warning("record.completion_rejected", expected_expiry=expected_expiry)
                return None

            self._save_to_cache(record)
            logger.debug("record.saved_success", expiry_timestamp=record.expiry_timestamp)
            return record

    async def delete_record(self, document: Any, cause: BaseException) -> None:
        """Release the document's key after the work failed.

        Args:
            document: The request document.
            cause: The exception raised by the work, logged for context.

        Raises:
            IdempotencyPersistenceLayerError: Store failure.
        """
        idempotency_key = self.key_builder.build_key(document)

        with bound_idempotency_key(idempotency_key):
            logger.info(
                "record.deleted",
                error_type=type(cause).__name__,
                error=str(cause),
            )
            try:
                await self.store.delete_record(idempotency_key)
            except IdempotencyPersistenceLayerError:
                raise
            except Exception as e:
                raise IdempotencyPersistenceLayerError(
                    f"Failed to delete record for idempotency key: {idempotency_key}",
                    cause=e,
                ) from e
            self._delete_from_cache(idempotency_key)

    # ------------------------------------------------------------------
    # Full lifecycle
    # ------------------------------------------------------------------

    async def execute(
        self,
        document: Any,
        work: Callable[[], Awaitable[T] | T],
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> T:
        """Run ``work`` at most once for the document's idempotency key.

        Args:
            document: The request document the key is derived from.
            work: Zero-argument callable performing the side effects. May be
                a coroutine function or a plain function.
            clock: Source of the current time for each step.

        Returns:
            The work's result, or the recorded result of a previous
            invocation with the same key.

        Raises:
            IdempotencyAlreadyInProgressError: Another invocation is running.
            IdempotencyValidationError: The key was reused for a different payload.
            IdempotencyKeyError: Key material is required but absent.
            IdempotencyInconsistentStateError: The store kept changing under us.
            IdempotencyPersistenceLayerError: Store failure.
            Exception: Anything raised by ``work`` propagates unchanged after
                the key has been released.
        """
        if not self.config.enabled:
            record_invocation("disabled")
            return await _call(work)

        for attempt in range(MAX_INCONSISTENT_STATE_RETRIES + 1):
            try:
                return await self._process(document, work, clock)
            except IdempotencyInconsistentStateError:
                if attempt == MAX_INCONSISTENT_STATE_RETRIES:
                    raise
                logger.info("invocation.retry", attempt=attempt + 1, reason="inconsistent_state")

        # Unreachable, the loop either returns or raises
        raise IdempotencyInconsistentStateError("Exhausted retries")

    async def _process(
        self,
        document: Any,
        work: Callable[[], Awaitable[T] | T],
        clock: Callable[[], datetime],
    ) -> T:
        self._transition(InvocationState.NEW)
        self._transition(InvocationState.CHECK)
        try:
            in_progress = await self.save_in_progress(document, clock())
        except IdempotencyItemAlreadyExistsError:
            record = await self._get_existing_record(document, clock())
            return self._handle_for_status(record, clock())

        self._transition(InvocationState.IN_PROGRESS, key=in_progress.idempotency_key)
        started = time.perf_counter()
        try:
            result = await _call(work)
        except Exception as work_error:
            record_execution_time(time.perf_counter() - started)
            self._transition(InvocationState.FAILED, key=in_progress.idempotency_key)
            record_invocation("failed")
            await self.delete_record(document, work_error)
            raise
        record_execution_time(time.perf_counter() - started)

        await self.save_success(document, result, clock(), in_progress=in_progress)
        self._transition(InvocationState.SUCCESS, key=in_progress.idempotency_key)
        record_invocation("executed")
        return result

    async def _get_existing_record(self, document: Any, now: datetime) -> DataRecord:
        try:
            return await self.get_record(document, now)
        except IdempotencyItemNotFoundError as e:
            # Deleted or expired between save_in_progress and get_record
            logger.info("record.vanished", key=e.key)
            raise IdempotencyInconsistentStateError(
                "save_in_progress and get_record returned inconsistent results"
            ) from e
        except IdempotencyValidationError:
            record_invocation("validation_failed")
            raise

    def _handle_for_status(self, record: DataRecord, now: datetime) -> Any:
        status = record.get_status(now)
        if status == DataRecordStatus.EXPIRED:
            raise IdempotencyInconsistentStateError(
                "save_in_progress and get_record returned inconsistent results"
            )
        if status == DataRecordStatus.IN_PROGRESS:
            record_invocation("in_progress")
            raise IdempotencyAlreadyInProgressError(
                f"Execution already in progress with idempotency key: {record.idempotency_key}",
                key=record.idempotency_key,
            )
        record_invocation("replayed")
        logger.info("record.replayed", key=record.idempotency_key)
        return self.serializer.deserialize(record.response_data or "")

    def _transition(self, state: InvocationState, **context: Any) -> None:
        logger.debug("invocation.transition", state=state.value, scope=self.scope, **context)

    # ------------------------------------------------------------------
    # Local cache helpers
    # ------------------------------------------------------------------

    def _retrieve_from_cache(self, idempotency_key: str, now: datetime) -> DataRecord | None:
        if self.cache is None:
            return None
        found, record = self.cache.try_get(idempotency_key)
        if not found or record is None:
            record_cache_lookup("miss")
            return None
        if record.is_expired(now):
            self.cache.remove(idempotency_key)
            record_cache_lookup("expired")
            logger.debug("cache.expired")
            return None
        record_cache_lookup("hit")
        logger.debug("cache.hit")
        return record

    def _save_to_cache(self, record: DataRecord) -> None:
        # IN_PROGRESS records can change outside this process
        if self.cache is None or record.status == DataRecordStatus.IN_PROGRESS:
            return
        self.cache.set(record.idempotency_key, record)

    def _delete_from_cache(self, idempotency_key: str) -> None:
        if self.cache is not None:
            self.cache.remove(idempotency_key)

    def _validate_payload(self, record: DataRecord, validation_hash: str) -> None:
        if not self.config.payload_validation_enabled:
            return
        if record.payload_hash != validation_hash:
            logger.warning("record.validation_failed")
            raise IdempotencyValidationError(
                "Payload does not match stored record for this event key",
                key=record.idempotency_key,
                stored_hash=record.payload_hash,
                request_hash=validation_hash,
            )


async def _call(work: Callable[[], Awaitable[T] | T]) -> T:
    result = work()
    if inspect.isawaitable(result):
        return await result
    return result
