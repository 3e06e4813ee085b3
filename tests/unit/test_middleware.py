"""Unit tests for with_idempotency and IdempotencyCoordinator.execute."""

import pytest
from pydantic import BaseModel

from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.core.coordinator import MAX_INCONSISTENT_STATE_RETRIES, IdempotencyCoordinator
from idempotent_coordinator.core.middleware import with_idempotency
from idempotent_coordinator.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyConfigurationError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotent_coordinator.serialization import ResponseSerializer
from idempotent_coordinator.storage.memory import MemoryPersistenceStore

CONFIG = IdempotencyConfig(event_key_path="order_id", expiration_seconds=60)


class Receipt(BaseModel):
    order_id: str
    total: int


class VanishingStore(MemoryPersistenceStore):
    """Reports a conflict on create, then finds nothing on read."""

    def __init__(self, vanish_times: int) -> None:
        super().__init__()
        self.vanish_times = vanish_times
        self.put_calls = 0

    async def put_record(self, record, now):
        self.put_calls += 1
        if self.put_calls <= self.vanish_times:
            raise IdempotencyItemAlreadyExistsError("conflict", key=record.idempotency_key)
        await super().put_record(record, now)

    async def get_record(self, idempotency_key):
        if self.put_calls <= self.vanish_times:
            raise IdempotencyItemNotFoundError("gone", key=idempotency_key)
        return await super().get_record(idempotency_key)


class UndeletableStore(MemoryPersistenceStore):
    async def delete_record(self, idempotency_key):
        raise ConnectionError("delete failed")


@pytest.fixture
def calls() -> list:
    return []


@pytest.fixture
def coordinator(store) -> IdempotencyCoordinator:
    return IdempotencyCoordinator(store, CONFIG, scope="orders")


def make_work(calls: list):
    async def create_order(event: dict) -> dict:
        calls.append(event)
        return {"order_id": event["order_id"], "total": len(calls)}

    return create_order


@pytest.mark.asyncio
async def test_first_call_executes_and_duplicate_replays(coordinator, clock, calls):
    create_order = with_idempotency(coordinator, make_work(calls), clock=clock)

    first = await create_order({"order_id": "o-1"})
    second = await create_order({"order_id": "o-1", "retry": True})

    assert first == {"order_id": "o-1", "total": 1}
    assert second == first
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_different_keys_execute_separately(coordinator, clock, calls):
    create_order = with_idempotency(coordinator, make_work(calls), clock=clock)

    await create_order({"order_id": "o-1"})
    await create_order({"order_id": "o-2"})

    assert len(calls) == 2


@pytest.mark.asyncio
async def test_wrapper_preserves_metadata(coordinator, calls):
    work = make_work(calls)
    assert with_idempotency(coordinator, work).__name__ == "create_order"


@pytest.mark.asyncio
async def test_duplicate_while_in_progress(coordinator, store, clock, calls, now):
    await coordinator.save_in_progress({"order_id": "o-1"}, now)
    create_order = with_idempotency(coordinator, make_work(calls), clock=clock)

    with pytest.raises(IdempotencyAlreadyInProgressError):
        await create_order({"order_id": "o-1"})
    assert calls == []


@pytest.mark.asyncio
async def test_work_error_releases_key_and_propagates(coordinator, store, clock):
    attempts = []

    async def flaky(event: dict) -> str:
        attempts.append(event)
        if len(attempts) == 1:
            raise ValueError("card declined")
        return "charged"

    charge = with_idempotency(coordinator, flaky, clock=clock)

    with pytest.raises(ValueError, match="card declined"):
        await charge({"order_id": "o-1"})
    assert len(store) == 0

    assert await charge({"order_id": "o-1"}) == "charged"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_failed_delete_is_persistence_error(clock):
    coordinator = IdempotencyCoordinator(UndeletableStore(), CONFIG, scope="orders")

    async def boom(event: dict) -> None:
        raise ValueError("boom")

    with pytest.raises(IdempotencyPersistenceLayerError) as exc_info:
        await with_idempotency(coordinator, boom, clock=clock)({"order_id": "o-1"})
    assert isinstance(exc_info.value.cause, ConnectionError)
    assert isinstance(exc_info.value.cause.__context__, ValueError)


@pytest.mark.asyncio
async def test_disabled_runs_work_every_time(counting_store, clock, calls):
    config = CONFIG.model_copy(update={"enabled": False})
    coordinator = IdempotencyCoordinator(counting_store, config, scope="orders")
    create_order = with_idempotency(coordinator, make_work(calls), clock=clock)

    await create_order({"order_id": "o-1"})
    await create_order({"order_id": "o-1"})

    assert len(calls) == 2
    assert counting_store.total_calls == 0


@pytest.mark.asyncio
async def test_inconsistent_state_is_retried(clock, calls):
    store = VanishingStore(vanish_times=1)
    coordinator = IdempotencyCoordinator(store, CONFIG, scope="orders")

    result = await with_idempotency(coordinator, make_work(calls), clock=clock)({"order_id": "o-1"})

    assert result["order_id"] == "o-1"
    assert store.put_calls == 2


@pytest.mark.asyncio
async def test_inconsistent_state_gives_up(clock, calls):
    store = VanishingStore(vanish_times=10)
    coordinator = IdempotencyCoordinator(store, CONFIG, scope="orders")

    with pytest.raises(IdempotencyInconsistentStateError):
        await with_idempotency(coordinator, make_work(calls), clock=clock)({"order_id": "o-1"})
    assert store.put_calls == MAX_INCONSISTENT_STATE_RETRIES + 1
    assert calls == []


@pytest.mark.asyncio
async def test_validation_mismatch_on_replay(store, clock, calls):
    config = CONFIG.model_copy(update={"payload_validation_path": "amount"})
    coordinator = IdempotencyCoordinator(store, config, scope="orders")
    create_order = with_idempotency(coordinator, make_work(calls), clock=clock)
    await create_order({"order_id": "o-1", "amount": 10})

    with pytest.raises(IdempotencyValidationError):
        await create_order({"order_id": "o-1", "amount": 11})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_sync_work_is_supported(coordinator, clock):
    calls = []

    def compute(event: dict) -> int:
        calls.append(event)
        return 42

    wrapped = with_idempotency(coordinator, compute, clock=clock)
    assert await wrapped({"order_id": "o-1"}) == 42
    assert await wrapped({"order_id": "o-1"}) == 42
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_document_from_arguments(coordinator, clock):
    calls = []

    async def handle(event: dict, context: object) -> str:
        calls.append(context)
        return event["body"]["order_id"]

    wrapped = with_idempotency(
        coordinator, handle, document_from=lambda event, context: event["body"], clock=clock
    )

    await wrapped({"body": {"order_id": "o-1"}}, "ctx-1")
    await wrapped({"body": {"order_id": "o-1"}}, "ctx-2")

    assert calls == ["ctx-1"]


@pytest.mark.asyncio
async def test_keyword_only_call_needs_document_from(coordinator):
    wrapped = with_idempotency(coordinator, make_work([]))
    with pytest.raises(IdempotencyConfigurationError):
        await wrapped(event={"order_id": "o-1"})


@pytest.mark.asyncio
async def test_typed_result_is_replayed_as_model(store, clock):
    coordinator = IdempotencyCoordinator(
        store, CONFIG, scope="orders", serializer=ResponseSerializer(Receipt)
    )

    async def checkout(event: dict) -> Receipt:
        return Receipt(order_id=event["order_id"], total=10)

    wrapped = with_idempotency(coordinator, checkout, clock=clock)
    await wrapped({"order_id": "o-1"})
    replayed = await wrapped({"order_id": "o-1"})

    assert isinstance(replayed, Receipt)
    assert replayed.total == 10


@pytest.mark.asyncio
async def test_stale_completion_still_returns_result(store, clock):
    coordinator = IdempotencyCoordinator(store, CONFIG, scope="orders")

    async def slow(event: dict) -> str:
        # The slot expires and another invocation reclaims it meanwhile
        clock.advance(61)
        await coordinator.save_in_progress(event, clock())
        return "done"

    result = await with_idempotency(coordinator, slow, clock=clock)({"order_id": "o-1"})

    assert result == "done"
    record = await store.get_record(coordinator.key_builder.build_key({"order_id": "o-1"}))
    assert record.response_data is None
