"""Framework-agnostic wrapper that makes a callable idempotent.

``with_idempotency`` is the explicit replacement for attribute-based
interception: it takes a coordinator and a unit of work and returns a new
callable with the same arguments that runs the work at most once per
idempotency key.

The wrapper:
1. Derives the document from the call arguments
2. Delegates to :meth:`IdempotencyCoordinator.execute`
3. Returns the fresh or replayed result

Examples:
    Wrapping a coroutine function::

        from idempotent_coordinator import IdempotencyConfig, IdempotencyCoordinator, with_idempotency
        from idempotent_coordinator.storage import MemoryPersistenceStore

        coordinator = IdempotencyCoordinator(
            MemoryPersistenceStore(),
            IdempotencyConfig(event_key_path="[user_id, product_id]"),
            scope="orders.create",
        )

        async def create_order(event: dict) -> dict:
            ...

        create_order_once = with_idempotency(coordinator, create_order)
        result = await create_order_once({"user_id": 7, "product_id": 42})

    Picking the document out of richer arguments::

        handler = with_idempotency(
            coordinator,
            handle,
            document_from=lambda event, context: event["body"],
        )
"""

import functools
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, TypeVar

from idempotent_coordinator.core.coordinator import IdempotencyCoordinator, utc_now
from idempotent_coordinator.exceptions import IdempotencyConfigurationError

T = TypeVar("T")


def with_idempotency(
    coordinator: IdempotencyCoordinator,
    work: Callable[..., Awaitable[T] | T],
    *,
    document_from: Callable[..., Any] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> Callable[..., Awaitable[T]]:
    """Wrap ``work`` so duplicate invocations replay the recorded result.

    Args:
        coordinator: The coordinator holding store, cache and configuration.
        work: The callable to protect. Coroutine functions and plain
            functions are both accepted; the wrapper is always async.
        document_from: Builds the idempotency document from the call
            arguments. Defaults to the first positional argument.
        clock: Source of the current time. Defaults to UTC wall clock.

    Returns:
        An async callable accepting the same arguments as ``work``.
    """
    now = clock or utc_now

    @functools.wraps(work)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        document = _resolve_document(document_from, args, kwargs)
        return await coordinator.execute(
            document,
            lambda: work(*args, **kwargs),
            clock=now,
        )

    return wrapper


def _resolve_document(
    document_from: Callable[..., Any] | None,
    args: tuple[Any, ...],
    kwargs: dict[str, Any],
) -> Any:
    if document_from is not None:
        return document_from(*args, **kwargs)
    if not args:
        raise IdempotencyConfigurationError(
            "No positional argument to derive the idempotency document from; "
            "pass document_from to with_idempotency"
        )
    return args[0]
