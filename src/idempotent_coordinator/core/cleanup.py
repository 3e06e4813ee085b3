"""TTL-based cleanup background task for expired idempotency records.

Expired records are already treated as absent by every read and are
replaced by the next conditional create, so sweeping them is housekeeping:
it keeps the store from growing without bound.

The cleanup task:
1. Runs at configurable intervals (default 5 minutes)
2. Calls ``store.cleanup_expired(now)`` to remove expired records
3. Reports metrics and logs for observability
4. Keeps running when a sweep fails

Examples:
    Start cleanup task in the background::

        from idempotent_coordinator.core.cleanup import start_cleanup_task, stop_cleanup_task
        from idempotent_coordinator.storage import MemoryPersistenceStore

        store = MemoryPersistenceStore()
        task = await start_cleanup_task(store, interval_seconds=300)

        # Later, when shutting down
        await stop_cleanup_task(task)
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from idempotent_coordinator.core.coordinator import utc_now
from idempotent_coordinator.observability.logging import get_logger
from idempotent_coordinator.observability.metrics import record_cleanup
from idempotent_coordinator.storage.base import PersistenceStore

logger = get_logger(__name__)


async def cleanup_once(
    store: PersistenceStore,
    clock: Callable[[], datetime] = utc_now,
) -> int:
    """Run a single sweep and return the number of records removed."""
    count = await store.cleanup_expired(clock())
    record_cleanup(count)
    if count > 0:
        logger.info("cleanup.completed", records_removed=count)
    else:
        logger.debug("cleanup.completed", records_removed=0)
    return count


async def cleanup_loop(
    store: PersistenceStore,
    interval_seconds: float = 300,
    stop_event: asyncio.Event | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    """Background task that periodically removes expired records.

    The loop can be stopped by setting the stop_event.

    Args:
        store: Persistence store to sweep
        interval_seconds: Time between cleanup runs (default 300s = 5 minutes)
        stop_event: Event to signal the loop to stop (optional)
        clock: Source of the current time for expiry decisions
    """
    if stop_event is None:
        stop_event = asyncio.Event()

    logger.info("cleanup.started", interval_seconds=interval_seconds)

    while not stop_event.is_set():
        try:
            await cleanup_once(store, clock)
        except Exception as e:
            logger.error(
                "cleanup.failed",
                error=str(e),
                error_type=type(e).__name__,
            )

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue

    logger.info("cleanup.stopped")


async def start_cleanup_task(
    store: PersistenceStore,
    interval_seconds: float = 300,
    clock: Callable[[], datetime] = utc_now,
) -> asyncio.Task[None]:
    """Start the cleanup loop as an asyncio Task.

    Returns:
        The running task; pass it to :func:`stop_cleanup_task` on shutdown.
    """
    stop_event = asyncio.Event()

    task = asyncio.create_task(
        cleanup_loop(
            store=store,
            interval_seconds=interval_seconds,
            stop_event=stop_event,
            clock=clock,
        )
    )
    task._stop_event = stop_event  # type: ignore[attr-defined]

    return task


async def stop_cleanup_task(task: asyncio.Task[None]) -> None:
    """Signal the cleanup task to stop and wait for it."""
    stop_event: asyncio.Event | None = getattr(task, "_stop_event", None)

    if stop_event:
        stop_event.set()

    try:
        await asyncio.wait_for(task, timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("cleanup.stop_timeout", message="Cleanup task did not stop in time")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            logger.debug("cleanup.cancelled")
