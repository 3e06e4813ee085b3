"""Prometheus metrics for the idempotency coordinator.

Metrics include:

- Invocation outcomes (executed, replayed, in_progress, failed, ...)
- Local cache lookups by result (hit, miss, expired)
- Conditional-create conflicts reported by the store
- Execution time of the wrapped work
- Cleanup operation tracking

Examples:
    >>> record_invocation("replayed")
    >>> record_cache_lookup("hit")
    >>> record_execution_time(0.150)
"""

from prometheus_client import Counter, Histogram

# Labels: outcome (executed, replayed, in_progress, validation_failed, failed, disabled)
invocations_total = Counter(
    "idempotency_invocations_total",
    "Total number of invocations handled by the idempotency coordinator",
    ["outcome"],
)

# Labels: result (hit, miss, expired)
cache_lookups_total = Counter(
    "idempotency_cache_lookups_total",
    "Local cache lookups by result",
    ["result"],
)

store_conflicts_total = Counter(
    "idempotency_store_conflicts_total",
    "Conditional creates rejected because a live record already exists",
)

# Only tracks executions of the wrapped work, not replays
execution_time_seconds = Histogram(
    "idempotency_execution_time_seconds",
    "Execution time of the wrapped work in seconds",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

cleanup_operations = Counter(
    "idempotency_cleanup_operations_total",
    "Total number of cleanup operations performed",
)

cleanup_records_removed = Counter(
    "idempotency_cleanup_records_removed_total",
    "Total number of expired records removed by cleanup",
)


def record_invocation(outcome: str) -> None:
    invocations_total.labels(outcome=outcome).inc()


def record_cache_lookup(result: str) -> None:
    cache_lookups_total.labels(result=result).inc()


def record_store_conflict() -> None:
    store_conflicts_total.inc()


def record_execution_time(seconds: float) -> None:
    """Record how long the wrapped work ran.

    Args:
        seconds: Wall-clock execution time in seconds
    """
    execution_time_seconds.observe(seconds)


def record_cleanup(records_removed: int) -> None:
    """Record a cleanup operation.

    Args:
        records_removed: Number of expired records removed
    """
    cleanup_operations.inc()
    cleanup_records_removed.inc(records_removed)
