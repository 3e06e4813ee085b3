"""Observability utilities for the idempotency coordinator.

This package provides monitoring and debugging capabilities:
- Prometheus metrics for invocation outcomes, cache behavior and cleanup
- Structured logging with contextual information
"""

from idempotent_coordinator.observability.logging import (
    bound_idempotency_key,
    configure_logging,
    get_logger,
)
from idempotent_coordinator.observability.metrics import (
    record_cache_lookup,
    record_cleanup,
    record_execution_time,
    record_invocation,
    record_store_conflict,
)

__all__ = [
    "bound_idempotency_key",
    "configure_logging",
    "get_logger",
    "record_cache_lookup",
    "record_cleanup",
    "record_execution_time",
    "record_invocation",
    "record_store_conflict",
]
