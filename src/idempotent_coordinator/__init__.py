"""
Idempotency coordination for Python services.

This package guarantees that a unit of work triggered by retried or duplicated
invocations executes its side effects at most once, and that duplicates
observe the recorded outcome instead of re-running it.
"""

from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.core.coordinator import IdempotencyCoordinator, InvocationState
from idempotent_coordinator.core.middleware import with_idempotency
from idempotent_coordinator.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyConfigurationError,
    IdempotencyDocumentError,
    IdempotencyError,
    IdempotencyInconsistentStateError,
    IdempotencyItemAlreadyExistsError,
    IdempotencyItemNotFoundError,
    IdempotencyKeyError,
    IdempotencyPersistenceLayerError,
    IdempotencyValidationError,
)
from idempotent_coordinator.hashing import generate_hash
from idempotent_coordinator.models import DataRecord, DataRecordStatus, StoredResponse

__version__ = "0.1.0"

__all__ = [
    "DataRecord",
    "DataRecordStatus",
    "IdempotencyAlreadyInProgressError",
    "IdempotencyConfig",
    "IdempotencyConfigurationError",
    "IdempotencyDocumentError",
    "IdempotencyCoordinator",
    "IdempotencyError",
    "IdempotencyInconsistentStateError",
    "IdempotencyItemAlreadyExistsError",
    "IdempotencyItemNotFoundError",
    "IdempotencyKeyError",
    "IdempotencyPersistenceLayerError",
    "IdempotencyValidationError",
    "InvocationState",
    "StoredResponse",
    "__version__",
    "generate_hash",
    "with_idempotency",
]
