"""Core coordination logic for idempotent invocations.

This package contains the core business logic:
- Coordinator: Invocation lifecycle (NEW -> CHECK -> IN_PROGRESS -> SUCCESS/FAILED)
- Middleware: ``with_idempotency`` wrapper for arbitrary callables
- Replay: Response reconstruction for the HTTP adapter
- Cleanup: Background sweep of expired records

The core logic is framework-agnostic and can be wrapped by adapters
for different web frameworks.
"""

from idempotent_coordinator.core.coordinator import IdempotencyCoordinator, InvocationState
from idempotent_coordinator.core.middleware import with_idempotency
from idempotent_coordinator.core.replay import replay_response

__all__ = ["IdempotencyCoordinator", "InvocationState", "replay_response", "with_idempotency"]
