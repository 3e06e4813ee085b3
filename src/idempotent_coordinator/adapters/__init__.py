"""Framework adapters for the idempotency coordinator.

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.

The adapters turn framework requests into documents for the coordinator and
record framework responses as replayable results.
"""

from idempotent_coordinator.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
