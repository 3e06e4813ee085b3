"""ASGI middleware adapter for FastAPI and Starlette applications.

The middleware turns every request with a tracked method into an
idempotent invocation:

1. Builds a document from the request (method, path, query, headers, JSON body)
2. Runs the downstream application through an :class:`IdempotencyCoordinator`
   scoped to ``"{METHOD} {path}"``
3. Records the response as a :class:`StoredResponse` and replays it for
   duplicates with ``Idempotent-Replay: true``

Without an ``event_key_path`` the key is derived from the method, path and
body only (:data:`DEFAULT_EVENT_KEY_PATH`). Per-request headers such as
``x-request-id`` or ``traceparent`` therefore do not split retries into
separate keys; headers and query parameters remain addressable by an
explicit path such as ``headers."idempotency-key"``.

Coordinator errors map to HTTP statuses: a duplicate of an in-flight request
gets 409 with ``Retry-After``, a payload mismatch 422, missing key
material or a malformed body 400. Responses with a 5xx status are returned
but not recorded, so the client may retry.

Examples:
    FastAPI integration::

        from fastapi import FastAPI
        from idempotent_coordinator import IdempotencyConfig
        from idempotent_coordinator.adapters.asgi import ASGIIdempotencyMiddleware
        from idempotent_coordinator.storage import MemoryPersistenceStore

        app = FastAPI()
        app.add_middleware(
            ASGIIdempotencyMiddleware,
            store=MemoryPersistenceStore(),
            config=IdempotencyConfig(event_key_path='headers."idempotency-key"'),
        )

        @app.post("/api/payments")
        async def create_payment(data: PaymentData):
            # This endpoint is now idempotent
            return {"status": "success"}

    Starlette integration::

        from starlette.applications import Starlette
        from starlette.middleware import Middleware

        middleware = [Middleware(ASGIIdempotencyMiddleware, store=store, config=config)]
        app = Starlette(routes=routes, middleware=middleware)
"""

import json
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from idempotent_coordinator.cache import LRUCache
from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.core.coordinator import IdempotencyCoordinator, utc_now
from idempotent_coordinator.core.replay import ReplayedResponse, replay_response
from idempotent_coordinator.exceptions import (
    IdempotencyAlreadyInProgressError,
    IdempotencyDocumentError,
    IdempotencyError,
    IdempotencyKeyError,
    IdempotencyValidationError,
)
from idempotent_coordinator.extraction import KeyExtractor
from idempotent_coordinator.models import DataRecord, StoredResponse
from idempotent_coordinator.observability.logging import get_logger
from idempotent_coordinator.serialization import ResponseSerializer
from idempotent_coordinator.storage.base import PersistenceStore
from idempotent_coordinator.utils.headers import add_replay_headers, filter_response_headers

logger = get_logger(__name__)

DEFAULT_EVENT_KEY_PATH = "[method, path, body]"


class _UnrecordedResponse(Exception):
    """Raised from the work to release the key while still answering the client."""

    def __init__(self, response: StoredResponse) -> None:
        super().__init__(f"Response with status {response.status} is not recorded")
        self.response = response


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware for idempotency handling.

    One coordinator is created per ``(method, path)`` pair; they share the
    store and, when enabled, a single local cache.

    Attributes:
        store: Persistence store for idempotency records
        config: Configuration object
        retry_after_seconds: Value of the Retry-After header on 409 responses
    """

    def __init__(
        self,
        app: Any,
        store: PersistenceStore,
        config: IdempotencyConfig | None = None,
        *,
        extractor: KeyExtractor | None = None,
        clock: Callable[[], datetime] | None = None,
        retry_after_seconds: int = 1,
    ) -> None:
        """Initialize the ASGI middleware.

        Args:
            app: The ASGI application
            store: Persistence store for idempotency records
            config: Configuration object (uses defaults if not provided). When
                it names no ``event_key_path``, :data:`DEFAULT_EVENT_KEY_PATH`
                is used.
            extractor: Key extractor shared by all coordinators
            clock: Source of the current time (defaults to UTC wall clock)
            retry_after_seconds: Retry-After value sent with 409 responses
        """
        super().__init__(app)
        self.store = store
        self.config = config or IdempotencyConfig()
        if self.config.event_key_path is None:
            self.config = self.config.model_copy(update={"event_key_path": DEFAULT_EVENT_KEY_PATH})
        self.retry_after_seconds = retry_after_seconds
        self._extractor = extractor
        self._clock = clock or utc_now
        self._serializer: ResponseSerializer[StoredResponse] = ResponseSerializer(StoredResponse)
        self._cache: LRUCache[str, DataRecord] | None = (
            LRUCache(self.config.local_cache_capacity) if self.config.use_local_cache else None
        )
        self._coordinators: dict[str, IdempotencyCoordinator] = {}

    def coordinator_for(self, method: str, path: str) -> IdempotencyCoordinator:
        """Return the coordinator scoped to a route, creating it on first use."""
        scope = f"{method.upper()} {path}"
        coordinator = self._coordinators.get(scope)
        if coordinator is None:
            coordinator = IdempotencyCoordinator(
                self.store,
                self.config,
                scope=scope,
                extractor=self._extractor,
                cache=self._cache,
                serializer=self._serializer,
            )
            self._coordinators[scope] = coordinator
        return coordinator

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Process a request with idempotency handling."""
        if not self.config.enabled or request.method.upper() not in self.config.enabled_methods:
            return await call_next(request)

        coordinator = self.coordinator_for(request.method, request.url.path)
        document = await self._build_document(request)
        executed = False

        async def handler() -> StoredResponse:
            nonlocal executed
            executed = True
            response = await call_next(request)
            stored = await self._record_response(response)
            if stored.status >= 500:
                raise _UnrecordedResponse(stored)
            return stored

        try:
            stored = await coordinator.execute(document, handler, clock=self._clock)
        except _UnrecordedResponse as e:
            return self._convert_response(
                ReplayedResponse(
                    status=e.response.status,
                    headers=e.response.headers,
                    body=e.response.get_body_bytes(),
                )
            )
        except IdempotencyAlreadyInProgressError as e:
            return self._error_response(
                409,
                f"Request conflict: {e.message}",
                {"Retry-After": str(self.retry_after_seconds), "Idempotency-Key": e.key},
            )
        except IdempotencyValidationError as e:
            return self._error_response(422, f"Idempotency key reused: {e.message}")
        except IdempotencyKeyError as e:
            return self._error_response(400, f"Missing idempotency key: {e.message}")
        except IdempotencyDocumentError as e:
            return self._error_response(400, f"Malformed request: {e.message}")
        except IdempotencyError as e:
            logger.error("asgi.idempotency_error", error=e.message, error_type=type(e).__name__)
            return self._error_response(500, f"Idempotency error: {e.message}")

        idempotency_key = coordinator.key_builder.build_key(document)
        if executed:
            headers = add_replay_headers(stored.headers, idempotency_key, is_replay=False)
            return self._convert_response(
                ReplayedResponse(status=stored.status, headers=headers, body=stored.get_body_bytes())
            )
        return self._convert_response(replay_response(stored, idempotency_key))

    async def _build_document(self, request: Request) -> dict[str, Any]:
        raw = await request.body()
        body: Any = None
        if raw:
            try:
                body = json.loads(raw)
            except ValueError:
                body = raw.decode("utf-8", errors="replace")

        return {
            "method": request.method.upper(),
            "path": request.url.path,
            "query": dict(request.query_params),
            "headers": {key.lower(): value for key, value in request.headers.items()},
            "body": body,
        }

    async def _record_response(self, response: Response) -> StoredResponse:
        body = b""
        if hasattr(response, "body_iterator"):
            async for chunk in response.body_iterator:
                if isinstance(chunk, str):
                    body += chunk.encode("utf-8")
                else:
                    body += bytes(chunk)
        else:
            body = bytes(response.body)

        return StoredResponse.from_body(
            status=response.status_code,
            headers=filter_response_headers(dict(response.headers)),
            body=body,
        )

    def _convert_response(self, response: ReplayedResponse) -> Response:
        return Response(
            content=response.body,
            status_code=response.status,
            headers=response.headers,
        )

    def _error_response(
        self,
        status: int,
        message: str,
        headers: dict[str, str] | None = None,
    ) -> Response:
        return Response(
            content=message.encode("utf-8"),
            status_code=status,
            headers={"content-type": "text/plain", **(headers or {})},
        )
