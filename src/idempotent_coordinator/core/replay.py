"""Response replay for the HTTP adapter.

When the wrapped work is an HTTP handler, its result is a
:class:`StoredResponse` serialized into the record's ``response_data``.
Replaying reconstructs the response for a duplicate request:

1. Decode the base64-encoded body
2. Filter volatile headers (Date, Server, etc.)
3. Add replay-specific headers (Idempotent-Replay, Idempotency-Key)

Examples:
    Basic replay::

        from idempotent_coordinator.core.replay import replay_response
        from idempotent_coordinator.models import StoredResponse

        stored = StoredResponse(
            status=201,
            headers={"content-type": "application/json", "date": "Mon, 01 Jan 2024 00:00:00 GMT"},
            body_b64="eyJyZXN1bHQiOiAic3VjY2VzcyJ9",
        )
        response = replay_response(stored, "POST /orders#70c24d88...")
        # response.status == 201
        # response.headers["Idempotent-Replay"] == "true"
        # "date" not in response.headers
"""

from idempotent_coordinator.models import StoredResponse
from idempotent_coordinator.utils.headers import add_replay_headers, filter_response_headers


class ReplayedResponse:
    """A response reconstructed from a stored record, or freshly produced.

    Attributes:
        status: HTTP status code (e.g., 200, 404, 500)
        headers: Response headers as key-value pairs
        body: Response body as bytes
    """

    def __init__(self, status: int, headers: dict[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body


def replay_response(stored: StoredResponse, idempotency_key: str) -> ReplayedResponse:
    """Reconstruct an HTTP response from a stored response.

    Args:
        stored: The response recorded by the first invocation
        idempotency_key: The key the response was recorded under

    Returns:
        ReplayedResponse with volatile headers removed and replay headers added
    """
    headers = filter_response_headers(stored.headers)
    headers = add_replay_headers(headers, idempotency_key, is_replay=True)

    return ReplayedResponse(
        status=stored.status,
        headers=headers,
        body=stored.get_body_bytes(),
    )
