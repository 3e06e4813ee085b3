"""Response header handling for recorded HTTP responses.

A recorded response is replayed long after it was produced, possibly through a
different server instance. Hop-by-hop and per-connection headers describe the
first delivery only, so they are stripped before the response is stored.
"""

from collections.abc import Iterable, Mapping

REPLAY_HEADER = "Idempotent-Replay"
KEY_HEADER = "Idempotency-Key"

# Never recorded: connection-level or recomputed by the server on delivery
VOLATILE_HEADERS = frozenset(
    {
        "connection",
        "content-length",
        "date",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "proxy-connection",
        "server",
        "trailer",
        "transfer-encoding",
        "upgrade",
    }
)

# Freshness and session headers, dropped only on request
OPTIONAL_VOLATILE_HEADERS = frozenset({"age", "etag", "expires", "last-modified", "set-cookie"})


def filter_response_headers(
    headers: Mapping[str, str],
    remove_cookies: bool = False,
    additional_volatile: Iterable[str] | None = None,
) -> dict[str, str]:
    """Return a copy of ``headers`` without volatile entries.

    Matching is case-insensitive; kept headers retain their original casing.

    >>> filter_response_headers({"Content-Type": "application/json", "Date": "today"})
    {'Content-Type': 'application/json'}
    """
    dropped = set(VOLATILE_HEADERS)
    if remove_cookies:
        dropped |= OPTIONAL_VOLATILE_HEADERS
    if additional_volatile:
        dropped |= {name.lower() for name in additional_volatile}

    return {name: value for name, value in headers.items() if name.lower() not in dropped}


def add_replay_headers(
    headers: Mapping[str, str],
    idempotency_key: str,
    is_replay: bool = True,
) -> dict[str, str]:
    """Tag a response with the idempotency key and whether it was replayed."""
    tagged = dict(headers)
    tagged[REPLAY_HEADER] = str(is_replay).lower()
    tagged[KEY_HEADER] = idempotency_key
    return tagged
