"""Utility modules for recorded HTTP responses."""

from .headers import (
    VOLATILE_HEADERS,
    add_replay_headers,
    filter_response_headers,
)

__all__ = [
    "filter_response_headers",
    "add_replay_headers",
    "VOLATILE_HEADERS",
]
