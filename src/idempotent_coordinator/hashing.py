"""Deterministic content hashing for idempotency keys.

Key material and validation payloads are hashed on a canonical textual form
so that logically identical values always produce the same digest:

1. Strings are hashed on their literal text (no quoting)
2. ``None``, booleans and numbers use their JSON literal (``null``, ``true``, ``42``)
3. Mappings and sequences use compact JSON with sorted keys
4. Pydantic models are dumped to JSON-compatible data first

The digest is rendered as lowercase hex. The default algorithm is MD5, a
128-bit content hash; any ``hashlib`` algorithm name can be configured.

Examples:
    >>> generate_hash("Lambda rocks")
    '70c24d88041893f7fbab4105b76fd9e1'
    >>> generate_hash({"b": 1, "a": 2}) == generate_hash({"a": 2, "b": 1})
    True
"""

import hashlib
import json
from typing import Any

from pydantic import BaseModel

DEFAULT_HASH_FUNCTION = "md5"


def canonicalize(value: Any) -> str:
    """Render a value in its canonical textual form.

    Args:
        value: A JSON-compatible value, pydantic model, or string.

    Returns:
        The canonical text that is fed to the hash function.

    Raises:
        TypeError: If the value contains objects that cannot be encoded as JSON.

    Examples:
        >>> canonicalize("abc")
        'abc'
        >>> canonicalize(None)
        'null'
        >>> canonicalize({"b": [1, 2], "a": True})
        '{"a":true,"b":[1,2]}'
    """
    if isinstance(value, str):
        return value
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    # sort_keys and separators keep the output stable across calls
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def generate_hash(value: Any, hash_function: str = DEFAULT_HASH_FUNCTION) -> str:
    """Compute the hex digest of a value's canonical form.

    Args:
        value: The value to hash.
        hash_function: Name of a ``hashlib`` algorithm. Default is "md5".

    Returns:
        Lowercase hexadecimal digest.

    Raises:
        ValueError: If the hash algorithm is not available.
    """
    hasher = hashlib.new(hash_function)
    hasher.update(canonicalize(value).encode("utf-8"))
    return hasher.hexdigest()
