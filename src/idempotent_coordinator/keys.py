"""Idempotency key derivation.

A key has the form ``"{scope}#{hash}"`` where ``scope`` is a stable operation
name (optionally extended with a sub-scope) and ``hash`` is the content hash
of the key material extracted from the document. When payload validation is
configured, a second hash is computed over the validation sub-value.
"""

import os
from typing import Any, NamedTuple

from idempotent_coordinator.config import IdempotencyConfig
from idempotent_coordinator.exceptions import IdempotencyKeyError
from idempotent_coordinator.extraction import JMESPathExtractor, KeyExtractor, to_document
from idempotent_coordinator.hashing import generate_hash
from idempotent_coordinator.observability.logging import get_logger

logger = get_logger(__name__)

SCOPE_SEPARATOR = "."
KEY_SEPARATOR = "#"
FUNCTION_NAME_ENV = "IDEMPOTENCY_FUNCTION_NAME"
DEFAULT_SCOPE = "default"


def default_scope() -> str:
    """Scope used when the caller does not name the operation."""
    return os.environ.get(FUNCTION_NAME_ENV) or DEFAULT_SCOPE


def join_scope(scope: str, sub_scope: str | None = None) -> str:
    """Join a scope and an optional sub-scope.

    Examples:
        >>> join_scope("orders", "create")
        'orders.create'
        >>> join_scope("orders", None)
        'orders'
    """
    if sub_scope and sub_scope.strip():
        return f"{scope}{SCOPE_SEPARATOR}{sub_scope.strip()}"
    return scope


class BuiltKey(NamedTuple):
    """Result of :meth:`KeyBuilder.build`."""

    idempotency_key: str
    validation_hash: str


class KeyBuilder:
    """Combine a scope with hashed key material.

    Attributes:
        scope: Key prefix shared by every key this builder produces.
        config: Configuration providing the key/validation paths and hashing.
        extractor: Component evaluating the configured paths.
    """

    def __init__(
        self,
        scope: str,
        config: IdempotencyConfig,
        extractor: KeyExtractor | None = None,
    ) -> None:
        if not scope:
            raise ValueError("scope must be a non-empty string")
        self.scope = scope
        self.config = config
        self.extractor = extractor or JMESPathExtractor()

    def generate_hash(self, value: Any) -> str:
        return generate_hash(value, self.config.hash_function)

    def build(self, document: Any) -> BuiltKey:
        """Derive the idempotency key and validation hash for a document.

        Args:
            document: The request document.

        Returns:
            BuiltKey with the key and the validation hash ("" if disabled).

        Raises:
            IdempotencyKeyError: If key material is missing and
                ``fail_on_missing_key`` is enabled.
        """
        return BuiltKey(self.build_key(document), self.build_validation_hash(document))

    def build_key(self, document: Any) -> str:
        key_material = self._extract_key_material(document)
        return f"{self.scope}{KEY_SEPARATOR}{self.generate_hash(key_material)}"

    def build_validation_hash(self, document: Any) -> str:
        path = self.config.payload_validation_path
        if path is None:
            return ""
        _found, value = self.extractor.extract(document, path)
        return self.generate_hash(value)

    def _extract_key_material(self, document: Any) -> Any:
        path = self.config.event_key_path
        if path is None:
            return to_document(document)

        found, value = self.extractor.extract(document, path)
        if found:
            return value

        if self.config.fail_on_missing_key:
            raise IdempotencyKeyError(
                f"No data found to create a hashed idempotency key using {path!r}"
            )

        logger.warning("key.missing", scope=self.scope, event_key_path=path)
        return to_document(document)
