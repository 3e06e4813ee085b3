"""Key material extraction from structured documents.

The coordinator does not care how a sub-value is located inside a document;
it consumes the :class:`KeyExtractor` protocol. The default implementation
evaluates JMESPath expressions and adds a ``json_decode()`` function for
fields whose value is itself encoded JSON (for example an HTTP body or a
queue message body).

Examples:
    Extracting a nested field from an encoded body::

        extractor = JMESPathExtractor()
        event = {"body": '{"order": {"id": "ord-1"}}'}
        extractor.extract(event, "json_decode(body).order.id")
        # (True, 'ord-1')

    Missing values::

        extractor.extract({"body": "{}"}, "json_decode(body).order.id")
        # (False, None)
"""

import json
from typing import Any, Protocol, runtime_checkable

import jmespath
from jmespath import functions
from jmespath.exceptions import JMESPathError
from jmespath.parser import ParsedResult
from pydantic import BaseModel

from idempotent_coordinator.exceptions import (
    IdempotencyConfigurationError,
    IdempotencyDocumentError,
)


@runtime_checkable
class KeyExtractor(Protocol):
    """Protocol for components that project a named sub-value out of a document."""

    def extract(self, document: Any, path: str) -> tuple[bool, Any]:
        """Evaluate ``path`` against ``document``.

        Args:
            document: The structured document (mappings, lists, scalars).
            path: The path expression.

        Returns:
            ``(found, value)``. ``found`` is False when the expression selects
            nothing, a null, or an empty string.

        Raises:
            IdempotencyDocumentError: The expression cannot be evaluated
                against this document, e.g. ``json_decode()`` of a field that
                is not valid JSON. This is independent of
                ``fail_on_missing_key``.
        """
        ...


class KeyExtractionFunctions(functions.Functions):
    """JMESPath functions available to key and validation expressions."""

    @functions.signature({"types": ["string"]})
    def _func_json_decode(self, value: str) -> Any:
        return json.loads(value)


def to_document(value: Any) -> Any:
    """Convert pydantic models to plain JSON-compatible data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return value


def is_missing(value: Any) -> bool:
    return value is None or value == ""


class JMESPathExtractor:
    """KeyExtractor backed by the ``jmespath`` library.

    Compiled expressions are cached per path, so an extractor should be
    created once per coordinator and reused.
    """

    def __init__(self) -> None:
        self._options = jmespath.Options(custom_functions=KeyExtractionFunctions())
        self._compiled: dict[str, ParsedResult] = {}

    def _compile(self, path: str) -> ParsedResult:
        expression = self._compiled.get(path)
        if expression is None:
            try:
                expression = jmespath.compile(path)
            except JMESPathError as e:
                raise IdempotencyConfigurationError(
                    f"Invalid key expression {path!r}: {e}"
                ) from e
            self._compiled[path] = expression
        return expression

    def extract(self, document: Any, path: str) -> tuple[bool, Any]:
        expression = self._compile(path)
        try:
            value = expression.search(to_document(document), options=self._options)
        except (JMESPathError, ValueError) as e:
            # json_decode() on a field that is not valid JSON
            raise IdempotencyDocumentError(f"Unable to evaluate {path!r} against document: {e}") from e
        return not is_missing(value), value
