"""Serialization of work results into the opaque ``response_data`` string.

Results are encoded as JSON with a pydantic ``TypeAdapter``, which handles
plain JSON values, dataclasses and pydantic models alike. Supplying the
return type makes the round trip typed: a stored result is validated back
into that type when it is replayed.

Examples:
    >>> serializer = ResponseSerializer()
    >>> serializer.deserialize(serializer.serialize({"order_id": 42}))
    {'order_id': 42}
"""

from typing import Any, Generic, TypeVar

from pydantic import TypeAdapter, ValidationError

from idempotent_coordinator.exceptions import IdempotencyPersistenceLayerError

T = TypeVar("T")


class ResponseSerializer(Generic[T]):
    """Encode and decode work results.

    Attributes:
        return_type: The type results are validated into on replay.
            ``Any`` keeps plain JSON values.
    """

    def __init__(self, return_type: type[T] | Any = Any) -> None:
        self.return_type = return_type
        self._adapter: TypeAdapter[T] = TypeAdapter(return_type)

    def serialize(self, value: T) -> str:
        return self._adapter.dump_json(value).decode("utf-8")

    def deserialize(self, data: str) -> T:
        """Decode stored response data.

        Raises:
            IdempotencyPersistenceLayerError: If the stored data cannot be
                decoded into the return type.
        """
        try:
            return self._adapter.validate_json(data)
        except ValidationError as e:
            raise IdempotencyPersistenceLayerError(
                f"Unable to decode stored response as {self.return_type!r}",
                cause=e,
            ) from e
