"""Core type definitions and models for the idempotency coordinator.

This module provides the data structures persisted by the coordinator: the
record status, the data record itself and the stored HTTP response used by
the ASGI adapter.

Examples:
    Creating an in-progress record::

        from datetime import UTC, datetime
        from idempotent_coordinator.models import DataRecord, DataRecordStatus, epoch_seconds

        now = datetime.now(UTC)
        record = DataRecord(
            idempotency_key="orders.create#70c24d88041893f7fbab4105b76fd9e1",
            status=DataRecordStatus.IN_PROGRESS,
            expiry_timestamp=epoch_seconds(now) + 3600,
        )

    Completing it::

        completed = record.complete(
            response_data='{"order_id": 42}',
            expiry_timestamp=epoch_seconds(now) + 3600,
        )
        completed.get_status(now)  # DataRecordStatus.COMPLETED
"""

import base64
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


def epoch_seconds(now: datetime) -> int:
    """Convert a datetime to whole epoch seconds.

    Naive datetimes are interpreted as UTC.

    Examples:
        >>> epoch_seconds(datetime(1970, 1, 1, 0, 1, tzinfo=UTC))
        60
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    return int(now.timestamp())


class DataRecordStatus(str, Enum):
    """Status of an idempotency record.

    Attributes:
        IN_PROGRESS: Record installed before the wrapped work runs.
        COMPLETED: Work finished and its result is attached.
        EXPIRED: Derived at read time once the expiry has passed. Never stored.
    """

    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    EXPIRED = "EXPIRED"


class DataRecord(BaseModel):
    """Persisted unit of idempotency state.

    The stored ``status`` is never trusted past ``expiry_timestamp``: use
    :meth:`get_status` to obtain the effective status for a given instant.
    Records are immutable; transitions return new records.

    Attributes:
        idempotency_key: Identity of the record, ``"{scope}#{hash}"``.
        status: Stored status, IN_PROGRESS or COMPLETED.
        expiry_timestamp: Epoch seconds after which the record is expired.
        response_data: Serialized result, present iff status is COMPLETED.
        payload_hash: Hash of the validated sub-document, "" when disabled.
    """

    idempotency_key: str = Field(
        ...,
        description="Identity of the record",
        min_length=1,
        examples=["orders.create#70c24d88041893f7fbab4105b76fd9e1"],
    )
    status: DataRecordStatus = Field(
        ...,
        description="Stored status of the record",
        examples=[DataRecordStatus.IN_PROGRESS, DataRecordStatus.COMPLETED],
    )
    expiry_timestamp: int = Field(
        ...,
        description="Epoch seconds after which the record is treated as absent",
        ge=0,
        examples=[1700003600],
    )
    response_data: str | None = Field(
        default=None,
        description="Serialized result of the work (COMPLETED only)",
    )
    payload_hash: str = Field(
        default="",
        description="Hash of the validated payload, empty when validation is disabled",
    )

    model_config = {"frozen": True}

    @field_validator("status")
    @classmethod
    def validate_stored_status(cls, v: DataRecordStatus) -> DataRecordStatus:
        """EXPIRED is computed from the expiry, it cannot be persisted."""
        if v == DataRecordStatus.EXPIRED:
            raise ValueError("EXPIRED is a derived status and cannot be stored")
        return v

    @model_validator(mode="after")
    def validate_response_data(self) -> "DataRecord":
        """Couple response_data presence to the COMPLETED status."""
        if self.status == DataRecordStatus.COMPLETED and self.response_data is None:
            raise ValueError("COMPLETED records must carry response_data")
        if self.status == DataRecordStatus.IN_PROGRESS and self.response_data is not None:
            raise ValueError("IN_PROGRESS records cannot carry response_data")
        return self

    def is_expired(self, now: datetime) -> bool:
        """Return True if ``now`` is past the record's expiry."""
        return epoch_seconds(now) > self.expiry_timestamp

    def get_status(self, now: datetime) -> DataRecordStatus:
        """Effective status at ``now``, EXPIRED overriding the stored value."""
        if self.is_expired(now):
            return DataRecordStatus.EXPIRED
        return self.status

    def complete(self, response_data: str, expiry_timestamp: int) -> "DataRecord":
        """Return the COMPLETED successor of this record."""
        return DataRecord(
            idempotency_key=self.idempotency_key,
            status=DataRecordStatus.COMPLETED,
            expiry_timestamp=expiry_timestamp,
            response_data=response_data,
            payload_hash=self.payload_hash,
        )


class StoredResponse(BaseModel):
    """A recorded HTTP response that can be replayed for duplicate requests.

    The ASGI adapter serializes this model into ``DataRecord.response_data``.
    The body is base64-encoded to safely handle binary content.

    Attributes:
        status: HTTP status code (e.g., 200, 201, 400).
        headers: HTTP response headers as key-value pairs.
        body_b64: Base64-encoded response body.

    Examples:
        Decoding the response body::

            response = StoredResponse(status=200, headers={}, body_b64="SGVsbG8=")
            response.get_body_bytes()  # b'Hello'
    """

    status: int = Field(
        ...,
        description="HTTP status code",
        ge=100,
        le=599,
        examples=[200, 201, 400],
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="HTTP response headers",
        examples=[{"content-type": "application/json"}],
    )
    body_b64: str = Field(
        ...,
        description="Base64-encoded response body",
        examples=["eyJyZXN1bHQiOiAic3VjY2VzcyJ9"],
    )

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except ValueError as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @classmethod
    def from_body(cls, status: int, headers: dict[str, str], body: bytes) -> "StoredResponse":
        return cls(
            status=status,
            headers=headers,
            body_b64=base64.b64encode(body).decode("ascii"),
        )

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes.

        Examples:
            >>> StoredResponse(status=200, headers={}, body_b64="SGVsbG8=").get_body_bytes()
            b'Hello'
        """
        return base64.b64decode(self.body_b64)
