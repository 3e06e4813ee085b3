"""Configuration module for the idempotency coordinator.

This module provides the IdempotencyConfig class that controls how idempotency
keys are derived from a document, how long records live, whether payloads are
validated and whether a per-process cache is used.

Example:
    Basic usage with defaults:

        >>> config = IdempotencyConfig()
        >>> config.expiration_seconds
        3600

    Custom configuration:

        >>> config = IdempotencyConfig(
        ...     event_key_path="body.order_id",
        ...     payload_validation_path="body.amount",
        ...     fail_on_missing_key=True,
        ...     use_local_cache=True,
        ... )

    Loading from environment:

        >>> import os
        >>> os.environ['IDEMPOTENCY_EVENT_KEY_PATH'] = 'headers."Idempotency-Key"'
        >>> os.environ['IDEMPOTENCY_EXPIRATION_SECONDS'] = '600'
        >>> config = IdempotencyConfig.from_env()
"""

import hashlib
import os
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

# Valid HTTP methods for the ASGI adapter
VALID_HTTP_METHODS = {
    "GET",
    "HEAD",
    "POST",
    "PUT",
    "DELETE",
    "CONNECT",
    "OPTIONS",
    "TRACE",
    "PATCH",
}

MAX_EXPIRATION_SECONDS = 604800

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class IdempotencyConfig(BaseModel):
    """Configuration for the idempotency coordinator.

    This immutable configuration class defines how idempotency keys are built
    and how records are stored and cached.

    Attributes:
        event_key_path: JMESPath expression selecting the key material from the
            document. None means the whole document is hashed.
        payload_validation_path: JMESPath expression selecting the part of the
            document that must match on a replay. None disables validation.
        fail_on_missing_key: Raise IdempotencyKeyError when the key path yields
            nothing instead of hashing the whole document. Default is False.
        use_local_cache: Keep completed records in a per-process LRU cache.
            Default is False.
        local_cache_capacity: Maximum number of records held by the local cache.
            Default is 256.
        expiration_seconds: Time-to-live of a completed record, in seconds.
            Must be between 1 and 604800 (7 days). Default is 3600 (1 hour).
        in_progress_expiration_seconds: Time-to-live of an in-progress record.
            None means the same as expiration_seconds. This is how long a
            crashed holder can block the key.
        hash_function: Name of the hashlib algorithm used for key material
            and payload hashes. Default is "md5".
        enabled: When False the ``with_idempotency`` wrapper runs the work
            directly without touching the store.
        enabled_methods: HTTP methods tracked by the ASGI adapter.

    Note:
        This class is immutable (frozen=True). Create a new instance and call
        ``IdempotencyCoordinator.configure`` to change settings.
    """

    event_key_path: str | None = Field(
        default=None,
        description="JMESPath expression for the idempotency key (None = whole document)",
    )
    payload_validation_path: str | None = Field(
        default=None,
        description="JMESPath expression for payload validation (None = disabled)",
    )
    fail_on_missing_key: bool = Field(
        default=False,
        description="Raise when the key expression finds nothing",
    )
    use_local_cache: bool = Field(
        default=False,
        description="Keep completed records in a per-process LRU cache",
    )
    local_cache_capacity: int = Field(
        default=256,
        description="Maximum number of records in the local cache",
    )
    expiration_seconds: int = Field(
        default=3600,
        description="Time-to-live in seconds for completed records (1-604800)",
    )
    in_progress_expiration_seconds: int | None = Field(
        default=None,
        description="Time-to-live in seconds for in-progress records (None = expiration_seconds)",
    )
    hash_function: str = Field(
        default="md5",
        description="hashlib algorithm used for hashing key material",
    )
    enabled: bool = Field(
        default=True,
        description="Disable to run wrapped work without idempotency",
    )
    enabled_methods: list[str] | str = Field(
        default=["POST", "PUT", "PATCH", "DELETE"],
        description="HTTP methods tracked by the ASGI adapter",
    )

    model_config = {"frozen": True}

    @field_validator("event_key_path", "payload_validation_path", mode="before")
    @classmethod
    def blank_path_is_none(cls, v: Any) -> Any:
        """Treat blank expressions as "not configured"."""
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("local_cache_capacity")
    @classmethod
    def validate_local_cache_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"local_cache_capacity must be >= 1, got {v}")
        return v

    @field_validator("expiration_seconds", "in_progress_expiration_seconds")
    @classmethod
    def validate_expiration(cls, v: int | None) -> int | None:
        """Validate TTLs are within acceptable range.

        Args:
            v: TTL value in seconds.

        Returns:
            Validated TTL value.

        Raises:
            ValueError: If TTL is not between 1 and 604800 (7 days).
        """
        if v is not None and not (1 <= v <= MAX_EXPIRATION_SECONDS):
            raise ValueError(
                f"expiration must be between 1 and {MAX_EXPIRATION_SECONDS} (7 days), got {v}"
            )
        return v

    @field_validator("hash_function")
    @classmethod
    def validate_hash_function(cls, v: str) -> str:
        """Validate the hash algorithm is available in hashlib.

        Example:
            >>> IdempotencyConfig(hash_function="SHA256").hash_function
            'sha256'
        """
        name = v.lower()
        if name not in hashlib.algorithms_available:
            raise ValueError(f"Unsupported hash_function: {v}")
        return name

    @field_validator("enabled_methods", mode="before")
    @classmethod
    def validate_enabled_methods(cls, v: Any) -> list[str]:
        """Validate and normalize enabled HTTP methods.

        Converts methods to uppercase and validates against known HTTP methods.

        Args:
            v: List of HTTP method strings or comma-separated string.

        Returns:
            List of uppercase, validated HTTP methods.

        Raises:
            ValueError: If any method is not a valid HTTP method.
        """
        if isinstance(v, str):
            # Handle comma-separated string (from environment variables)
            v = [method.strip() for method in v.split(",")]

        if not isinstance(v, list):
            raise ValueError("enabled_methods must be a list or comma-separated string")

        methods = [method.upper() for method in v]

        invalid_methods = set(methods) - VALID_HTTP_METHODS
        if invalid_methods:
            raise ValueError(
                f"Invalid HTTP methods: {', '.join(sorted(invalid_methods))}. "
                f"Valid methods are: {', '.join(sorted(VALID_HTTP_METHODS))}"
            )

        return methods

    @model_validator(mode="after")
    def validate_expiration_order(self) -> "IdempotencyConfig":
        """Reject an in-progress TTL longer than the completed TTL.

        A completion re-stamps the expiry, so a longer in-progress window
        would let a finished record expire before an abandoned one would.
        """
        if (
            self.in_progress_expiration_seconds is not None
            and self.in_progress_expiration_seconds > self.expiration_seconds
        ):
            raise ValueError(
                "in_progress_expiration_seconds must not exceed expiration_seconds"
            )
        return self

    @property
    def payload_validation_enabled(self) -> bool:
        return self.payload_validation_path is not None

    @property
    def effective_in_progress_expiration_seconds(self) -> int:
        if self.in_progress_expiration_seconds is None:
            return self.expiration_seconds
        return self.in_progress_expiration_seconds

    @classmethod
    def from_env(cls, prefix: str = "IDEMPOTENCY_") -> "IdempotencyConfig":
        """Create configuration from environment variables.

        Variable names are uppercase field names with the prefix, e.g.
        ``IDEMPOTENCY_USE_LOCAL_CACHE=true``.

        Args:
            prefix: Prefix for environment variable names. Default is "IDEMPOTENCY_".

        Returns:
            IdempotencyConfig instance populated from environment variables.

        Raises:
            ValueError: If a boolean variable has an unrecognized value.

        Note:
            Missing variables use the default values defined in the model.
        """
        config_dict: dict[str, Any] = {}

        field_types = {
            "event_key_path": str,
            "payload_validation_path": str,
            "fail_on_missing_key": bool,
            "use_local_cache": bool,
            "local_cache_capacity": int,
            "expiration_seconds": int,
            "in_progress_expiration_seconds": int,
            "hash_function": str,
            "enabled": bool,
            "enabled_methods": list,
        }

        for field_name, field_type in field_types.items():
            env_var = f"{prefix}{field_name.upper()}"
            env_value = os.environ.get(env_var)

            if env_value is None:
                continue

            if field_type is int:
                config_dict[field_name] = int(env_value)
            elif field_type is bool:
                config_dict[field_name] = _parse_bool(env_var, env_value)
            else:
                # Strings and comma-separated lists go to the validators as-is
                config_dict[field_name] = env_value

        return cls(**config_dict)

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> "IdempotencyConfig":
        """Create configuration from a dictionary.

        Args:
            config_dict: Dictionary with configuration values.

        Returns:
            IdempotencyConfig instance populated from the dictionary.

        Raises:
            ValidationError: If the dictionary contains invalid values.
        """
        return cls(**config_dict)


def _parse_bool(name: str, value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean, got {value!r}")
