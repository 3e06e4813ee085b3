"""Custom exceptions for the idempotency coordinator.

This module defines the exception hierarchy used throughout the coordinator
to signal the outcome of each idempotency step: missing key material,
duplicate in-flight invocations, payload mismatches and storage failures.

Examples:
    Handling a duplicate invocation::

        from idempotent_coordinator.exceptions import IdempotencyItemAlreadyExistsError

        try:
            await coordinator.save_in_progress(event, now)
        except IdempotencyItemAlreadyExistsError:
            # Another invocation owns this key, do not run the work
            record = await coordinator.get_record(event, now)

    Handling a storage error::

        from idempotent_coordinator.exceptions import IdempotencyPersistenceLayerError

        try:
            await coordinator.save_success(event, result, now)
        except IdempotencyPersistenceLayerError as e:
            logger.error("store.failed", error=str(e), cause=repr(e.cause))
            raise
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    All exceptions raised by the coordinator inherit from this base class,
    allowing callers to catch every coordinator-specific error with a single
    except clause. Errors raised by the wrapped work are never wrapped.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        """Initialize the exception with a message.

        Args:
            message: Human-readable error description.
        """
        self.message = message
        super().__init__(message)


class IdempotencyConfigurationError(IdempotencyError):
    """The coordinator was used before it was configured, or misconfigured."""


class IdempotencyKeyError(IdempotencyError):
    """Key material is required but could not be extracted from the document.

    Raised only when ``fail_on_missing_key`` is enabled. No store access is
    attempted before this error propagates.
    """


class IdempotencyDocumentError(IdempotencyError):
    """A key or validation expression could not be evaluated against the document.

    Typically ``json_decode()`` applied to a field that is not valid JSON.
    Raised regardless of ``fail_on_missing_key``: the document is malformed,
    not merely missing key material.
    """


class IdempotencyItemAlreadyExistsError(IdempotencyError):
    """A live record already exists for this idempotency key.

    This is the expected, non-fatal signal that another invocation currently
    owns the key (or has already completed it). The caller must not run the
    work; it may fetch the record, poll, reject or enqueue.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that is already taken.
    """

    def __init__(self, message: str, key: str) -> None:
        """Initialize the error with the conflicting key.

        Args:
            message: Human-readable error description.
            key: The idempotency key that is already taken.
        """
        super().__init__(message)
        self.key = key


class IdempotencyItemNotFoundError(IdempotencyError):
    """No live record exists for the idempotency key.

    Raised by stores when a key is absent and by the coordinator when the
    stored record has expired. In the normal flow this means "no prior
    record" and is not surfaced to end users.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key that was looked up.
    """

    def __init__(self, message: str, key: str) -> None:
        """Initialize the error with the missing key.

        Args:
            message: Human-readable error description.
            key: The idempotency key that was looked up.
        """
        super().__init__(message)
        self.key = key


class IdempotencyValidationError(IdempotencyError):
    """Stored payload hash does not match the current request.

    The idempotency key was reused for a materially different request. The
    work is not executed.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key.
        stored_hash: The payload hash recorded by the original invocation.
        request_hash: The payload hash of the current request.
    """

    def __init__(self, message: str, key: str, stored_hash: str, request_hash: str) -> None:
        """Initialize the validation error with details.

        Args:
            message: Human-readable error description.
            key: The idempotency key.
            stored_hash: The payload hash recorded by the original invocation.
            request_hash: The payload hash of the current request.
        """
        super().__init__(message)
        self.key = key
        self.stored_hash = stored_hash
        self.request_hash = request_hash


class IdempotencyAlreadyInProgressError(IdempotencyError):
    """Another invocation is currently executing the work for this key.

    Raised by the ``with_idempotency`` wrapper when the existing record is
    still ``IN_PROGRESS``. Callers can retry after a delay.

    Attributes:
        message: Human-readable error description.
        key: The idempotency key.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class IdempotencyInconsistentStateError(IdempotencyError):
    """The store changed between the conditional create and the follow-up read.

    This happens in rare but expected cases, for example when the record
    is deleted or expires between ``save_in_progress`` and ``get_record``.
    The wrapper retries a bounded number of times before giving up.
    """


class IdempotencyPersistenceLayerError(IdempotencyError):
    """Unexpected storage backend failure.

    Raised for network, permission or malformed-data errors from the
    backing store. These are fatal for the invocation and never retried
    internally.

    Attributes:
        message: Human-readable error description.
        cause: The underlying exception that caused the failure.

    Examples:
        Raising a persistence error::

            try:
                await session.execute(stmt)
            except SQLAlchemyError as e:
                raise IdempotencyPersistenceLayerError(
                    message=f"Failed to read record: {e}",
                    cause=e,
                ) from e
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        """Initialize the persistence error with details.

        Args:
            message: Human-readable error description.
            cause: The underlying exception that caused the failure.
        """
        super().__init__(message)
        self.cause = cause
