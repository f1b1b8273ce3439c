"""Custom exceptions for the idempotency gate.

This module defines the exception hierarchy used to signal conflicts,
fingerprint mismatches, invalid keys and record store failures.

Examples:
    Handling an unreachable store while claiming::

        from idempotency_gate.exceptions import StoreUnavailableError

        try:
            response = await gate.process(request, handler)
        except StoreUnavailableError as e:
            logger.error("gate.store_unavailable", error=str(e))
            return JSONResponse({"error": "Service unavailable"}, status_code=503)
"""


class IdempotencyError(Exception):
    """Base exception for all idempotency-related errors.

    Attributes:
        message: Human-readable error description.
    """

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConflictError(IdempotencyError):
    """The key is still being processed, or this caller lost the claim race.

    No store mutation happens on a conflict. The gate answers 409.

    Attributes:
        key: The idempotency key that conflicted.
    """

    def __init__(self, message: str, key: str) -> None:
        super().__init__(message)
        self.key = key


class FingerprintMismatchError(IdempotencyError):
    """A replay request does not match the request that claimed the key.

    Only raised when fingerprint verification is enabled.

    Attributes:
        key: The idempotency key.
        stored_digest: Digest captured at claim time.
        request_digest: Digest of the replaying request.
    """

    def __init__(
        self,
        message: str,
        key: str,
        stored_digest: str,
        request_digest: str,
    ) -> None:
        super().__init__(message)
        self.key = key
        self.stored_digest = stored_digest
        self.request_digest = request_digest


class InvalidKeyError(IdempotencyError):
    """The idempotency key is empty or too long."""


class StoreUnavailableError(IdempotencyError):
    """The record store could not be reached or failed an operation.

    Raised during a claim it rejects the guarded write. Raised during
    completion it is logged and swallowed by the gate.

    Attributes:
        message: Human-readable error description.
        cause: The underlying backend exception.

    Examples:
        Wrapping a driver error::

            try:
                row = await conn.fetchrow(query, key)
            except asyncpg.PostgresError as e:
                raise StoreUnavailableError(f"Failed to read key: {e}", cause=e) from e
    """

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class CompletionPersistError(IdempotencyError):
    """The outcome of a claimed request could not be cached.

    Attributes:
        key: The idempotency key whose completion was lost.
        cause: The store failure.
    """

    def __init__(self, message: str, key: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.key = key
        self.cause = cause
