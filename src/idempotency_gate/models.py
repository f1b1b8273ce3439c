"""Core type definitions for the idempotency gate.

This module provides the data structures shared by the record stores, the
request gate and the reaper: record states, captured request fingerprints,
cached responses, idempotency records and claim results.

Examples:
    Creating a freshly claimed record::

        from datetime import UTC, datetime
        from idempotency_gate.fingerprint import compute_fingerprint
        from idempotency_gate.models import IdempotencyRecord

        record = IdempotencyRecord.new_processing(
            key="payment-123",
            fingerprint=compute_fingerprint("POST", "/api/payment", b"{}"),
            now=datetime.now(UTC),
            ttl_seconds=86400,
        )

    Caching a response::

        response = StoredResponse.from_body(
            status=201,
            headers={"content-type": "application/json"},
            body=b'{"id": 1}',
        )
"""

import base64
from datetime import datetime, timedelta
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator


class RecordStatus(str, Enum):
    """Processing status of an idempotency record.

    Attributes:
        PENDING: Reserved. Never written by the gate.
        PROCESSING: The key is claimed and the handler has not reported back.
        COMPLETED: The handler produced an outcome and it is cached.
        FAILED: The handler raised and the key was released for re-execution.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ClaimKind(str, Enum):
    """Outcome of trying to claim a key."""

    NEW = "new"
    REPLAY = "replay"
    CONFLICT = "conflict"


class RequestFingerprint(BaseModel):
    """Method, path and serialized body of the request that claimed a key.

    Attributes:
        method: Upper-cased HTTP method.
        path: Request path as received.
        query_string: Canonical (sorted) query string.
        body: Request body as text.
        digest: SHA-256 over the canonical request components (64 hex chars).
    """

    method: str = Field(..., min_length=1, max_length=16)
    path: str = Field(..., min_length=1)
    query_string: str = ""
    body: str = ""
    digest: str = Field(..., pattern=r"^[a-f0-9]{64}$")

    def matches(self, other: "RequestFingerprint") -> bool:
        return self.digest == other.digest


class StoredResponse(BaseModel):
    """A cached response replayed for duplicate requests.

    The body is base64-encoded so binary payloads survive every backend.

    Attributes:
        status: HTTP status code.
        headers: Response headers, volatile ones already removed.
        body_b64: Base64-encoded response body.
    """

    status: int = Field(..., ge=100, le=599)
    headers: dict[str, str] = Field(default_factory=dict)
    body_b64: str

    @field_validator("body_b64")
    @classmethod
    def validate_base64(cls, v: str) -> str:
        """Validate that the body is properly base64-encoded.

        Raises:
            ValueError: If the string is not valid base64.
        """
        try:
            base64.b64decode(v, validate=True)
        except Exception as e:
            raise ValueError(f"Invalid base64 encoding: {e}") from e
        return v

    @classmethod
    def from_body(
        cls, status: int, body: bytes, headers: dict[str, str] | None = None
    ) -> "StoredResponse":
        return cls(
            status=status,
            headers=headers or {},
            body_b64=base64.b64encode(body).decode("ascii"),
        )

    def get_body_bytes(self) -> bytes:
        """Decode and return the response body as bytes.

        Examples:
            >>> StoredResponse(status=200, body_b64="SGVsbG8=").get_body_bytes()
            b'Hello'
        """
        return base64.b64decode(self.body_b64)


class IdempotencyRecord(BaseModel):
    """Complete record of one idempotency key.

    Attributes:
        key: The client-supplied idempotency key.
        fingerprint: Captured request that claimed the key.
        status: Current processing status.
        response: Cached response, set only once the record is completed.
        created_at: When the key was claimed.
        updated_at: Last status transition.
        expires_at: After this instant the record is invisible to lookups.
    """

    key: str = Field(..., min_length=1, max_length=255)
    fingerprint: RequestFingerprint
    status: RecordStatus
    response: StoredResponse | None = None
    created_at: datetime
    updated_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def validate_lifecycle(self) -> "IdempotencyRecord":
        """Enforce the record invariants.

        Raises:
            ValueError: If a response is attached to a non-completed record,
                or if expires_at is not after created_at.
        """
        if self.response is not None and self.status != RecordStatus.COMPLETED:
            raise ValueError("response may only be set on a completed record")
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        return self

    @classmethod
    def new_processing(
        cls,
        key: str,
        fingerprint: RequestFingerprint,
        now: datetime,
        ttl_seconds: int,
    ) -> "IdempotencyRecord":
        """Build the record inserted when a key is claimed."""
        return cls(
            key=key,
            fingerprint=fingerprint,
            status=RecordStatus.PROCESSING,
            response=None,
            created_at=now,
            updated_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )

    def is_live(self, now: datetime) -> bool:
        return self.expires_at > now


class ClaimResult(BaseModel):
    """Result of `StoreSession.try_claim`.

    Attributes:
        kind: NEW (caller owns the key), REPLAY (cached response available)
            or CONFLICT (key is being processed elsewhere).
        response: The cached response, present for REPLAY only.
        record: The record that was inserted or observed, when known.
    """

    kind: ClaimKind
    response: StoredResponse | None = None
    record: IdempotencyRecord | None = None

    @model_validator(mode="after")
    def validate_response_with_kind(self) -> "ClaimResult":
        if self.kind == ClaimKind.REPLAY and self.response is None:
            raise ValueError("response must be provided for a replay")
        if self.kind != ClaimKind.REPLAY and self.response is not None:
            raise ValueError("response is only carried by a replay")
        return self

    @classmethod
    def new(cls, record: IdempotencyRecord) -> "ClaimResult":
        return cls(kind=ClaimKind.NEW, record=record)

    @classmethod
    def replay(cls, record: IdempotencyRecord) -> "ClaimResult":
        return cls(kind=ClaimKind.REPLAY, response=record.response, record=record)

    @classmethod
    def conflict(cls, record: IdempotencyRecord | None = None) -> "ClaimResult":
        return cls(kind=ClaimKind.CONFLICT, record=record)
