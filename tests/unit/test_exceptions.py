"""Unit tests for the exception hierarchy."""

import pytest

from idempotency_gate.exceptions import (
    CompletionPersistError,
    ConflictError,
    FingerprintMismatchError,
    IdempotencyError,
    InvalidKeyError,
    StoreUnavailableError,
)


@pytest.mark.parametrize(
    "exc",
    [
        ConflictError("busy", key="k"),
        FingerprintMismatchError("differs", key="k", stored_digest="a", request_digest="b"),
        InvalidKeyError("empty"),
        StoreUnavailableError("down"),
        CompletionPersistError("lost", key="k"),
    ],
)
def test_all_errors_share_base(exc):
    assert isinstance(exc, IdempotencyError)
    assert str(exc) == exc.message


def test_conflict_error_carries_key():
    exc = ConflictError("Request is already being processed", key="payment-1")
    assert exc.key == "payment-1"


def test_mismatch_carries_digests():
    exc = FingerprintMismatchError("differs", key="k", stored_digest="aa", request_digest="bb")
    assert (exc.stored_digest, exc.request_digest) == ("aa", "bb")


def test_store_unavailable_keeps_cause():
    cause = OSError("connection refused")
    exc = StoreUnavailableError("Failed to connect", cause=cause)
    assert exc.cause is cause


def test_completion_persist_error():
    cause = StoreUnavailableError("down")
    exc = CompletionPersistError("lost", key="k", cause=cause)
    assert exc.key == "k"
    assert exc.cause is cause
    assert not isinstance(exc, StoreUnavailableError)
