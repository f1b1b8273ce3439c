"""
Pytest configuration and shared fixtures for idempotency_gate tests.
"""

from datetime import UTC, datetime, timedelta

import pytest

from idempotency_gate.fingerprint import compute_fingerprint
from idempotency_gate.models import RequestFingerprint
from idempotency_gate.storage.memory import MemoryRecordStore

EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: datetime = EPOCH) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> MemoryRecordStore:
    """A fresh memory store driven by the fake clock."""
    return MemoryRecordStore(clock=clock)


@pytest.fixture
def sample_idempotency_key() -> str:
    """Provide a sample idempotency key for tests."""
    return "test-key-12345"


@pytest.fixture
def sample_request_body() -> bytes:
    """Provide a sample request body for tests."""
    return b'{"amount": 100.5, "userId": 1}'


@pytest.fixture
def fingerprint(sample_request_body: bytes) -> RequestFingerprint:
    return compute_fingerprint("POST", "/api/payment", sample_request_body)
