"""Scenario 3: TTL expiry

Once a record's TTL has passed, the key behaves as if it was never used:
the next request executes again even before the reaper runs, and the reaper
removes the stale rows afterwards.
"""

import pytest

from idempotency_gate.config import GateConfig
from idempotency_gate.core.gate import GuardedRequest, RequestGate
from idempotency_gate.core.reaper import ExpiryReaper
from idempotency_gate.core.replay import json_response
from idempotency_gate.models import RecordStatus


@pytest.fixture
def gate(store) -> RequestGate:
    return RequestGate(store, GateConfig(ttl_seconds=1))


def payment(key: str = "ttl-1") -> GuardedRequest:
    return GuardedRequest("POST", "/api/payment", {"Idempotency-Key": key}, b'{"amount": 1}')


class Handler:
    def __init__(self) -> None:
        self.calls = 0

    async def __call__(self, request):
        self.calls += 1
        return json_response(201, {"execution": self.calls})


@pytest.mark.asyncio
async def test_replay_within_ttl(gate, clock):
    handler = Handler()
    await gate.process(payment(), handler)

    clock.advance(0.5)
    replay = await gate.process(payment(), handler)

    assert replay.json() == {"execution": 1}
    assert handler.calls == 1


@pytest.mark.asyncio
async def test_new_execution_after_expiry(gate, store, clock):
    handler = Handler()
    await gate.process(payment(), handler)
    first_created = store.peek("ttl-1").created_at

    clock.advance(2)
    again = await gate.process(payment(), handler)

    assert again.json() == {"execution": 2}
    assert again.headers["Idempotent-Replay"] == "false"
    assert handler.calls == 2
    record = store.peek("ttl-1")
    assert record.created_at > first_created
    assert record.status == RecordStatus.COMPLETED


@pytest.mark.asyncio
async def test_reaper_removes_expired_records(gate, store, clock):
    handler = Handler()
    for i in range(3):
        await gate.process(payment(f"ttl-{i}"), handler)

    clock.advance(2)
    removed = await ExpiryReaper(store).run_once()

    assert removed == 3
    assert len(store) == 0


@pytest.mark.asyncio
async def test_reaper_keeps_live_records(store, clock):
    short = RequestGate(store, GateConfig(ttl_seconds=1))
    long = RequestGate(store, GateConfig(ttl_seconds=3600))
    handler = Handler()

    await short.process(payment("short"), handler)
    await long.process(payment("long"), handler)

    clock.advance(2)
    await ExpiryReaper(store).run_once()

    assert store.peek("short") is None
    assert store.peek("long").status == RecordStatus.COMPLETED
