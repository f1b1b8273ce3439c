"""Scenario 5: Store failures and connection discipline

- Every gate path gives back the store session it acquired
- A store outage while claiming rejects guarded writes with 503 and never
  runs the handler
- A store outage while recording the outcome still returns the real outcome
  to the client
"""

import asyncio

import pytest
from fastapi.testclient import TestClient

from demo_app import create_app
from idempotency_gate.config import GateConfig
from idempotency_gate.core.gate import GuardedRequest, RequestGate
from idempotency_gate.core.replay import json_response
from idempotency_gate.exceptions import StoreUnavailableError
from idempotency_gate.storage.memory import MemoryRecordStore, MemoryStoreSession


class OutageStore(MemoryRecordStore):
    """Memory store that can be switched off."""

    def __init__(self) -> None:
        super().__init__()
        self.down = False

    def session(self):
        if self.down:
            raise StoreUnavailableError("connection refused")
        return super().session()


def guarded(key: str = "r1", body: bytes = b"{}") -> GuardedRequest:
    return GuardedRequest("POST", "/api/payment", {"Idempotency-Key": key}, body)


async def ok(request):
    return json_response(201, {"ok": True})


@pytest.mark.asyncio
async def test_sessions_released_on_every_path(store):
    gate = RequestGate(store, GateConfig(max_body_bytes=100))
    release = asyncio.Event()

    async def blocked(request):
        await release.wait()
        return json_response(201, {})

    async def boom(request):
        raise ValueError("boom")

    await gate.process(guarded("new"), ok)
    await gate.process(guarded("new"), ok)  # replay
    await gate.process(guarded(""), ok)  # invalid key
    await gate.process(guarded("big", b"x" * 101), ok)  # too large
    with pytest.raises(ValueError):
        await gate.process(guarded("err"), boom)

    running = asyncio.create_task(gate.process(guarded("busy"), blocked))
    await asyncio.sleep(0)
    assert store.open_sessions == 1
    assert (await gate.process(guarded("busy"), ok)).status == 409
    release.set()
    await running

    assert store.open_sessions == 0


def test_outage_returns_503_and_skips_handler():
    store = OutageStore()
    app = create_app(store=store, config=GateConfig())
    store.down = True

    with TestClient(app) as client:
        response = client.post(
            "/api/payment",
            json={"userId": 1, "amount": 10},
            headers={"Idempotency-Key": "outage-1"},
        )
        assert response.status_code == 503
        assert app.state.ledger.payments == {}

        # Requests without a key do not touch the store
        unkeyed = client.post("/api/payment", json={"userId": 1, "amount": 10})
        assert unkeyed.status_code == 201


def test_recovery_after_outage():
    store = OutageStore()
    app = create_app(store=store, config=GateConfig())
    headers = {"Idempotency-Key": "outage-2"}
    body = {"userId": 2, "amount": 5}

    with TestClient(app) as client:
        store.down = True
        assert client.post("/api/payment", json=body, headers=headers).status_code == 503
        store.down = False
        first = client.post("/api/payment", json=body, headers=headers)
        retry = client.post("/api/payment", json=body, headers=headers)

    assert first.status_code == 201
    assert retry.content == first.content
    assert len(app.state.ledger.payments) == 1


@pytest.mark.asyncio
async def test_completion_write_failure(store, monkeypatch):
    async def lost_write(self, key, response, now, claimed_at=None):
        raise StoreUnavailableError("write timed out")

    monkeypatch.setattr(MemoryStoreSession, "mark_completed", lost_write)
    gate = RequestGate(store, GateConfig())
    calls = 0

    async def handler(request):
        nonlocal calls
        calls += 1
        return json_response(201, {"id": 9})

    response = await gate.process(guarded("lost"), handler)
    retry = await gate.process(guarded("lost"), handler)

    assert response.status == 201
    assert response.json() == {"id": 9}
    # Without a cached outcome the key stays in processing
    assert retry.status == 409
    assert calls == 1
    assert store.open_sessions == 0
