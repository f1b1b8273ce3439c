"""Unit tests for Prometheus metrics recording."""

import pytest
from prometheus_client import REGISTRY

from idempotency_gate.config import GateConfig
from idempotency_gate.core.gate import GuardedRequest, RequestGate
from idempotency_gate.core.replay import json_response
from idempotency_gate.observability.metrics import record_request, record_sweep


def sample(name: str, labels: dict[str, str] | None = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_record_request():
    labels = {"result": "replay", "status_code": "201"}
    before = sample("idempotency_requests_total", labels)
    record_request("replay", 201)
    assert sample("idempotency_requests_total", labels) == before + 1


def test_record_sweep():
    runs = sample("idempotency_reaper_runs_total")
    removed = sample("idempotency_reaper_records_removed_total")

    record_sweep(records_removed=4)

    assert sample("idempotency_reaper_runs_total") == runs + 1
    assert sample("idempotency_reaper_records_removed_total") == removed + 4


@pytest.mark.asyncio
async def test_gate_counts_outcomes(store):
    gate = RequestGate(store, GateConfig())
    new = {"result": "new", "status_code": "201"}
    replay = {"result": "replay", "status_code": "201"}
    new_before = sample("idempotency_requests_total", new)
    replay_before = sample("idempotency_requests_total", replay)
    active_before = sample("idempotency_active_keys")

    async def handler(request):
        return json_response(201, {"id": 1})

    request = GuardedRequest("POST", "/api/payment", {"Idempotency-Key": "m1"}, b"{}")
    await gate.process(request, handler)
    await gate.process(request, handler)

    assert sample("idempotency_requests_total", new) == new_before + 1
    assert sample("idempotency_requests_total", replay) == replay_before + 1
    assert sample("idempotency_active_keys") == active_before
