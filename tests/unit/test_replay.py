"""Unit tests for response construction and replay."""

import pytest

from idempotency_gate.core.replay import GateResponse, json_response, replay_response
from idempotency_gate.models import StoredResponse


def test_json_response():
    response = json_response(409, {"error": "busy"}, headers={"retry-after": "5"})
    assert response.status == 409
    assert response.json() == {"error": "busy"}
    assert response.headers == {"content-type": "application/json", "retry-after": "5"}


def test_replay_is_verbatim():
    body = b'{"success": true, "payment": {"id": 1}}'
    stored = StoredResponse.from_body(201, body, {"content-type": "application/json"})

    response = replay_response(stored, "payment-1")

    assert response.status == 201
    assert response.body == body
    assert response.headers["content-type"] == "application/json"
    assert response.headers["Idempotent-Replay"] == "true"
    assert response.headers["Idempotency-Key"] == "payment-1"


def test_replay_error_outcome():
    stored = StoredResponse.from_body(500, b'{"error": "Payment processing failed"}')
    response = replay_response(stored, "k")
    assert response.status == 500
    assert response.json() == {"error": "Payment processing failed"}


def test_replay_strips_volatile_headers():
    stored = StoredResponse.from_body(200, b"ok", {"date": "yesterday", "etag": "v1"})
    response = replay_response(stored, "k")
    assert "date" not in response.headers
    assert response.headers["etag"] == "v1"


def test_replay_binary_body():
    body = b"\x00\x01\xff"
    assert replay_response(StoredResponse.from_body(200, body), "k").body == body


def test_corrupt_body_raises():
    stored = StoredResponse.model_construct(status=200, headers={}, body_b64="abc")
    with pytest.raises(ValueError, match="decode"):
        replay_response(stored, "k")


def test_gate_response_repr():
    assert "status=201" in repr(GateResponse(201, {}, b"{}"))
