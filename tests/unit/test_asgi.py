"""Unit tests for the ASGI middleware adapter."""

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.testclient import TestClient

from idempotency_gate.adapters.asgi import ASGIIdempotencyMiddleware
from idempotency_gate.config import GateConfig
from idempotency_gate.exceptions import StoreUnavailableError
from idempotency_gate.storage.memory import MemoryRecordStore


class UnavailableStore(MemoryRecordStore):
    def session(self):
        raise StoreUnavailableError("connection refused")


def build_app(store, config: GateConfig | None = None) -> tuple[FastAPI, dict[str, int]]:
    app = FastAPI()
    app.add_middleware(ASGIIdempotencyMiddleware, store=store, config=config or GateConfig())
    calls = {"count": 0}

    @app.post("/items")
    async def create_item(request: Request):
        calls["count"] += 1
        payload = await request.json()
        return JSONResponse(
            {"id": calls["count"], "name": payload["name"]},
            status_code=201,
            headers={"location": f"/items/{calls['count']}"},
        )

    @app.put("/text")
    async def put_text():
        calls["count"] += 1
        return PlainTextResponse("stored", status_code=200)

    @app.post("/sessions")
    async def create_session():
        calls["count"] += 1
        response = JSONResponse({"ok": True}, status_code=201)
        response.set_cookie("session", "abc")
        response.set_cookie("theme", "dark")
        return response

    @app.get("/items")
    async def list_items():
        calls["count"] += 1
        return {"count": calls["count"]}

    return app, calls


@pytest.fixture
def memory_store() -> MemoryRecordStore:
    return MemoryRecordStore()


def test_replay_through_middleware(memory_store):
    app, calls = build_app(memory_store)
    client = TestClient(app)
    headers = {"Idempotency-Key": "item-1"}

    first = client.post("/items", json={"name": "widget"}, headers=headers)
    second = client.post("/items", json={"name": "widget"}, headers=headers)

    assert calls["count"] == 1
    assert first.status_code == second.status_code == 201
    assert first.json() == second.json() == {"id": 1, "name": "widget"}
    assert first.headers["idempotent-replay"] == "false"
    assert second.headers["idempotent-replay"] == "true"
    assert second.headers["location"] == "/items/1"
    assert second.headers["content-type"] == "application/json"


def test_content_length_matches_replayed_body(memory_store):
    app, _ = build_app(memory_store)
    client = TestClient(app)
    headers = {"Idempotency-Key": "item-2"}

    client.post("/items", json={"name": "widget"}, headers=headers)
    replay = client.post("/items", json={"name": "widget"}, headers=headers)

    assert int(replay.headers["content-length"]) == len(replay.content)


def test_repeated_set_cookie_preserved(memory_store):
    app, calls = build_app(memory_store)
    client = TestClient(app)
    headers = {"Idempotency-Key": "session-1"}

    first = client.post("/sessions", headers=headers)
    replay = client.post("/sessions", headers=headers)

    assert calls["count"] == 1
    for response in (first, replay):
        cookies = [c.split(";")[0] for c in response.headers.get_list("set-cookie")]
        assert cookies == ["session=abc", "theme=dark"]


def test_plain_text_response(memory_store):
    app, calls = build_app(memory_store)
    client = TestClient(app)

    first = client.put("/text", headers={"Idempotency-Key": "t1"})
    second = client.put("/text", headers={"Idempotency-Key": "t1"})

    assert calls["count"] == 1
    assert first.text == second.text == "stored"


def test_get_is_not_guarded(memory_store):
    app, calls = build_app(memory_store)
    client = TestClient(app)

    client.get("/items", headers={"Idempotency-Key": "g1"})
    client.get("/items", headers={"Idempotency-Key": "g1"})

    assert calls["count"] == 2
    assert len(memory_store) == 0


def test_request_without_key_executes_each_time(memory_store):
    app, calls = build_app(memory_store)
    client = TestClient(app)

    client.post("/items", json={"name": "a"})
    client.post("/items", json={"name": "a"})

    assert calls["count"] == 2


def test_store_unavailable_returns_503():
    app, calls = build_app(UnavailableStore())
    client = TestClient(app)

    response = client.post("/items", json={"name": "a"}, headers={"Idempotency-Key": "k"})

    assert response.status_code == 503
    assert response.json() == {"error": "Idempotency store unavailable"}
    assert response.headers["retry-after"] == "1"
    assert calls["count"] == 0


def test_store_unavailable_does_not_block_unkeyed_requests():
    app, calls = build_app(UnavailableStore())
    client = TestClient(app)

    response = client.post("/items", json={"name": "a"})

    assert response.status_code == 201
    assert calls["count"] == 1


def test_query_string_captured(memory_store):
    app, _ = build_app(memory_store)
    client = TestClient(app)

    client.post("/items?b=2&a=1", json={"name": "q"}, headers={"Idempotency-Key": "q1"})

    assert memory_store.peek("q1").fingerprint.query_string == "a=1&b=2"
