"""Response construction for the idempotency gate.

Replays rebuild the cached response exactly as it was stored: same status,
same body bytes, same (non-volatile) headers, plus ``Idempotent-Replay:
true``. The gate's own rejections (conflict, mismatch, invalid key) are small
JSON bodies built here as well.

Examples:
    Replaying a cached response::

        response = replay_response(claim.response, "payment-123")
        # response.status == 201
        # response.headers["Idempotent-Replay"] == "true"
"""

import json
from typing import Any

from idempotency_gate.models import StoredResponse
from idempotency_gate.utils.headers import add_replay_headers, filter_response_headers


class GateResponse:
    """A response produced by a downstream handler or by the gate.

    Attributes:
        status: HTTP status code
        headers: Response headers
        body: Serialized response body
    """

    def __init__(self, status: int, headers: dict[str, str], body: bytes) -> None:
        self.status = status
        self.headers = headers
        self.body = body

    def __repr__(self) -> str:
        return f"GateResponse(status={self.status}, body={self.body[:64]!r})"

    def json(self) -> Any:
        return json.loads(self.body)


def json_response(
    status: int,
    payload: dict[str, Any],
    headers: dict[str, str] | None = None,
) -> GateResponse:
    """Build a JSON GateResponse."""
    return GateResponse(
        status=status,
        headers={"content-type": "application/json", **(headers or {})},
        body=json.dumps(payload).encode("utf-8"),
    )


def replay_response(stored: StoredResponse, key: str) -> GateResponse:
    """Rebuild a cached response for a duplicate request.

    Args:
        stored: The cached response from the idempotency record
        key: The idempotency key for this request

    Returns:
        GateResponse carrying the cached status and body verbatim

    Raises:
        ValueError: If the stored body is not valid base64
    """
    try:
        body = stored.get_body_bytes()
    except Exception as e:
        raise ValueError(f"Failed to decode response body: {e}") from e

    headers = add_replay_headers(filter_response_headers(stored.headers), key, is_replay=True)

    return GateResponse(status=stored.status, headers=headers, body=body)
