"""ASGI middleware adapter for FastAPI and Starlette applications.

The middleware:
1. Converts the Starlette request to a GuardedRequest
2. Runs it through the request gate, calling the app as the handler
3. Converts the gate's response back to a Starlette response
4. Answers 503 when the record store cannot be reached to claim a key

Examples:
    FastAPI integration::

        app = FastAPI()
        store = MemoryRecordStore()

        app.add_middleware(
            ASGIIdempotencyMiddleware,
            store=store,
            config=GateConfig(),
        )

        @app.post("/api/payment")
        async def create_payment(data: PaymentData):
            return {"status": "success"}
"""

from collections.abc import Awaitable, Callable
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import JSONResponse, Response

from idempotency_gate.config import GateConfig
from idempotency_gate.core.gate import GuardedRequest, RequestGate
from idempotency_gate.core.replay import GateResponse
from idempotency_gate.exceptions import StoreUnavailableError
from idempotency_gate.observability.logging import get_logger
from idempotency_gate.storage.base import RecordStore
from idempotency_gate.utils.headers import fold_headers, unfold_headers

logger = get_logger(__name__)


class ASGIIdempotencyMiddleware(BaseHTTPMiddleware):
    """ASGI middleware wrapping the request gate.

    Attributes:
        store: Record store for idempotency records
        config: Gate configuration
        gate: Core gate instance
    """

    def __init__(
        self,
        app: Any,
        store: RecordStore,
        config: GateConfig | None = None,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.config = config or GateConfig()
        self.gate = RequestGate(store, self.config)

    async def dispatch(
        self,
        request: StarletteRequest,
        call_next: Callable[[StarletteRequest], Awaitable[Response]],
    ) -> Response:
        guarded = await self._convert_request(request)

        async def handler(_req: GuardedRequest) -> GateResponse:
            response = await call_next(request)

            body = b""
            if hasattr(response, "body_iterator"):
                async for chunk in response.body_iterator:
                    body += chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)
            else:
                body = bytes(getattr(response, "body", b""))

            return GateResponse(
                status=response.status_code,
                headers=fold_headers(response.headers.raw),
                body=body,
            )

        try:
            result = await self.gate.process(guarded, handler)
        except StoreUnavailableError as e:
            logger.error(
                "asgi.store_unavailable",
                method=request.method,
                path=request.url.path,
                error=e.message,
            )
            return JSONResponse(
                {"error": "Idempotency store unavailable"},
                status_code=503,
                headers={"retry-after": "1"},
            )

        return self._convert_response(result)

    async def _convert_request(self, request: StarletteRequest) -> GuardedRequest:
        body = await request.body()

        return GuardedRequest(
            method=request.method,
            path=request.url.path,
            query_string=request.url.query or "",
            headers=dict(request.headers.items()),
            body=body,
        )

    def _convert_response(self, response: GateResponse) -> Response:
        converted = Response(content=response.body, status_code=response.status)
        for name, value in unfold_headers(response.headers):
            if name.lower() != "content-length":
                converted.headers.append(name, value)
        return converted
