"""Demo FastAPI application guarded by the idempotency gate.

Two write endpoints, a payment debit and an order creation, run behind the
gate against an in-memory ledger. Retrying either with the same
Idempotency-Key returns the cached response instead of debiting or ordering
twice.

Run with: python demo_app.py
Then exercise it with: python demo_client.py
"""

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from idempotency_gate.adapters.asgi import ASGIIdempotencyMiddleware
from idempotency_gate.config import GateConfig
from idempotency_gate.core.reaper import ExpiryReaper
from idempotency_gate.observability.logging import configure_logging, get_logger
from idempotency_gate.storage import PostgresRecordStore, RecordStore, create_store

logger = get_logger("demo_app")


class PaymentRequest(BaseModel):
    userId: int | None = None
    amount: Decimal | None = None
    description: str | None = None


class OrderItem(BaseModel):
    productId: int
    quantity: int
    price: Decimal


class OrderRequest(BaseModel):
    userId: int | None = None
    items: list[OrderItem] | None = None
    totalAmount: Decimal | None = None


class UserNotFoundError(Exception):
    pass


class Ledger:
    """In-memory stand-in for the users/payments/orders tables."""

    def __init__(self) -> None:
        self.balances: dict[int, Decimal] = {1: Decimal("1000.00"), 2: Decimal("500.00")}
        self.payments: dict[str, dict[str, Any]] = {}
        self.orders: dict[str, dict[str, Any]] = {}

    def debit(self, user_id: int, amount: Decimal, description: str | None) -> dict[str, Any]:
        if user_id not in self.balances:
            raise UserNotFoundError("User not found")

        payment = {
            "payment_id": str(uuid.uuid4()),
            "user_id": user_id,
            "amount": str(amount),
            "description": description,
            "status": "completed",
            "created_at": datetime.now(UTC).isoformat(),
        }
        self.payments[payment["payment_id"]] = payment
        self.balances[user_id] -= amount
        return {
            "success": True,
            "payment": payment,
            "remainingBalance": str(self.balances[user_id]),
        }

    def create_order(
        self, user_id: int, items: list[OrderItem], total_amount: Decimal
    ) -> dict[str, Any]:
        if user_id not in self.balances:
            raise UserNotFoundError("User not found")

        order = {
            "order_id": str(uuid.uuid4()),
            "user_id": user_id,
            "total_amount": str(total_amount),
            "status": "pending",
            "items": [item.model_dump(mode="json") for item in items],
            "created_at": datetime.now(UTC).isoformat(),
        }
        self.orders[order["order_id"]] = order
        return {"success": True, "order": order}


def create_app(store: RecordStore | None = None, config: GateConfig | None = None) -> FastAPI:
    """Build the demo application around a record store."""
    config = config or GateConfig.from_env()
    if store is None:
        store = create_store(config)
    reaper = ExpiryReaper(store, interval_seconds=config.reaper_interval_seconds)
    ledger = Ledger()

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        if isinstance(store, PostgresRecordStore):
            await store.open()
            await store.create_schema()
        reaper.start()
        logger.info(
            "demo.started",
            storage_backend=config.storage_backend,
            database_url=config.database_url,
            ttl_seconds=config.ttl_seconds,
            verify_fingerprint=config.verify_fingerprint,
            release_on_failure=config.release_on_failure,
        )
        yield
        await reaper.stop()
        await store.close()

    app = FastAPI(
        title="Idempotency Gate Demo",
        description="Payment and order endpoints with at-most-once execution",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.ledger = ledger
    app.state.store = store

    app.add_middleware(ASGIIdempotencyMiddleware, store=store, config=config)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/payment")
    async def create_payment(payment: PaymentRequest) -> JSONResponse:
        if not payment.amount or not payment.userId:
            return JSONResponse({"error": "Amount and userId are required"}, status_code=400)

        try:
            result = ledger.debit(payment.userId, payment.amount, payment.description)
        except UserNotFoundError as e:
            logger.error("demo.payment_failed", error=str(e))
            return JSONResponse(
                {"error": "Payment processing failed", "message": str(e)},
                status_code=500,
            )

        return JSONResponse(result, status_code=201)

    @app.post("/api/orders")
    async def create_order(order: OrderRequest) -> JSONResponse:
        if not order.userId or not order.items or not order.totalAmount:
            return JSONResponse(
                {"error": "userId, items, and totalAmount are required"},
                status_code=400,
            )

        try:
            result = ledger.create_order(order.userId, order.items, order.totalAmount)
        except UserNotFoundError as e:
            logger.error("demo.order_failed", error=str(e))
            return JSONResponse(
                {"error": "Order creation failed", "message": str(e)},
                status_code=500,
            )

        return JSONResponse(result, status_code=201)

    return app


if __name__ == "__main__":
    settings = GateConfig.from_env()
    configure_logging(level=settings.log_level, json_output=settings.json_logs)
    uvicorn.run(create_app(config=settings), host="0.0.0.0", port=3000, log_level="info")
