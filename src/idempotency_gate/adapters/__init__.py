"""Framework adapters for the idempotency gate.

- asgi.py: ASGI middleware for FastAPI, Starlette, etc.
"""

from idempotency_gate.adapters.asgi import ASGIIdempotencyMiddleware

__all__ = ["ASGIIdempotencyMiddleware"]
