"""End-to-end scenario tests for the idempotency gate.

Each scenario drives the gate (directly, through the ASGI middleware, or
through the demo application) through one client-visible situation: retries,
concurrent duplicates, TTL expiry, handler failures and store outages.
"""
