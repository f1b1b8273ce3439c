"""Core logic of the idempotency gate.

- Gate: claim, replay or reject guarded requests; report outcomes
- Replay: rebuild cached responses
- Reaper: periodic purge of expired records

The core is framework-agnostic; adapters wrap it for web frameworks.
"""

from idempotency_gate.core.gate import (
    CompletionCallback,
    GuardedRequest,
    Handler,
    ReportingHandler,
    RequestGate,
)
from idempotency_gate.core.reaper import ExpiryReaper
from idempotency_gate.core.replay import GateResponse, json_response, replay_response

__all__ = [
    "CompletionCallback",
    "ExpiryReaper",
    "GateResponse",
    "GuardedRequest",
    "Handler",
    "ReportingHandler",
    "RequestGate",
    "json_response",
    "replay_response",
]
