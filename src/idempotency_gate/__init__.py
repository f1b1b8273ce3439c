"""
Idempotency gate for Python web services.

This package guarantees at-most-once execution of side-effecting write
requests identified by a client-supplied idempotency key, across retries,
duplicated deliveries and concurrent identical requests.
"""

from idempotency_gate.config import GateConfig
from idempotency_gate.core import (
    CompletionCallback,
    ExpiryReaper,
    GateResponse,
    GuardedRequest,
    RequestGate,
)
from idempotency_gate.exceptions import (
    ConflictError,
    IdempotencyError,
    StoreUnavailableError,
)
from idempotency_gate.models import ClaimKind, ClaimResult, IdempotencyRecord, RecordStatus
from idempotency_gate.storage import MemoryRecordStore, PostgresRecordStore, create_store

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "ClaimKind",
    "ClaimResult",
    "CompletionCallback",
    "ConflictError",
    "ExpiryReaper",
    "GateConfig",
    "GateResponse",
    "GuardedRequest",
    "IdempotencyError",
    "IdempotencyRecord",
    "MemoryRecordStore",
    "PostgresRecordStore",
    "RecordStatus",
    "RequestGate",
    "StoreUnavailableError",
    "create_store",
]
