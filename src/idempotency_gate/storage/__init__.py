"""Record stores for the idempotency gate.

All stores implement the RecordStore protocol defined in base.py.

Available Stores:
    - MemoryRecordStore: in-process dictionary, single process only
    - PostgresRecordStore: asyncpg, shared by every server instance
"""

from idempotency_gate.storage.base import RecordStore, StoreSession
from idempotency_gate.storage.factory import create_store
from idempotency_gate.storage.memory import MemoryRecordStore
from idempotency_gate.storage.postgres import PostgresRecordStore

__all__ = [
    "RecordStore",
    "StoreSession",
    "MemoryRecordStore",
    "PostgresRecordStore",
    "create_store",
]
