"""Build a record store from configuration."""

from idempotency_gate.config import GateConfig
from idempotency_gate.storage.base import RecordStore
from idempotency_gate.storage.memory import MemoryRecordStore
from idempotency_gate.storage.postgres import PostgresRecordStore


def create_store(config: GateConfig) -> RecordStore:
    """Create the store selected by ``config.storage_backend``.

    The postgres store opens its pool on first use, so this can run before
    an event loop exists (e.g. while wiring middleware).
    """
    if config.storage_backend == "postgres":
        return PostgresRecordStore(
            dsn=config.database_url,
            min_size=config.pool_min_size,
            max_size=config.pool_max_size,
        )

    return MemoryRecordStore()
