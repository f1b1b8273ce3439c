"""In-memory record store.

Suitable for single-process applications, development and tests. Records live
in a dictionary; a single lock makes the check-then-insert of
``insert_if_absent`` indivisible. No await happens while the lock is held, so
the same lock is safe across asyncio tasks and threads.

Records are copied on the way in and out so callers never alias the stored
state.

Examples:
    Basic usage::

        store = MemoryRecordStore()

        async with store.session() as session:
            claim = await session.try_claim("payment-123", fingerprint, 86400)

    Driving time in tests::

        clock = FakeClock(datetime(2024, 1, 1, tzinfo=UTC))
        store = MemoryRecordStore(clock=clock)
"""

import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime

from idempotency_gate.exceptions import StoreUnavailableError
from idempotency_gate.models import IdempotencyRecord, RecordStatus, StoredResponse
from idempotency_gate.storage.base import Clock, StoreSession, utc_now


class MemoryStoreSession(StoreSession):
    """Session bound to a MemoryRecordStore.

    A released session rejects further use.
    """

    def __init__(self, store: "MemoryRecordStore", clock: Clock) -> None:
        super().__init__(clock)
        self._store = store
        self.closed = False

    def _check_open(self) -> None:
        if self.closed:
            raise StoreUnavailableError("Session has already been released")

    async def get(self, key: str, now: datetime) -> IdempotencyRecord | None:
        self._check_open()
        with self._store._lock:
            record = self._store._records.get(key)
            if record is None or not record.is_live(now):
                return None
            return record.model_copy(deep=True)

    async def insert_if_absent(self, record: IdempotencyRecord, now: datetime) -> bool:
        self._check_open()
        with self._store._lock:
            existing = self._store._records.get(record.key)
            if (
                existing is not None
                and existing.is_live(now)
                and existing.status != RecordStatus.FAILED
            ):
                return False
            self._store._records[record.key] = record.model_copy(deep=True)
            return True

    async def mark_completed(
        self,
        key: str,
        response: StoredResponse,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        self._check_open()
        with self._store._lock:
            record = self._owned(key, now, claimed_at)
            if record is None:
                return False
            self._store._records[key] = record.model_copy(
                update={
                    "status": RecordStatus.COMPLETED,
                    "response": response.model_copy(deep=True),
                    "updated_at": now,
                }
            )
            return True

    async def mark_failed(
        self,
        key: str,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        self._check_open()
        with self._store._lock:
            record = self._owned(key, now, claimed_at)
            if record is None or record.status != RecordStatus.PROCESSING:
                return False
            self._store._records[key] = record.model_copy(
                update={"status": RecordStatus.FAILED, "updated_at": now}
            )
            return True

    def _owned(
        self, key: str, now: datetime, claimed_at: datetime | None
    ) -> IdempotencyRecord | None:
        """Live record for ``key``, if it still belongs to ``claimed_at``.

        Caller holds the store lock.
        """
        record = self._store._records.get(key)
        if record is None or not record.is_live(now):
            return None
        if claimed_at is not None and record.created_at != claimed_at:
            return None
        return record


class MemoryRecordStore:
    """In-memory implementation of the RecordStore protocol.

    Attributes:
        open_sessions: Number of sessions currently acquired.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._records: dict[str, IdempotencyRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.open_sessions = 0

    @asynccontextmanager
    async def session(self) -> AsyncIterator[MemoryStoreSession]:
        session = MemoryStoreSession(self, self._clock)
        with self._lock:
            self.open_sessions += 1
        try:
            yield session
        finally:
            session.closed = True
            with self._lock:
                self.open_sessions -= 1

    async def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        with self._lock:
            expired = [key for key, record in self._records.items() if record.expires_at < now]
            for key in expired:
                del self._records[key]
        return len(expired)

    async def close(self) -> None:
        with self._lock:
            self._records.clear()

    def peek(self, key: str) -> IdempotencyRecord | None:
        """Return the stored record for ``key`` ignoring expiry."""
        with self._lock:
            record = self._records.get(key)
            return record.model_copy(deep=True) if record is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
