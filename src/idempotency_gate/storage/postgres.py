"""PostgreSQL record store backed by asyncpg.

The atomic claim is a single ``INSERT ... ON CONFLICT (idempotency_key) DO
UPDATE ... WHERE`` statement. A key with no row is inserted; a row that is
expired or failed is overwritten in place; any other row is left untouched and
no id is returned. Row locking inside PostgreSQL guarantees exactly one
concurrent caller gets an id back, whichever server instance it runs in.

Completion and release also match the row's ``created_at`` against the
claim, so a request whose row was claimed again after expiry cannot write
over the newer claim.

Each gate session holds one pooled connection for the whole guarded request
and returns it to the pool when the session exits.

Examples:
    Connecting and creating the table::

        store = await PostgresRecordStore.connect("postgresql://app@db/app")
        await store.create_schema()

    Sharing an existing pool::

        pool = await asyncpg.create_pool(dsn)
        store = PostgresRecordStore(pool)
"""

import asyncio
import json
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from datetime import datetime
from importlib import resources
from typing import Any

import asyncpg

from idempotency_gate.exceptions import StoreUnavailableError
from idempotency_gate.models import (
    IdempotencyRecord,
    RecordStatus,
    RequestFingerprint,
    StoredResponse,
)
from idempotency_gate.observability.logging import get_logger
from idempotency_gate.storage.base import Clock, StoreSession, utc_now

logger = get_logger(__name__)

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

SELECT_LIVE = """
    SELECT idempotency_key, request_method, request_path, request_query,
           request_body, request_digest, processing_status, response_status,
           response_headers, response_body, created_at, updated_at, expires_at
    FROM idempotency_keys
    WHERE idempotency_key = $1
      AND expires_at > $2
"""

CLAIM = """
    INSERT INTO idempotency_keys (
        idempotency_key, request_method, request_path, request_query,
        request_body, request_digest, processing_status,
        created_at, updated_at, expires_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, 'processing', $7, $7, $8)
    ON CONFLICT (idempotency_key) DO UPDATE SET
        request_method = EXCLUDED.request_method,
        request_path = EXCLUDED.request_path,
        request_query = EXCLUDED.request_query,
        request_body = EXCLUDED.request_body,
        request_digest = EXCLUDED.request_digest,
        processing_status = 'processing',
        response_status = NULL,
        response_headers = NULL,
        response_body = NULL,
        created_at = EXCLUDED.created_at,
        updated_at = EXCLUDED.updated_at,
        expires_at = EXCLUDED.expires_at
    WHERE idempotency_keys.expires_at <= $7
       OR idempotency_keys.processing_status = 'failed'
    RETURNING id
"""

COMPLETE = """
    UPDATE idempotency_keys
    SET response_status = $2,
        response_headers = $3,
        response_body = $4,
        processing_status = 'completed',
        updated_at = $5
    WHERE idempotency_key = $1
      AND expires_at > $5
      AND ($6::timestamptz IS NULL OR created_at = $6)
"""

FAIL = """
    UPDATE idempotency_keys
    SET processing_status = 'failed',
        updated_at = $2
    WHERE idempotency_key = $1
      AND processing_status = 'processing'
      AND expires_at > $2
      AND ($3::timestamptz IS NULL OR created_at = $3)
"""

SWEEP = "DELETE FROM idempotency_keys WHERE expires_at < $1"


def load_schema() -> str:
    """Return the DDL for the idempotency_keys table."""
    return resources.files("idempotency_gate.storage").joinpath("schema.sql").read_text()


def _affected(status: str) -> int:
    """Row count from an asyncpg command tag such as ``UPDATE 1``."""
    try:
        return int(status.split()[-1])
    except (IndexError, ValueError):
        return 0


def _row_to_record(row: Mapping[str, Any]) -> IdempotencyRecord:
    response = None
    if row["response_status"] is not None:
        headers = row["response_headers"] or {}
        if isinstance(headers, str):
            headers = json.loads(headers)
        response = StoredResponse.from_body(
            status=row["response_status"],
            body=bytes(row["response_body"] or b""),
            headers=headers,
        )

    return IdempotencyRecord(
        key=row["idempotency_key"],
        fingerprint=RequestFingerprint(
            method=row["request_method"],
            path=row["request_path"],
            query_string=row["request_query"] or "",
            body=row["request_body"] or "",
            digest=row["request_digest"],
        ),
        status=RecordStatus(row["processing_status"]),
        response=response,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        expires_at=row["expires_at"],
    )


class PostgresStoreSession(StoreSession):
    """Session holding one pooled asyncpg connection."""

    def __init__(self, conn: Any, clock: Clock) -> None:
        super().__init__(clock)
        self._conn = conn

    async def get(self, key: str, now: datetime) -> IdempotencyRecord | None:
        try:
            row = await self._conn.fetchrow(SELECT_LIVE, key, now)
        except DRIVER_ERRORS as e:
            logger.error("postgres.get_failed", key=key, error=str(e))
            raise StoreUnavailableError(f"Failed to read idempotency key: {e}", cause=e) from e

        if row is None:
            return None
        return _row_to_record(row)

    async def insert_if_absent(self, record: IdempotencyRecord, now: datetime) -> bool:
        fp = record.fingerprint
        try:
            row = await self._conn.fetchrow(
                CLAIM,
                record.key,
                fp.method,
                fp.path,
                fp.query_string,
                fp.body.replace("\x00", ""),
                fp.digest,
                now,
                record.expires_at,
            )
        except DRIVER_ERRORS as e:
            logger.error("postgres.claim_failed", key=record.key, error=str(e))
            raise StoreUnavailableError(f"Failed to claim idempotency key: {e}", cause=e) from e

        return row is not None

    async def mark_completed(
        self,
        key: str,
        response: StoredResponse,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        try:
            status = await self._conn.execute(
                COMPLETE,
                key,
                response.status,
                json.dumps(response.headers),
                response.get_body_bytes(),
                now,
                claimed_at,
            )
        except DRIVER_ERRORS as e:
            logger.error("postgres.complete_failed", key=key, error=str(e))
            raise StoreUnavailableError(
                f"Failed to store response for idempotency key: {e}", cause=e
            ) from e

        return _affected(status) > 0

    async def mark_failed(
        self,
        key: str,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        try:
            status = await self._conn.execute(FAIL, key, now, claimed_at)
        except DRIVER_ERRORS as e:
            logger.error("postgres.fail_failed", key=key, error=str(e))
            raise StoreUnavailableError(f"Failed to release idempotency key: {e}", cause=e) from e

        return _affected(status) > 0


class PostgresRecordStore:
    """PostgreSQL implementation of the RecordStore protocol.

    Either inject an asyncpg pool, or give a DSN and let the store create
    (and own) its pool on first use.

    Args:
        pool: asyncpg connection pool (injected; not a module global)
        dsn: Connection string used when no pool is injected
        min_size: Minimum connections for an owned pool
        max_size: Maximum connections for an owned pool
        clock: Source of "now" for claims, completions and sweeps
    """

    def __init__(
        self,
        pool: Any = None,
        dsn: str | None = None,
        min_size: int = 1,
        max_size: int = 10,
        clock: Clock = utc_now,
    ) -> None:
        if pool is None and dsn is None:
            raise ValueError("PostgresRecordStore needs a pool or a dsn")
        self._pool = pool
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._clock = clock
        self._owns_pool = pool is None
        self._open_lock = asyncio.Lock()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        clock: Clock = utc_now,
    ) -> "PostgresRecordStore":
        """Create a store that owns a freshly opened pool.

        Raises:
            StoreUnavailableError: If the database cannot be reached.
        """
        store = cls(dsn=dsn, min_size=min_size, max_size=max_size, clock=clock)
        await store.open()
        return store

    async def open(self) -> None:
        """Create the owned pool if it does not exist yet.

        Raises:
            StoreUnavailableError: If the database cannot be reached.
        """
        if self._pool is not None:
            return

        async with self._open_lock:
            if self._pool is not None:
                return
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self._dsn,
                    min_size=self._min_size,
                    max_size=self._max_size,
                )
            except DRIVER_ERRORS as e:
                logger.error("postgres.pool_connection_failed", error=str(e))
                raise StoreUnavailableError(
                    f"Failed to connect to PostgreSQL: {e}", cause=e
                ) from e

        logger.info("postgres.pool_connected", min_size=self._min_size, max_size=self._max_size)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        await self.open()
        try:
            conn = await self._pool.acquire()
        except DRIVER_ERRORS as e:
            logger.error("postgres.acquire_failed", error=str(e))
            raise StoreUnavailableError(f"Failed to acquire connection: {e}", cause=e) from e
        try:
            yield conn
        finally:
            await self._pool.release(conn)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[PostgresStoreSession]:
        async with self._connection() as conn:
            yield PostgresStoreSession(conn, self._clock)

    async def sweep_expired(self, now: datetime | None = None) -> int:
        now = now or self._clock()
        async with self._connection() as conn:
            try:
                status = await conn.execute(SWEEP, now)
            except DRIVER_ERRORS as e:
                raise StoreUnavailableError(f"Failed to sweep expired keys: {e}", cause=e) from e
        return _affected(status)

    async def create_schema(self) -> None:
        async with self._connection() as conn:
            try:
                await conn.execute(load_schema())
            except DRIVER_ERRORS as e:
                raise StoreUnavailableError(f"Failed to create schema: {e}", cause=e) from e
        logger.info("postgres.schema_ready")

    async def close(self) -> None:
        if self._owns_pool and self._pool is not None:
            await self._pool.close()
            self._pool = None
            logger.info("postgres.pool_closed")
