"""Record store interface for the idempotency gate.

A record store persists idempotency records and offers one primitive that
everything else hangs off: an atomic insert-if-absent. Under concurrent
claims for the same key exactly one caller observes "inserted"; every other
caller observes "already exists". The gate holds no lock of its own, so this
primitive is what makes the guarantee hold across tasks, threads and separate
server instances sharing the store.

The claim protocol itself (``try_claim``) is written once here on top of the
backend primitives:

    live record, processing         -> CONFLICT
    live record, completed          -> REPLAY (cached response, verbatim)
    live record, completed, no body -> CONFLICT (never re-execute)
    no live record, or failed       -> insert processing record
        inserted                    -> NEW
        lost the insert race        -> CONFLICT

Backend requirements:

    1. **Expiry filter**: records with ``expires_at <= now`` are invisible to
       ``get`` and count as absent for ``insert_if_absent``, which overwrites
       them in the same indivisible operation.

    2. **Failed records**: a ``failed`` record counts as absent for
       ``insert_if_absent``.

    3. **Safe sweeps**: ``sweep_expired`` may run while claims are in flight;
       it only removes records that lookups already ignore.

    4. **Claim-scoped writes**: when ``claimed_at`` is given, ``mark_completed``
       and ``mark_failed`` only touch the record whose ``created_at`` equals it.
       A request whose record expired and was claimed again by another
       request must not overwrite or release the newer claim.

    5. **Scoped sessions**: ``session()`` acquires whatever connection the
       backend needs and releases it on every exit path.

Examples:
    Claiming and completing a key::

        async with store.session() as session:
            claim = await session.try_claim("payment-123", fingerprint, 86400)
            if claim.kind is ClaimKind.NEW:
                await session.complete("payment-123", 201, b'{"id": 1}')
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from typing import Protocol, runtime_checkable

from idempotency_gate.models import (
    ClaimResult,
    IdempotencyRecord,
    RecordStatus,
    RequestFingerprint,
    StoredResponse,
)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class StoreSession(ABC):
    """One scoped connection to a record store.

    Subclasses implement the four backend primitives; the claim and
    completion protocol is shared.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    @abstractmethod
    async def get(self, key: str, now: datetime) -> IdempotencyRecord | None:
        """Return the live record for ``key``, or None.

        Records with ``expires_at <= now`` are never returned.
        """

    @abstractmethod
    async def insert_if_absent(self, record: IdempotencyRecord, now: datetime) -> bool:
        """Atomically insert ``record`` unless a live, non-failed record exists.

        Returns:
            True if this call inserted the record, False otherwise.
        """

    @abstractmethod
    async def mark_completed(
        self,
        key: str,
        response: StoredResponse,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        """Set status completed and store ``response``.

        Returns:
            True if a live record was updated.
        """

    @abstractmethod
    async def mark_failed(
        self,
        key: str,
        now: datetime,
        claimed_at: datetime | None = None,
    ) -> bool:
        """Set status failed on a live processing record.

        Returns:
            True if a record was updated.
        """

    async def try_claim(
        self,
        key: str,
        fingerprint: RequestFingerprint,
        ttl_seconds: int,
    ) -> ClaimResult:
        """Try to reserve ``key`` for a new execution.

        Args:
            key: The idempotency key.
            fingerprint: The request claiming the key.
            ttl_seconds: Lifetime of a freshly inserted record.

        Returns:
            ClaimResult with kind NEW, REPLAY or CONFLICT.

        Raises:
            StoreUnavailableError: If the backend cannot be reached.
        """
        now = self._clock()

        existing = await self.get(key, now)
        if existing is not None and existing.status != RecordStatus.FAILED:
            return self._classify(existing)

        record = IdempotencyRecord.new_processing(
            key=key,
            fingerprint=fingerprint,
            now=now,
            ttl_seconds=ttl_seconds,
        )
        if await self.insert_if_absent(record, now):
            return ClaimResult.new(record)

        # Another caller inserted between our read and our insert
        return ClaimResult.conflict()

    async def complete(
        self,
        key: str,
        status: int,
        body: bytes,
        headers: dict[str, str] | None = None,
        claimed_at: datetime | None = None,
    ) -> bool:
        """Cache the outcome of a claimed request.

        Calling this twice overwrites the first outcome (last write wins);
        the gate calls it at most once per successful claim.

        Args:
            claimed_at: ``created_at`` of the claimed record. When given, a
                record claimed again after expiry is left untouched.

        Returns:
            True if the record was updated, False if no live record exists
            or the key now belongs to another claim.

        Raises:
            StoreUnavailableError: If the backend cannot be reached.
        """
        response = StoredResponse.from_body(status=status, body=body, headers=headers)
        return await self.mark_completed(key, response, self._clock(), claimed_at=claimed_at)

    async def fail(self, key: str, claimed_at: datetime | None = None) -> bool:
        """Release a claimed key so the next request re-executes."""
        return await self.mark_failed(key, self._clock(), claimed_at=claimed_at)

    @staticmethod
    def _classify(record: IdempotencyRecord) -> ClaimResult:
        if record.status == RecordStatus.COMPLETED and record.response is not None:
            return ClaimResult.replay(record)
        # processing, pending, or completed without a cached response
        return ClaimResult.conflict(record)


@runtime_checkable
class RecordStore(Protocol):
    """Protocol for idempotency record stores.

    Error Handling:
        Backends raise StoreUnavailableError for connection failures and
        driver errors. They never raise backend-specific exceptions.
    """

    def session(self) -> AbstractAsyncContextManager[StoreSession]:
        """Acquire a scoped session, released when the context exits.

        Raises:
            StoreUnavailableError: If no connection can be acquired.
        """
        ...

    async def sweep_expired(self, now: datetime | None = None) -> int:
        """Delete every record with ``expires_at < now``.

        Returns:
            The number of records removed.
        """
        ...

    async def close(self) -> None:
        """Release backend resources."""
        ...
