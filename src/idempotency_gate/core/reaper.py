"""Expiry reaper: periodic purge of expired idempotency records.

Expired records are already invisible to claims; the reaper only reclaims the
space. It shares nothing with the gate except the record store and never
blocks request handling.

The reaper:
1. Runs at a fixed interval (default one hour)
2. Calls store.sweep_expired() to delete records past their TTL
3. Reports metrics and logs the number of records removed
4. Logs sweep failures and keeps running

Examples:
    Run alongside an application::

        reaper = ExpiryReaper(store, interval_seconds=3600)
        reaper.start()
        ...
        await reaper.stop()

    Integrate with a FastAPI lifespan::

        @asynccontextmanager
        async def lifespan(app):
            reaper.start()
            yield
            await reaper.stop()
"""

import asyncio
from datetime import datetime

from idempotency_gate.observability.logging import get_logger
from idempotency_gate.observability.metrics import record_sweep
from idempotency_gate.storage.base import RecordStore

logger = get_logger(__name__)


class ExpiryReaper:
    """Background task deleting expired records from a record store.

    Attributes:
        store: Record store to sweep
        interval_seconds: Time between sweeps
        stop_timeout_seconds: How long stop() waits before cancelling
    """

    def __init__(
        self,
        store: RecordStore,
        interval_seconds: float = 3600,
        stop_timeout_seconds: float = 5.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self.store = store
        self.interval_seconds = interval_seconds
        self.stop_timeout_seconds = stop_timeout_seconds
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self, now: datetime | None = None) -> int:
        """Perform a single sweep.

        Returns:
            The number of records removed.

        Raises:
            StoreUnavailableError: If the store cannot be reached.
        """
        count = await self.store.sweep_expired(now)
        record_sweep(count)

        if count > 0:
            logger.info("reaper.sweep_completed", records_removed=count)
        else:
            logger.debug("reaper.sweep_completed", records_removed=0)

        return count

    async def _loop(self) -> None:
        logger.info("reaper.started", interval_seconds=self.interval_seconds)

        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.error(
                    "reaper.sweep_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

        logger.info("reaper.stopped")

    def start(self) -> None:
        """Start sweeping in the background.

        Must be called from a running event loop.

        Raises:
            RuntimeError: If the reaper is already running.
        """
        if self.running:
            raise RuntimeError("Reaper is already running")

        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="idempotency-reaper")

    async def stop(self) -> None:
        """Signal the loop to stop and wait for it, cancelling on timeout."""
        task = self._task
        if task is None:
            return

        self._stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=self.stop_timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning("reaper.stop_timeout", message="Reaper did not stop in time")
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("reaper.cancelled")
        finally:
            self._task = None
