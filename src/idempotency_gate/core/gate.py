"""Request gate: at-most-once execution of guarded write requests.

The gate sits in front of a downstream handler. For every guarded request it:

1. Skips unguarded methods and requests without an idempotency key
2. Validates the key and the body size
3. Captures the request fingerprint
4. Opens one store session for the whole request
5. Claims the key and acts on the result:

    CONFLICT -> 409, handler not invoked
    REPLAY   -> cached status/body, handler not invoked
    NEW      -> invoke handler, report the outcome through the completion
                callback, return the outcome

All mutual exclusion comes from the store's atomic claim. The gate keeps no
lock and no per-key state of its own.

Examples:
    Using the gate directly::

        store = MemoryRecordStore()
        gate = RequestGate(store, GateConfig())

        async def create_payment(request: GuardedRequest) -> GateResponse:
            return json_response(201, {"id": 1})

        response = await gate.process(request, create_payment)

    Reporting the outcome from inside the handler::

        async def create_payment(request, on_complete):
            response = json_response(201, {"id": 1})
            await on_complete(response)
            await send_receipt_email()

        response = await gate.process_with_callback(request, create_payment)
"""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from idempotency_gate.config import GateConfig
from idempotency_gate.core.replay import GateResponse, json_response, replay_response
from idempotency_gate.exceptions import (
    CompletionPersistError,
    ConflictError,
    FingerprintMismatchError,
    InvalidKeyError,
    StoreUnavailableError,
)
from idempotency_gate.fingerprint import compute_fingerprint
from idempotency_gate.models import ClaimKind, ClaimResult, RequestFingerprint
from idempotency_gate.observability.logging import get_logger
from idempotency_gate.observability.metrics import (
    decrement_active_keys,
    increment_active_keys,
    record_completion_failure,
    record_execution_time,
    record_request,
)
from idempotency_gate.storage.base import RecordStore, StoreSession
from idempotency_gate.utils.headers import (
    add_replay_headers,
    filter_response_headers,
    get_header_value,
)

logger = get_logger(__name__)

CONFLICT_RETRY_AFTER_SECONDS = 5


class GuardedRequest:
    """Request data the gate needs.

    Framework adapters convert their request objects into this format.

    Attributes:
        method: HTTP method (GET, POST, etc.)
        path: URL path
        query_string: Query string without leading '?'
        headers: Request headers as dict
        body: Serialized request body
    """

    def __init__(
        self,
        method: str,
        path: str,
        headers: dict[str, str],
        body: bytes,
        query_string: str = "",
    ) -> None:
        self.method = method
        self.path = path
        self.query_string = query_string
        self.headers = headers
        self.body = body


Handler = Callable[[GuardedRequest], Awaitable[GateResponse]]


class CompletionCallback:
    """Reports the final outcome of a request to the store.

    Handed to reporting handlers, which call it exactly once with their final
    outcome. Any outcome, success or error status, is cached the same way and
    becomes the replay target for the key.

    A failed store write does not fail the call: the outcome is kept, the
    failure is available as ``error`` and the idempotency guarantee is weakened
    for this key only. A callback without a session (bypassed requests) only
    keeps the outcome.

    Attributes:
        outcome: The reported response, once called
        stored: Whether the outcome was written to the store
        error: The store failure, if the write failed
    """

    def __init__(
        self,
        session: StoreSession | None = None,
        key: str | None = None,
        claimed_at: datetime | None = None,
    ) -> None:
        self._session = session
        self._key = key
        self._claimed_at = claimed_at
        self.outcome: GateResponse | None = None
        self.stored = False
        self.error: CompletionPersistError | None = None

    @property
    def called(self) -> bool:
        return self.outcome is not None

    async def __call__(self, response: GateResponse) -> bool:
        """Record ``response`` as the outcome and cache it.

        Returns:
            True if the outcome was written to the store.

        Raises:
            RuntimeError: If the outcome was already reported.
        """
        if self.called:
            raise RuntimeError(f"Outcome for idempotency key {self._key} already reported")
        self.outcome = response

        if self._session is None or self._key is None:
            return False

        try:
            self.stored = await self._session.complete(
                self._key,
                status=response.status,
                body=response.body,
                headers=filter_response_headers(response.headers),
                claimed_at=self._claimed_at,
            )
        except StoreUnavailableError as e:
            self.error = CompletionPersistError(
                f"Failed to cache response for key {self._key}: {e.message}",
                key=self._key,
                cause=e,
            )
        return self.stored


ReportingHandler = Callable[[GuardedRequest, CompletionCallback], Awaitable[None]]


class RequestGate:
    """Framework-agnostic idempotency gate.

    Attributes:
        store: Record store shared with the reaper and other instances
        config: Gate configuration
    """

    def __init__(self, store: RecordStore, config: GateConfig | None = None) -> None:
        self.store = store
        self.config = config or GateConfig()

    async def process(self, request: GuardedRequest, handler: Handler) -> GateResponse:
        """Run ``handler`` at most once per idempotency key.

        The handler's return value is reported as its final outcome.

        Args:
            request: The incoming request
            handler: Downstream handler producing the outcome

        Returns:
            The handler's outcome, a replayed outcome, or a gate rejection

        Raises:
            StoreUnavailableError: If the store cannot be reached to claim the
                key. Guarded writes never bypass the store.
            Exception: Whatever the handler raises, unchanged.
        """

        async def reporting(req: GuardedRequest, on_complete: CompletionCallback) -> None:
            await on_complete(await handler(req))

        return await self.process_with_callback(request, reporting)

    async def process_with_callback(
        self,
        request: GuardedRequest,
        handler: ReportingHandler,
    ) -> GateResponse:
        """Run a reporting handler at most once per idempotency key.

        The handler receives the request and a completion callback, and must
        call the callback exactly once with its final outcome. Storage errors
        while caching that outcome never reach the handler.

        Raises:
            StoreUnavailableError: If the store cannot be reached to claim the
                key.
            RuntimeError: If the handler returns without reporting an outcome.
            Exception: Whatever the handler raises, unchanged.
        """
        if not self.config.guards(request.method):
            return await self._bypass(request, handler)

        raw_key = get_header_value(request.headers, self.config.key_header)
        if raw_key is None:
            return await self._bypass(request, handler)

        key = raw_key.strip()
        try:
            self._validate_key(key)
        except InvalidKeyError as e:
            record_request("invalid", 400)
            return json_response(400, {"error": e.message})

        max_size = self.config.max_body_bytes
        if max_size and len(request.body) > max_size:
            record_request("invalid", 413)
            return json_response(
                413, {"error": f"Request body exceeds maximum size of {max_size} bytes"}
            )

        fingerprint = compute_fingerprint(
            method=request.method,
            path=request.path,
            body=request.body,
            query_string=request.query_string,
        )
        log = logger.bind(key=key, method=fingerprint.method, path=fingerprint.path)

        async with self.store.session() as session:
            claim = await self._claim(session, key, fingerprint, log)

            try:
                self._check_claim(key, claim, fingerprint)
            except ConflictError as e:
                log.info("gate.claim_conflict")
                record_request("conflict", 409)
                return json_response(
                    409,
                    {"error": e.message},
                    headers={
                        "retry-after": str(CONFLICT_RETRY_AFTER_SECONDS),
                        "idempotency-key": key,
                    },
                )
            except FingerprintMismatchError as e:
                log.warning(
                    "gate.fingerprint_mismatch",
                    stored_digest=e.stored_digest,
                    request_digest=e.request_digest,
                )
                record_request("mismatch", 422)
                return json_response(422, {"error": e.message}, headers={"idempotency-key": key})

            if claim.kind is ClaimKind.REPLAY and claim.response is not None:
                response = replay_response(claim.response, key)
                log.info("gate.claim_replayed", status_code=response.status)
                record_request("replay", response.status)
                return response

            claimed_at = claim.record.created_at if claim.record is not None else None
            return await self._execute(session, key, claimed_at, request, handler, log)

    async def _bypass(self, request: GuardedRequest, handler: ReportingHandler) -> GateResponse:
        on_complete = CompletionCallback()
        await handler(request, on_complete)
        if on_complete.outcome is None:
            raise RuntimeError("Handler returned without reporting an outcome")
        record_request("bypass", on_complete.outcome.status)
        return on_complete.outcome

    async def _claim(
        self,
        session: StoreSession,
        key: str,
        fingerprint: RequestFingerprint,
        log: Any,
    ) -> ClaimResult:
        try:
            return await session.try_claim(key, fingerprint, self.config.ttl_seconds)
        except StoreUnavailableError as e:
            log.error("gate.store_unavailable", error=e.message)
            record_request("error", 503)
            raise

    def _check_claim(
        self,
        key: str,
        claim: ClaimResult,
        fingerprint: RequestFingerprint,
    ) -> None:
        """Raise for claims that must not reach the handler or be replayed.

        Raises:
            ConflictError: The key is being processed or the claim race was lost.
            FingerprintMismatchError: Verification is on and the replaying
                request differs from the original.
        """
        if claim.kind is ClaimKind.CONFLICT:
            raise ConflictError("Request is already being processed", key=key)

        if (
            claim.kind is ClaimKind.REPLAY
            and self.config.verify_fingerprint
            and claim.record is not None
            and not claim.record.fingerprint.matches(fingerprint)
        ):
            raise FingerprintMismatchError(
                "Idempotency key was already used with a different request",
                key=key,
                stored_digest=claim.record.fingerprint.digest,
                request_digest=fingerprint.digest,
            )

    async def _execute(
        self,
        session: StoreSession,
        key: str,
        claimed_at: datetime | None,
        request: GuardedRequest,
        handler: ReportingHandler,
        log: Any,
    ) -> GateResponse:
        on_complete = CompletionCallback(session, key, claimed_at)

        increment_active_keys()
        start_time = time.monotonic()
        try:
            await handler(request, on_complete)
            if on_complete.outcome is None:
                raise RuntimeError("Handler returned without reporting an outcome")
        except Exception as e:
            log.error(
                "gate.handler_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            record_request("error", 0)
            if self.config.release_on_failure:
                await self._release(session, key, claimed_at, log)
            raise
        finally:
            decrement_active_keys()

        execution_time_ms = int((time.monotonic() - start_time) * 1000)
        record_execution_time(execution_time_ms)

        response = on_complete.outcome
        if on_complete.error is not None:
            # The client still gets the genuine outcome
            log.error("gate.completion_persist_failed", error=on_complete.error.message)
            record_completion_failure()
        elif not on_complete.stored:
            log.warning("gate.completion_record_missing")

        log.info(
            "gate.claim_executed",
            status_code=response.status,
            execution_time_ms=execution_time_ms,
        )
        record_request("new", response.status)
        response.headers = add_replay_headers(response.headers, key, is_replay=False)
        return response

    async def _release(
        self,
        session: StoreSession,
        key: str,
        claimed_at: datetime | None,
        log: Any,
    ) -> None:
        try:
            released = await session.fail(key, claimed_at=claimed_at)
        except StoreUnavailableError as e:
            log.warning("gate.release_failed", error=e.message)
            return
        log.info("gate.key_released", released=released)

    def _validate_key(self, key: str) -> None:
        """Validate idempotency key format.

        Raises:
            InvalidKeyError: If the key is empty or too long
        """
        if not key:
            raise InvalidKeyError("Idempotency key cannot be empty")

        max_length = self.config.max_key_length
        if len(key) > max_length:
            raise InvalidKeyError(
                f"Idempotency key exceeds maximum length of {max_length} characters"
            )
