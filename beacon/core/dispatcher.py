"""Notification dispatcher.

Delivers one event to every enabled target of an owner that subscribes
to the event type. Targets are delivered concurrently; attempts to a
single target are sequential with exponential backoff:

    delay before attempt i+1 = base_delay * 2**i     (1s, 2s, 4s, ...)

Every attempt, successful or not, is appended to the delivery ledger.
Delivery failures are returned as data and never raised to the caller.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from beacon.config import get_settings
from beacon.core.exceptions import classify_exception, classify_response
from beacon.core.formatters import PayloadFormatter, build_payload, select_formatter
from beacon.core.security import SIGNATURE_HEADER, serialize_body, sign_payload
from beacon.models import EventType, NotificationTarget
from beacon.services.ledger import get_attempt, next_attempt_number, record_attempt

logger = logging.getLogger(__name__)

# Hard cap on attempts per target per call, whatever is configured.
MAX_ATTEMPTS = 5


@dataclass
class TargetResult:
    target_id: uuid.UUID
    name: str
    formatter: str
    success: bool
    status_code: int | None = None
    error: str | None = None
    attempts: int = 0
    last_attempt: int | None = None
    delivery_id: uuid.UUID | None = None


@dataclass
class DispatchResult:
    delivered: int = 0
    total: int = 0
    results: list[TargetResult] = field(default_factory=list)


async def find_targets(
    db: AsyncSession,
    owner_id: uuid.UUID | str,
    event_type: str,
) -> list[NotificationTarget]:
    """Enabled targets of ``owner_id`` subscribed to ``event_type``."""
    stmt = (
        select(NotificationTarget)
        .where(
            NotificationTarget.owner_id == owner_id,
            NotificationTarget.enabled.is_(True),
            NotificationTarget.events.contains([event_type]),
        )
        .order_by(NotificationTarget.created_at.asc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


class NotificationDispatcher:
    """Best-effort delivery with retries, signing, and a ledger row per attempt."""

    def __init__(
        self,
        db: AsyncSession,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_retries: int | None = None,
        base_delay: float | None = None,
        formatters: list[PayloadFormatter] | None = None,
    ) -> None:
        settings = get_settings()
        self.db = db
        self.sleep = sleep
        self.max_retries = max_retries if max_retries is not None else settings.webhook_max_retries
        self.base_delay = (
            base_delay if base_delay is not None else settings.webhook_base_delay_seconds
        )
        self.formatters = formatters
        self.sign_rich_payloads = settings.sign_rich_payloads
        self._client = client
        self._timeout = settings.webhook_timeout_seconds
        self._user_agent = settings.user_agent
        # AsyncSession is not safe for concurrent use by parallel target tasks.
        self._ledger_lock = asyncio.Lock()

    @property
    def attempt_budget(self) -> int:
        return max(1, min(self.max_retries or 3, MAX_ATTEMPTS))

    # ── Public API ────────────────────────────────────────

    async def dispatch(
        self,
        owner_id: uuid.UUID | str,
        event_type: str,
        title: str,
        message: str | None = None,
        severity: str | None = None,
        metadata: dict | None = None,
    ) -> DispatchResult:
        """Deliver an event to all matching targets of ``owner_id``."""
        try:
            targets = await find_targets(self.db, owner_id, event_type)
        except Exception:
            logger.exception(f"Target lookup failed: owner={owner_id}, event={event_type}")
            return DispatchResult()

        if not targets:
            logger.debug(f"No targets for owner={owner_id}, event={event_type}")
            return DispatchResult()

        payload = build_payload(event_type, title, message, severity, metadata)

        async with self._client_session() as client:
            results = await asyncio.gather(
                *(self._deliver_safely(client, t, event_type, payload, 1) for t in targets)
            )

        delivered = sum(1 for r in results if r.success)
        logger.info(
            f"Dispatched {event_type}: delivered={delivered}/{len(targets)}, owner={owner_id}"
        )
        return DispatchResult(delivered=delivered, total=len(targets), results=list(results))

    async def retry_delivery(self, delivery_attempt_id: uuid.UUID | str) -> TargetResult | None:
        """Re-send the payload of a previous attempt to the same target.

        Attempt numbering continues after the highest number already
        recorded for that delivery. Returns None when the attempt or its
        target no longer exists.
        """
        previous = await get_attempt(self.db, delivery_attempt_id)
        if previous is None or previous.target is None:
            return None

        first_attempt = await next_attempt_number(self.db, previous)
        async with self._client_session() as client:
            return await self._deliver_safely(
                client, previous.target, previous.event_type, previous.payload, first_attempt
            )

    async def send_test(self, target: NotificationTarget) -> TargetResult:
        """Send a test event to one target, ignoring its subscriptions."""
        payload = build_payload(
            EventType.TEST.value,
            "Test notification",
            "This is a test delivery. If you received this, the target is configured correctly.",
            "info",
            {"target_name": target.name},
        )
        async with self._client_session() as client:
            return await self._deliver_safely(client, target, EventType.TEST.value, payload, 1)

    # ── Internals ─────────────────────────────────────────

    @asynccontextmanager
    async def _client_session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _deliver_safely(
        self,
        client: httpx.AsyncClient,
        target: NotificationTarget,
        event_type: str,
        payload: dict,
        first_attempt: int,
    ) -> TargetResult:
        try:
            return await self._deliver(client, target, event_type, payload, first_attempt)
        except Exception as e:
            logger.exception(f"Delivery to target={target.id} aborted: {e}")
            return TargetResult(
                target_id=target.id,
                name=target.name,
                formatter="unknown",
                success=False,
                error=str(e)[:500],
            )

    async def _deliver(
        self,
        client: httpx.AsyncClient,
        target: NotificationTarget,
        event_type: str,
        payload: dict,
        first_attempt: int,
    ) -> TargetResult:
        formatter = select_formatter(target.url or "", self.formatters)
        if not target.url:
            logger.warning(f"Target {target.name} has no URL, nothing to deliver")
            return TargetResult(
                target_id=target.id,
                name=target.name,
                formatter=formatter.name,
                success=False,
                error="Target has no URL configured",
            )

        body = serialize_body(formatter.format(payload))
        headers = {"Content-Type": "application/json", "User-Agent": self._user_agent}
        if target.secret and (formatter.signs or self.sign_rich_payloads):
            headers[SIGNATURE_HEADER] = sign_payload(target.secret, body)

        budget = self.attempt_budget
        result = TargetResult(
            target_id=target.id, name=target.name, formatter=formatter.name, success=False
        )

        for i in range(budget):
            attempt = first_attempt + i
            status_code: int | None = None
            try:
                response = await client.post(target.url, content=body, headers=headers)
                status_code = response.status_code
                failure = classify_response(response)
            except Exception as e:
                failure = classify_exception(e)

            result.attempts = i + 1
            result.last_attempt = attempt
            result.status_code = status_code
            result.success = failure is None
            result.error = str(failure) if failure else None
            result.delivery_id = None

            # The HTTP outcome stands even when the ledger write fails.
            try:
                async with self._ledger_lock:
                    row = await record_attempt(
                        self.db,
                        target=target,
                        event_type=event_type,
                        payload=payload,
                        attempt=attempt,
                        status_code=status_code,
                        success=failure is None,
                        error_message=result.error,
                    )
                result.delivery_id = row.id
            except Exception:
                logger.exception(
                    f"Could not record attempt {attempt} to {target.name} in the ledger"
                )

            if failure is None:
                logger.info(
                    f"Delivered {event_type} to {target.name} "
                    f"(attempt {attempt}, HTTP {status_code})"
                )
                break

            if not failure.retryable:
                logger.warning(
                    f"Delivery to {target.name} rejected with {failure}; not retrying"
                )
                break

            if i < budget - 1:
                delay = self.base_delay * (2**i)
                logger.info(
                    f"Delivery to {target.name} failed ({failure}), "
                    f"retrying in {delay:.1f}s"
                )
                await self.sleep(delay)
            else:
                logger.warning(
                    f"Delivery to {target.name} failed after {budget} attempt(s): {failure}"
                )

        return result
