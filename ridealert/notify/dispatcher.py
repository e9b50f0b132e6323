"""Fan-out notification dispatcher with bounded concurrency and retries."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Awaitable, Callable, Sequence

import structlog

from ridealert.core.config import EmergencyServiceConfig, NotificationsConfig
from ridealert.core.types import Alert, DeliveryStatus, NotifiedContact, utcnow
from ridealert.notify.formatters import format_alert_message
from ridealert.notify.rate_limiter import SendRateLimiter
from ridealert.notify.senders import NotificationSender
from ridealert.notify.types import NotificationKind, NotificationMessage, Recipient
from ridealert.store.base import AlertStore
from ridealert.store.exceptions import StoreError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]
Sleep = Callable[[float], Awaitable[None]]
AttemptHook = Callable[[bool], Awaitable[None]]


class NotificationDispatcher:
    """Delivers alert notifications without blocking lifecycle callers.

    - ``schedule()`` starts a background dispatch and returns immediately.
    - Each contact gets its own delivery; at most ``max_concurrency`` sends
      are in flight and the optional rate limiter caps sends per second.
    - Every attempt is bounded by ``attempt_timeout_secs``. Failed attempts
      are retried up to ``max_retries`` times with doubling backoff.
    - The outcome of every attempt is persisted on the contact entry.
      Failures stay inside the dispatcher and are only logged.
    """

    def __init__(
        self,
        store: AlertStore,
        sender: NotificationSender,
        config: NotificationsConfig | None = None,
        emergency_sender: NotificationSender | None = None,
        rate_limiter: SendRateLimiter | None = None,
        clock: Clock = utcnow,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config or NotificationsConfig()
        self._store = store
        self._sender = sender
        self._emergency_sender = emergency_sender or sender
        self._rate_limiter = rate_limiter
        self._clock = clock
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(self._config.max_concurrency)
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def emergency_services(self) -> list[EmergencyServiceConfig]:
        return list(self._config.emergency_services)

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number *attempt* (0-based)."""
        return min(
            self._config.base_delay_secs * (2 ** attempt),
            self._config.max_delay_secs,
        )

    # ── Entry points ────────────────────────────────────────────

    def schedule(
        self,
        alert: Alert,
        kind: NotificationKind,
        contacts: Sequence[NotifiedContact] | None = None,
        emergency: bool = False,
    ) -> asyncio.Task[None]:
        """Run :meth:`dispatch` in the background."""
        task = asyncio.create_task(self._run(alert, kind, contacts, emergency))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def dispatch(
        self,
        alert: Alert,
        kind: NotificationKind,
        contacts: Sequence[NotifiedContact] | None = None,
        emergency: bool = False,
    ) -> dict[str, DeliveryStatus]:
        """Deliver *kind* for *alert* to *contacts* (default: all of them).

        Returns the final delivery status per contact id.
        """
        targets = list(alert.notified_contacts if contacts is None else contacts)
        msg = format_alert_message(alert, kind)

        jobs: list[Awaitable[object]] = [
            self._deliver_to_contact(alert.id, c, msg) for c in targets
        ]
        if emergency:
            jobs.append(self.notify_emergency_services(alert))
        results = await asyncio.gather(*jobs)

        outcome = dict(zip((c.id for c in targets), results[: len(targets)]))
        sent = sum(1 for s in outcome.values() if s == DeliveryStatus.SENT)
        logger.info(
            "notification_dispatched",
            alert_id=alert.id,
            reference=alert.reference,
            kind=kind.value,
            contacts=len(targets),
            sent=sent,
            failed=len(targets) - sent,
            emergency=emergency,
        )
        return outcome

    async def notify_emergency_services(self, alert: Alert) -> bool:
        """Notify every configured emergency service, once per alert.

        Returns False when the alert was already notified or every send failed.
        """
        try:
            claimed = await self._store.mark_emergency_notified(alert.id, self._clock())
        except StoreError:
            logger.exception("emergency_claim_failed", alert_id=alert.id)
            return False
        if not claimed:
            logger.debug("emergency_already_notified", alert_id=alert.id)
            return False

        msg = format_alert_message(alert, NotificationKind.EMERGENCY_SERVICES)
        results = await asyncio.gather(*(
            self._deliver(Recipient.from_service(s), msg, self._emergency_sender)
            for s in self._config.emergency_services
        ))
        logger.warning(
            "emergency_services_notified",
            alert_id=alert.id,
            reference=alert.reference,
            services=[s.name for s in self._config.emergency_services],
            reached=sum(results),
        )
        return any(results)

    # ── Delivery ────────────────────────────────────────────────

    async def _run(
        self,
        alert: Alert,
        kind: NotificationKind,
        contacts: Sequence[NotifiedContact] | None,
        emergency: bool,
    ) -> None:
        try:
            await self.dispatch(alert, kind, contacts, emergency)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("dispatch_error", alert_id=alert.id, kind=kind.value)

    async def _deliver_to_contact(
        self,
        alert_id: str,
        contact: NotifiedContact,
        msg: NotificationMessage,
    ) -> DeliveryStatus:
        async def record(ok: bool) -> None:
            status = DeliveryStatus.SENT if ok else DeliveryStatus.FAILED
            try:
                await self._store.update_contact_status(
                    alert_id, contact.id, status, self._clock(),
                )
            except StoreError:
                logger.exception(
                    "delivery_status_persist_failed",
                    alert_id=alert_id,
                    contact_id=contact.id,
                )

        ok = await self._deliver(
            Recipient.from_contact(contact), msg, self._sender, on_attempt=record,
        )
        return DeliveryStatus.SENT if ok else DeliveryStatus.FAILED

    async def _deliver(
        self,
        recipient: Recipient,
        msg: NotificationMessage,
        sender: NotificationSender,
        on_attempt: AttemptHook | None = None,
    ) -> bool:
        retries = self._config.max_retries
        for attempt in range(retries + 1):
            ok = await self._attempt(recipient, msg, sender)
            if on_attempt is not None:
                await on_attempt(ok)
            if ok:
                return True
            if attempt < retries:
                delay = self.backoff_delay(attempt)
                logger.info(
                    "delivery_retry_scheduled",
                    alert_id=msg.alert_id,
                    to=recipient.phone,
                    attempt=attempt + 1,
                    delay=delay,
                )
                await self._sleep(delay)

        logger.warning(
            "delivery_failed",
            alert_id=msg.alert_id,
            to=recipient.phone,
            attempts=retries + 1,
        )
        return False

    async def _attempt(
        self,
        recipient: Recipient,
        msg: NotificationMessage,
        sender: NotificationSender,
    ) -> bool:
        async with self._semaphore:
            if self._rate_limiter is not None:
                await self._rate_limiter.acquire()
            try:
                return await asyncio.wait_for(
                    sender.send(recipient, msg),
                    timeout=self._config.attempt_timeout_secs,
                )
            except TimeoutError:
                logger.warning(
                    "delivery_timeout",
                    alert_id=msg.alert_id,
                    to=recipient.phone,
                    timeout=self._config.attempt_timeout_secs,
                )
                return False
            except Exception:
                logger.exception(
                    "sender_error",
                    sender=type(sender).__name__,
                    alert_id=msg.alert_id,
                )
                return False

    # ── Lifecycle ───────────────────────────────────────────────

    async def drain(self) -> None:
        """Wait for every scheduled dispatch to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for sender in {id(s): s for s in (self._sender, self._emergency_sender)}.values():
            try:
                await sender.close()
            except Exception:
                logger.exception("sender_close_error", sender=type(sender).__name__)
