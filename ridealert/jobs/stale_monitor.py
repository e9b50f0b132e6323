"""Background loop that reports alerts left ACTIVE for too long."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from ridealert.alerts.queries import AlertQueryService
from ridealert.core.types import Alert

logger = structlog.get_logger(__name__)

# Receives each stale alert (e.g. to page an operator).
StaleCallback = Callable[[Alert], Awaitable[None] | None]


class StaleAlertMonitor:
    """Polls ``AlertQueryService.stale()`` every *interval_secs*.

    The monitor only reports. It never transitions or escalates an alert.

    Usage::

        monitor = StaleAlertMonitor(queries, on_stale=notify_ops)
        await monitor.start()
        # ...
        await monitor.stop()
    """

    def __init__(
        self,
        queries: AlertQueryService,
        on_stale: StaleCallback | None = None,
        interval_secs: float = 300.0,
        threshold_minutes: float | None = None,
    ) -> None:
        self._queries = queries
        self._on_stale = on_stale
        self._interval_secs = interval_secs
        self._threshold_minutes = threshold_minutes
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def check_now(self) -> list[Alert]:
        """Run one check and hand every stale alert to the callback."""
        stale = await self._queries.stale(self._threshold_minutes)
        for alert in stale:
            logger.warning(
                "alert_stale",
                alert_id=alert.id,
                reference=alert.reference,
                trip=alert.trip_reference,
                created_at=alert.created_at.isoformat(),
            )
            if self._on_stale is None:
                continue
            try:
                result = self._on_stale(alert)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("stale_callback_error", alert_id=alert.id)
        return stale

    # ── Internal loop ───────────────────────────────────────────

    async def _loop(self) -> None:
        while self._running:
            try:
                await self.check_now()
            except asyncio.CancelledError:
                return
            except Exception:
                logger.exception("stale_monitor_loop_error")
            await asyncio.sleep(self._interval_secs)
