#!/usr/bin/env python3
"""Service entrypoint — wires the alert subsystem and runs until stopped.

Usage::

    # Run with default config
    python scripts/run.py

    # Custom config file
    python scripts/run.py --config config/settings.yaml

    # Override log level
    python scripts/run.py --log-level DEBUG
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from ridealert.alerts.geocoder import CoordinateGeocoder, HttpReverseGeocoder, ReverseGeocoder
from ridealert.alerts.lifecycle import AlertLifecycleManager
from ridealert.alerts.queries import AlertQueryService
from ridealert.core.config import Settings, load_settings
from ridealert.core.logging import setup_logging
from ridealert.core.types import Alert
from ridealert.jobs.stale_monitor import StaleAlertMonitor
from ridealert.notify.factory import create_notification_stack
from ridealert.store.base import AlertStore
from ridealert.store.exceptions import StoreError
from ridealert.store.memory import InMemoryAlertStore
from ridealert.store.mongo import MongoAlertStore

logger = structlog.get_logger(__name__)


async def build_store(settings: Settings) -> AlertStore:
    if settings.store.backend == "mongo":
        store = MongoAlertStore.from_config(settings.store)
        await store.ensure_indexes()
        return store
    if settings.store.backend != "memory":
        raise ValueError(f"unknown store backend: {settings.store.backend}")
    return InMemoryAlertStore()


def build_geocoder(settings: Settings) -> ReverseGeocoder:
    if settings.geocoder.enabled:
        return HttpReverseGeocoder(settings.geocoder)
    return CoordinateGeocoder()


async def _report_stale(alert: Alert) -> None:
    logger.warning(
        "stale_alert_needs_attention",
        alert_id=alert.id,
        reference=alert.reference,
        minutes=round(alert.minutes_since_trigger(), 1),
    )


async def run(args: argparse.Namespace) -> int:
    """Start all components and run until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, config=settings.logging)

    logger.info(
        "service_starting",
        store=settings.store.backend,
        sms=settings.notifications.sms.enabled,
        geocoder=settings.geocoder.enabled,
        monitor=settings.monitor.enabled,
    )

    # ── Store ────────────────────────────────────────────────────
    try:
        store = await build_store(settings)
    except (StoreError, ValueError) as exc:
        logger.error("store_unavailable", error=str(exc))
        print(f"Cannot open alert store: {exc}", file=sys.stderr)
        return 1

    # ── Notifications, lifecycle, queries ────────────────────────
    dispatcher = create_notification_stack(settings.notifications, store)
    geocoder = build_geocoder(settings)
    manager = AlertLifecycleManager(
        store=store,
        dispatcher=dispatcher,
        geocoder=geocoder,
        config=settings.alerts,
    )
    queries = AlertQueryService(store=store, config=settings.alerts)
    # An API layer attaches to manager and queries here.

    # ── Stale monitor ────────────────────────────────────────────
    monitor: StaleAlertMonitor | None = None
    if settings.monitor.enabled:
        monitor = StaleAlertMonitor(
            queries,
            on_stale=_report_stale,
            interval_secs=settings.monitor.check_interval_secs,
            threshold_minutes=settings.alerts.stale_threshold_minutes,
        )
        await monitor.start()

    logger.info(
        "service_running",
        manager=type(manager).__name__,
        monitor="active" if monitor else "disabled",
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    try:
        await stop_event.wait()
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("service_shutting_down")

    if monitor is not None:
        await monitor.stop()

    await dispatcher.close()
    await geocoder.close()
    await store.close()

    logger.info("service_stopped")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the ride-sharing emergency alert service.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
