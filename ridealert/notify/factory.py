"""Convenience factory for wiring the notification stack."""

from __future__ import annotations

from ridealert.core.config import NotificationsConfig
from ridealert.notify.dispatcher import NotificationDispatcher
from ridealert.notify.rate_limiter import SendRateLimiter
from ridealert.notify.senders import LoggingSender, NotificationSender, SmsGatewaySender
from ridealert.store.base import AlertStore


def create_notification_stack(
    config: NotificationsConfig,
    store: AlertStore,
) -> NotificationDispatcher:
    """Build a dispatcher from config.

    Falls back to a log-only sender when the SMS gateway is disabled.
    """
    sender: NotificationSender
    if config.sms.enabled:
        sender = SmsGatewaySender(config.sms)
    else:
        sender = LoggingSender()

    rate_limiter = SendRateLimiter(config.rate_per_sec) if config.rate_per_sec > 0 else None

    return NotificationDispatcher(
        store=store,
        sender=sender,
        config=config,
        rate_limiter=rate_limiter,
    )
