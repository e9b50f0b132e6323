"""Notification fan-out subsystem."""

from ridealert.notify.dispatcher import NotificationDispatcher
from ridealert.notify.factory import create_notification_stack
from ridealert.notify.formatters import format_alert_message
from ridealert.notify.rate_limiter import SendRateLimiter
from ridealert.notify.senders import LoggingSender, NotificationSender, SmsGatewaySender
from ridealert.notify.types import NotificationKind, NotificationMessage, Recipient

__all__ = [
    "LoggingSender",
    "NotificationDispatcher",
    "NotificationKind",
    "NotificationMessage",
    "NotificationSender",
    "Recipient",
    "SendRateLimiter",
    "SmsGatewaySender",
    "create_notification_stack",
    "format_alert_message",
]
