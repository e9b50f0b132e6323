"""Tests for the notification stack factory."""

from __future__ import annotations

from pydantic import SecretStr

from ridealert.core.config import NotificationsConfig, SmsGatewayConfig
from ridealert.notify.factory import create_notification_stack
from ridealert.notify.senders import LoggingSender, SmsGatewaySender
from ridealert.store.memory import InMemoryAlertStore


class TestCreateNotificationStack:
    def test_sms_disabled_uses_logging_sender(self) -> None:
        disp = create_notification_stack(NotificationsConfig(), InMemoryAlertStore())
        assert isinstance(disp._sender, LoggingSender)
        assert disp._rate_limiter is not None

    def test_sms_enabled(self) -> None:
        cfg = NotificationsConfig(
            sms=SmsGatewayConfig(enabled=True, url="https://sms.test", api_key=SecretStr("k")),
        )
        disp = create_notification_stack(cfg, InMemoryAlertStore())
        assert isinstance(disp._sender, SmsGatewaySender)

    def test_zero_rate_disables_limiter(self) -> None:
        disp = create_notification_stack(
            NotificationsConfig(rate_per_sec=0), InMemoryAlertStore(),
        )
        assert disp._rate_limiter is None

    def test_emergency_services_from_config(self) -> None:
        disp = create_notification_stack(NotificationsConfig(), InMemoryAlertStore())
        assert [s.phone for s in disp.emergency_services] == ["110", "180", "185"]
