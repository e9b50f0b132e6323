"""Notification senders — SMS gateway delivery and log-only simulation."""

from __future__ import annotations

import abc

import aiohttp
import structlog

from ridealert.core.config import SmsGatewayConfig
from ridealert.notify.types import NotificationMessage, Recipient

logger = structlog.get_logger(__name__)


class NotificationSender(abc.ABC):
    """Base class for notification transports."""

    @abc.abstractmethod
    async def send(self, recipient: Recipient, msg: NotificationMessage) -> bool:
        """Deliver *msg* to *recipient*. Returns True on success."""

    @abc.abstractmethod
    async def close(self) -> None:
        """Release resources (HTTP sessions, etc.)."""


class SmsGatewaySender(NotificationSender):
    """Delivers notifications through an HTTP SMS gateway (JSON POST)."""

    def __init__(self, config: SmsGatewayConfig) -> None:
        self._url = config.url
        self._api_key = config.api_key.get_secret_value()
        self._sender_id = config.sender_id
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
        return self._session

    async def send(self, recipient: Recipient, msg: NotificationMessage) -> bool:
        payload = {
            "from": self._sender_id,
            "to": recipient.phone,
            "text": msg.text,
            "reference": msg.reference,
        }
        try:
            session = self._get_session()
            async with session.post(self._url, json=payload) as resp:
                if 200 <= resp.status < 300:
                    return True
                body = await resp.text()
                logger.warning(
                    "sms_send_failed",
                    status=resp.status,
                    body=body[:200],
                    alert_id=msg.alert_id,
                )
                return False
        except aiohttp.ClientError:
            logger.exception("sms_send_error", alert_id=msg.alert_id)
            return False

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None


class LoggingSender(NotificationSender):
    """Writes every send to the log and reports success. Keeps no state.

    Used when no real transport is configured.
    """

    async def send(self, recipient: Recipient, msg: NotificationMessage) -> bool:
        logger.info(
            "notification_simulated",
            to=recipient.phone,
            name=recipient.name,
            kind=msg.kind.value,
            alert_id=msg.alert_id,
            reference=msg.reference,
        )
        return True

    async def close(self) -> None:
        pass
