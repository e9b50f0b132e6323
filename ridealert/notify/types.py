"""Types for the notification subsystem."""

from __future__ import annotations

import datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from ridealert.core.config import EmergencyServiceConfig
from ridealert.core.types import ContactChannel, NotifiedContact, utcnow


class NotificationKind(StrEnum):
    """Why a notification is being sent."""

    TRIGGERED = "TRIGGERED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CONTACT_ADDED = "CONTACT_ADDED"
    EMERGENCY_SERVICES = "EMERGENCY_SERVICES"


class Recipient(BaseModel):
    """Someone a sender can reach. ``contact_id`` is None for emergency services."""

    name: str
    phone: str
    channel: ContactChannel = ContactChannel.SMS
    contact_id: str | None = None

    @classmethod
    def from_contact(cls, contact: NotifiedContact) -> Recipient:
        return cls(
            name=contact.name,
            phone=contact.phone,
            channel=contact.channel,
            contact_id=contact.id,
        )

    @classmethod
    def from_service(cls, service: EmergencyServiceConfig) -> Recipient:
        return cls(name=service.name, phone=service.phone)


class NotificationMessage(BaseModel):
    """Rendered notification ready for a sender."""

    kind: NotificationKind
    alert_id: str
    reference: str
    title: str
    body: str = ""
    fields: dict[str, str] = Field(default_factory=dict)
    created_at: datetime.datetime = Field(default_factory=utcnow)

    @property
    def text(self) -> str:
        """Plain-text rendering for SMS-style transports."""
        return f"{self.title}\n{self.body}" if self.body else self.title
