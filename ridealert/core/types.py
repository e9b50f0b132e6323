"""Domain types for emergency alerts — all timestamps are timezone-aware UTC."""

from __future__ import annotations

import datetime
import re
import uuid
from enum import StrEnum
from typing import Annotated, Any

from pydantic import (
    AwareDatetime,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    model_validator,
)

MAX_OCCUPANTS = 8
MAX_CONTACTS = 20
DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 1000
COMMENT_MIN_LENGTH = 10
COMMENT_MAX_LENGTH = 1000
NAME_MAX_LENGTH = 100

_PHONE_SEPARATORS = re.compile(r"[\s.\-()/]")


def normalize_phone(value: Any) -> Any:
    """Strip whitespace and separators from a phone number."""
    if isinstance(value, str):
        return _PHONE_SEPARATORS.sub("", value)
    return value


Phone = Annotated[str, BeforeValidator(normalize_phone), Field(min_length=1)]
PersonName = Annotated[str, Field(min_length=1, max_length=NAME_MAX_LENGTH)]


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# ── Enumerations ────────────────────────────────────────────────


class AlertCategory(StrEnum):
    """Kind of emergency being reported."""

    SOS = "SOS"
    ACCIDENT = "ACCIDENT"
    AGGRESSION = "AGGRESSION"
    BREAKDOWN = "BREAKDOWN"
    MEDICAL = "MEDICAL"
    OTHER = "OTHER"


class Severity(StrEnum):
    """Danger tier reported by the trigger-er. Ratchets upward only."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    CRITICAL = "CRITICAL"


class AlertStatus(StrEnum):
    """Lifecycle state of an alert."""

    ACTIVE = "ACTIVE"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    FALSE_ALARM = "FALSE_ALARM"


OPEN_STATUSES: frozenset[AlertStatus] = frozenset(
    {AlertStatus.ACTIVE, AlertStatus.IN_PROGRESS},
)
TERMINAL_STATUSES: frozenset[AlertStatus] = frozenset(
    {AlertStatus.RESOLVED, AlertStatus.FALSE_ALARM},
)


class DeliveryStatus(StrEnum):
    """Outcome of the latest delivery attempt to one contact."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class ContactRelation(StrEnum):
    """How a notified contact relates to the people in the vehicle."""

    FAMILY = "FAMILY"
    FRIEND = "FRIEND"
    COLLEAGUE = "COLLEAGUE"
    EMERGENCY_CONTACT = "EMERGENCY_CONTACT"
    CARPOOLER = "CARPOOLER"
    DRIVER = "DRIVER"
    DOCTOR = "DOCTOR"
    OTHER = "OTHER"


class ContactChannel(StrEnum):
    """Preferred delivery channel for a contact."""

    SMS = "SMS"
    CALL = "CALL"
    WHATSAPP = "WHATSAPP"
    APP = "APP"


# ── Value objects ───────────────────────────────────────────────


class GeoPoint(BaseModel):
    """A WGS84 point. Stored as GeoJSON ``[longitude, latitude]``."""

    longitude: float = Field(ge=-180.0, le=180.0)
    latitude: float = Field(ge=-90.0, le=90.0)

    @model_validator(mode="before")
    @classmethod
    def _accept_geojson(cls, data: Any) -> Any:
        # {"type": "Point", "coordinates": [lon, lat]} is accepted as input.
        if isinstance(data, dict) and "coordinates" in data:
            coords = data["coordinates"]
            if isinstance(coords, (list, tuple)) and len(coords) == 2:
                return {"longitude": coords[0], "latitude": coords[1]}
        return data

    def to_geojson(self) -> dict[str, Any]:
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}


class Occupant(BaseModel):
    """A person present in the vehicle when the alert was raised."""

    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str | None = None
    name: PersonName
    phone: Phone
    is_driver: bool = False


class ContactInput(BaseModel):
    """A contact to be notified, as supplied by the caller."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: PersonName
    phone: Phone
    relation: ContactRelation
    channel: ContactChannel = ContactChannel.SMS


class NotifiedContact(BaseModel):
    """A contact attached to an alert, with its delivery state."""

    id: str = Field(default_factory=_new_id)
    name: str
    phone: str
    relation: ContactRelation
    channel: ContactChannel = ContactChannel.SMS
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    notified_at: datetime.datetime | None = None

    @classmethod
    def from_input(cls, contact: ContactInput) -> NotifiedContact:
        return cls(
            name=contact.name,
            phone=contact.phone,
            relation=contact.relation,
            channel=contact.channel,
        )


class TripInfo(BaseModel):
    """Ride metadata captured when the alert is raised."""

    model_config = ConfigDict(str_strip_whitespace=True)

    departure: str | None = Field(default=None, max_length=200)
    destination: str | None = Field(default=None, max_length=200)
    vehicle_plate: str | None = Field(default=None, max_length=20)
    vehicle_make: str | None = Field(default=None, max_length=50)


# ── Requests ────────────────────────────────────────────────────


class AlertCreate(BaseModel):
    """Validated input for raising a new alert."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    trip_reference: str = Field(min_length=1)
    position: GeoPoint
    category: AlertCategory
    description: str = Field(
        min_length=DESCRIPTION_MIN_LENGTH,
        max_length=DESCRIPTION_MAX_LENGTH,
    )
    severity: Severity
    occupants: list[Occupant] = Field(min_length=1, max_length=MAX_OCCUPANTS)
    notified_contacts: list[ContactInput] = Field(
        default_factory=list, max_length=MAX_CONTACTS,
    )
    trip_info: TripInfo | None = None


class TransitionExtra(BaseModel):
    """Optional data accompanying a status transition."""

    model_config = ConfigDict(str_strip_whitespace=True)

    comment: str | None = None
    first_aid_given: bool | None = None
    police_contacted: bool | None = None


# ── Alert ───────────────────────────────────────────────────────


class Alert(BaseModel):
    """An emergency alert bound to one trip."""

    id: str = Field(default_factory=_new_id)
    reference: str = ""
    trip_reference: str
    triggered_by: str
    position: GeoPoint
    outside_operating_region: bool = False
    address: str | None = None
    locality: str | None = None
    category: AlertCategory
    description: str
    severity: Severity
    priority: int = Field(ge=1, le=5)
    occupants: list[Occupant] = Field(min_length=1, max_length=MAX_OCCUPANTS)
    notified_contacts: list[NotifiedContact] = Field(
        default_factory=list, max_length=MAX_CONTACTS,
    )
    status: AlertStatus = AlertStatus.ACTIVE
    trip_info: TripInfo | None = None
    resolution_comment: str | None = None
    resolved_at: datetime.datetime | None = None
    resolved_by: str | None = None
    first_aid_given: bool | None = None
    police_contacted: bool | None = None
    emergency_notified_at: datetime.datetime | None = None
    created_at: datetime.datetime = Field(default_factory=utcnow)
    updated_at: datetime.datetime = Field(default_factory=utcnow)
    version: int = 1

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL or self.priority >= 4

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def occupant_count(self) -> int:
        return len(self.occupants)

    @property
    def response_time_minutes(self) -> float | None:
        """Minutes from trigger to resolution, or None while unresolved."""
        if self.resolved_at is None:
            return None
        return (self.resolved_at - self.created_at).total_seconds() / 60.0

    def minutes_since_trigger(self, now: datetime.datetime | None = None) -> float:
        now = now or utcnow()
        return (now - self.created_at).total_seconds() / 60.0

    def is_stale(
        self,
        now: datetime.datetime | None = None,
        threshold_minutes: float = 120,
    ) -> bool:
        """True for an ACTIVE alert older than *threshold_minutes*."""
        return (
            self.status == AlertStatus.ACTIVE
            and self.minutes_since_trigger(now) > threshold_minutes
        )

    def find_contact(self, contact_id: str) -> NotifiedContact | None:
        for contact in self.notified_contacts:
            if contact.id == contact_id:
                return contact
        return None


# ── Query results ───────────────────────────────────────────────


class NearbyAlert(BaseModel):
    """An alert annotated with its distance from a query point."""

    alert: Alert
    distance_km: float


class AlertFilter(BaseModel):
    """Search criteria. Empty lists and None values do not constrain."""

    statuses: list[AlertStatus] = Field(default_factory=list)
    categories: list[AlertCategory] = Field(default_factory=list)
    severities: list[Severity] = Field(default_factory=list)
    triggered_by: str | None = None
    locality: str | None = None
    created_from: AwareDatetime | None = None
    created_to: AwareDatetime | None = None
    critical_only: bool = False

    def matches(self, alert: Alert) -> bool:
        if self.statuses and alert.status not in self.statuses:
            return False
        if self.categories and alert.category not in self.categories:
            return False
        if self.severities and alert.severity not in self.severities:
            return False
        if self.critical_only and alert.severity != Severity.CRITICAL:
            return False
        if self.triggered_by is not None and alert.triggered_by != self.triggered_by:
            return False
        if self.locality:
            if not alert.locality or self.locality.lower() not in alert.locality.lower():
                return False
        if self.created_from is not None and alert.created_at < self.created_from:
            return False
        if self.created_to is not None and alert.created_at > self.created_to:
            return False
        return True


class AlertPage(BaseModel):
    """One page of search results."""

    items: list[Alert] = Field(default_factory=list)
    page: int = 1
    limit: int = 20
    total: int = 0
    pages: int = 0


class CategoryBreakdown(BaseModel):
    category: AlertCategory
    count: int = 0
    resolved: int = 0
    mean_response_minutes: float | None = None


class SeverityBreakdown(BaseModel):
    severity: Severity
    count: int = 0


class DailyCount(BaseModel):
    day: datetime.date
    count: int = 0
    critical: int = 0


class AlertStatistics(BaseModel):
    """Aggregates over alerts created inside a time window."""

    window_start: datetime.datetime
    window_end: datetime.datetime
    total: int = 0
    open_now: int = 0
    resolved: int = 0
    critical: int = 0
    mean_resolution_minutes: float | None = None
    by_category: list[CategoryBreakdown] = Field(default_factory=list)
    by_severity: list[SeverityBreakdown] = Field(default_factory=list)
    daily: list[DailyCount] = Field(default_factory=list)
