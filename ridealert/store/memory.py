"""In-process alert store for tests and single-node deployments."""

from __future__ import annotations

import asyncio
import datetime
from collections.abc import Iterable

import structlog

from ridealert.core.geo import haversine_km
from ridealert.core.types import (
    Alert,
    AlertFilter,
    AlertStatus,
    DeliveryStatus,
    GeoPoint,
)
from ridealert.store.base import NEWEST_FIRST, AlertStore, SortSpec
from ridealert.store.exceptions import DuplicateOpenAlertError, StaleWriteError

logger = structlog.get_logger(__name__)


def sort_alerts(alerts: list[Alert], sort: SortSpec) -> list[Alert]:
    """Order *alerts* by a multi-key (field, direction) spec."""
    ordered = list(alerts)
    # Stable sorts applied from the least significant key.
    for field, direction in reversed(list(sort)):
        ordered.sort(key=lambda a: getattr(a, field), reverse=direction < 0)
    return ordered


class InMemoryAlertStore(AlertStore):
    """Dict-backed store. A single lock serialises every write.

    Alerts are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self) -> None:
        self._alerts: dict[str, Alert] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._alerts)

    async def insert_if_no_open(self, alert: Alert) -> None:
        async with self._lock:
            if alert.is_open and self._open_for_trip(alert.trip_reference):
                raise DuplicateOpenAlertError(
                    f"open alert exists for trip {alert.trip_reference}"
                )
            self._alerts[alert.id] = alert.model_copy(deep=True)
        logger.debug("alert_inserted", alert_id=alert.id)

    async def get(self, alert_id: str) -> Alert | None:
        alert = self._alerts.get(alert_id)
        return alert.model_copy(deep=True) if alert else None

    async def replace(self, alert: Alert, expected_version: int) -> Alert:
        async with self._lock:
            current = self._alerts.get(alert.id)
            if current is None or current.version != expected_version:
                raise StaleWriteError(f"alert {alert.id} changed since read")
            stored = alert.model_copy(
                update={"version": expected_version + 1}, deep=True,
            )
            self._alerts[alert.id] = stored
        return stored.model_copy(deep=True)

    async def update_contact_status(
        self,
        alert_id: str,
        contact_id: str,
        status: DeliveryStatus,
        at: datetime.datetime,
    ) -> bool:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None:
                return False
            contact = alert.find_contact(contact_id)
            if contact is None:
                return False
            contact.delivery_status = status
            if status == DeliveryStatus.SENT:
                contact.notified_at = at
            alert.version += 1
        return True

    async def mark_emergency_notified(
        self, alert_id: str, at: datetime.datetime,
    ) -> bool:
        async with self._lock:
            alert = self._alerts.get(alert_id)
            if alert is None or alert.emergency_notified_at is not None:
                return False
            alert.emergency_notified_at = at
            alert.version += 1
        return True

    async def find_open_for_trip(self, trip_reference: str) -> Alert | None:
        alert = self._open_for_trip(trip_reference)
        return alert.model_copy(deep=True) if alert else None

    async def find_within_radius(
        self,
        point: GeoPoint,
        radius_km: float,
        statuses: Iterable[AlertStatus],
    ) -> list[Alert]:
        wanted = set(statuses)
        return [
            a.model_copy(deep=True)
            for a in self._alerts.values()
            if a.status in wanted and haversine_km(point, a.position) <= radius_km
        ]

    async def find(
        self,
        criteria: AlertFilter,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec = NEWEST_FIRST,
    ) -> list[Alert]:
        matched = [a for a in self._alerts.values() if criteria.matches(a)]
        ordered = sort_alerts(matched, sort)
        end = None if limit is None else skip + limit
        return [a.model_copy(deep=True) for a in ordered[skip:end]]

    async def count(self, criteria: AlertFilter) -> int:
        return sum(1 for a in self._alerts.values() if criteria.matches(a))

    def _open_for_trip(self, trip_reference: str) -> Alert | None:
        for alert in self._alerts.values():
            if alert.trip_reference == trip_reference and alert.is_open:
                return alert
        return None
