"""Abstract persistence interface for alerts."""

from __future__ import annotations

import abc
import datetime
from collections.abc import Iterable, Sequence

from ridealert.core.types import (
    Alert,
    AlertFilter,
    AlertStatus,
    DeliveryStatus,
    GeoPoint,
)

# (field, direction) pairs, direction 1 ascending and -1 descending.
SortSpec = Sequence[tuple[str, int]]

NEWEST_FIRST: SortSpec = (("created_at", -1),)


class AlertStore(abc.ABC):
    """Durable alert storage.

    Implementations must make ``insert_if_no_open`` atomic with respect to
    the one-open-alert-per-trip rule, and ``replace`` must only succeed when
    the stored version equals *expected_version*.
    """

    @abc.abstractmethod
    async def insert_if_no_open(self, alert: Alert) -> None:
        """Insert *alert*. Raises DuplicateOpenAlertError if the trip has an open alert."""

    @abc.abstractmethod
    async def get(self, alert_id: str) -> Alert | None:
        """Return the alert with *alert_id*, or None."""

    @abc.abstractmethod
    async def replace(self, alert: Alert, expected_version: int) -> Alert:
        """Overwrite the stored alert and return it with its version bumped.

        Raises StaleWriteError when the stored version is not *expected_version*.
        """

    @abc.abstractmethod
    async def update_contact_status(
        self,
        alert_id: str,
        contact_id: str,
        status: DeliveryStatus,
        at: datetime.datetime,
    ) -> bool:
        """Record a delivery outcome. Returns False if the alert or contact is gone."""

    @abc.abstractmethod
    async def mark_emergency_notified(
        self, alert_id: str, at: datetime.datetime,
    ) -> bool:
        """Stamp ``emergency_notified_at`` once. Returns False if already stamped."""

    @abc.abstractmethod
    async def find_open_for_trip(self, trip_reference: str) -> Alert | None:
        """Return the open alert for *trip_reference*, if any."""

    @abc.abstractmethod
    async def find_within_radius(
        self,
        point: GeoPoint,
        radius_km: float,
        statuses: Iterable[AlertStatus],
    ) -> list[Alert]:
        """Candidate alerts near *point*. Callers re-check exact distance."""

    @abc.abstractmethod
    async def find(
        self,
        criteria: AlertFilter,
        skip: int = 0,
        limit: int | None = None,
        sort: SortSpec = NEWEST_FIRST,
    ) -> list[Alert]:
        """Alerts matching *criteria* ordered by *sort*."""

    @abc.abstractmethod
    async def count(self, criteria: AlertFilter) -> int:
        """Number of alerts matching *criteria*."""

    async def close(self) -> None:
        """Release resources. Default is a no-op."""
