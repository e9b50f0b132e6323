"""Read-side queries: proximity, statistics, staleness and search."""

from __future__ import annotations

import datetime
import math
from collections import Counter, defaultdict
from collections.abc import Callable, Iterable, Mapping
from statistics import fmean
from typing import Any

import structlog

from ridealert.alerts.exceptions import (
    DependencyFailureError,
    InvalidInputError,
    NotFoundError,
)
from ridealert.alerts.validation import validate_filter, validate_point, validate_statuses
from ridealert.core.config import AlertsConfig
from ridealert.core.geo import haversine_km
from ridealert.core.types import (
    OPEN_STATUSES,
    Alert,
    AlertCategory,
    AlertFilter,
    AlertPage,
    AlertStatistics,
    AlertStatus,
    CategoryBreakdown,
    DailyCount,
    GeoPoint,
    NearbyAlert,
    Severity,
    SeverityBreakdown,
    utcnow,
)
from ridealert.store.base import AlertStore, SortSpec
from ridealert.store.exceptions import StoreError

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]

# Highest priority first; ties broken oldest first.
PRIORITY_OLDEST_FIRST: SortSpec = (("priority", -1), ("created_at", 1))
PRIORITY_NEWEST_FIRST: SortSpec = (("priority", -1), ("created_at", -1))
OLDEST_FIRST: SortSpec = (("created_at", 1),)

MAX_PAGE_SIZE = 100


def _mean(values: list[float]) -> float | None:
    return round(fmean(values), 2) if values else None


class AlertQueryService:
    """Read-only queries. Nothing here mutates an alert."""

    def __init__(
        self,
        store: AlertStore,
        config: AlertsConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._config = config or AlertsConfig()
        self._clock = clock

    async def get(self, alert_id: str) -> Alert:
        try:
            alert = await self._store.get(alert_id)
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc
        if alert is None:
            raise NotFoundError(f"alert {alert_id} not found")
        return alert

    async def find_nearby(
        self,
        point: GeoPoint | Mapping[str, Any],
        radius_km: float | None = None,
        statuses: Iterable[AlertStatus | str] | None = None,
    ) -> list[NearbyAlert]:
        """Alerts within *radius_km* of *point*, most urgent first.

        Store candidates are re-checked with the haversine distance so the
        result does not depend on the backend's geometry.
        """
        center = validate_point(point)
        radius = self._config.default_nearby_radius_km if radius_km is None else radius_km
        if not math.isfinite(radius) or radius < 0:
            raise InvalidInputError("radius must be a non-negative number", fields=["radius_km"])
        wanted = list(OPEN_STATUSES) if statuses is None else validate_statuses(statuses)

        try:
            candidates = await self._store.find_within_radius(center, radius, wanted)
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc

        hits: list[tuple[Alert, float]] = []
        for alert in candidates:
            distance = haversine_km(center, alert.position)
            if distance <= radius:
                hits.append((alert, distance))
        hits.sort(key=lambda h: (-h[0].priority, h[0].created_at))
        logger.debug(
            "nearby_query",
            longitude=center.longitude,
            latitude=center.latitude,
            radius_km=radius,
            candidates=len(candidates),
            hits=len(hits),
        )

        return [
            NearbyAlert(alert=alert, distance_km=round(distance, 2))
            for alert, distance in hits[: self._config.nearby_limit]
        ]

    async def statistics(
        self,
        window_start: datetime.datetime | None = None,
        window_end: datetime.datetime | None = None,
    ) -> AlertStatistics:
        """Aggregate alerts created inside the window (default: last 30 days)."""
        _require_aware(window_start, "window_start")
        _require_aware(window_end, "window_end")
        end = window_end or self._clock()
        start = window_start or end - datetime.timedelta(
            days=self._config.statistics_window_days,
        )
        if start > end:
            raise InvalidInputError(
                "window start must not be after window end",
                fields=["window_start", "window_end"],
            )

        try:
            alerts = await self._store.find(AlertFilter(created_from=start, created_to=end))
            open_now = await self._store.count(AlertFilter(statuses=list(OPEN_STATUSES)))
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc

        response_times = [
            t for t in (a.response_time_minutes for a in alerts) if t is not None
        ]

        # ── Per category ──
        per_category: dict[AlertCategory, list[Alert]] = defaultdict(list)
        for alert in alerts:
            per_category[alert.category].append(alert)
        by_category = [
            CategoryBreakdown(
                category=category,
                count=len(group),
                resolved=sum(1 for a in group if a.status == AlertStatus.RESOLVED),
                mean_response_minutes=_mean([
                    t for t in (a.response_time_minutes for a in group) if t is not None
                ]),
            )
            for category, group in per_category.items()
        ]
        by_category.sort(key=lambda b: (-b.count, b.category.value))

        # ── Per severity ──
        severity_counts = Counter(a.severity for a in alerts)
        by_severity = [
            SeverityBreakdown(severity=severity, count=severity_counts[severity])
            for severity in Severity
            if severity_counts[severity]
        ]

        # ── Daily series (UTC days) ──
        daily_counts: Counter[datetime.date] = Counter()
        daily_critical: Counter[datetime.date] = Counter()
        for alert in alerts:
            day = alert.created_at.astimezone(datetime.UTC).date()
            daily_counts[day] += 1
            if alert.severity == Severity.CRITICAL:
                daily_critical[day] += 1
        daily = [
            DailyCount(day=day, count=daily_counts[day], critical=daily_critical[day])
            for day in sorted(daily_counts)
        ]

        return AlertStatistics(
            window_start=start,
            window_end=end,
            total=len(alerts),
            open_now=open_now,
            resolved=sum(1 for a in alerts if a.status == AlertStatus.RESOLVED),
            critical=sum(1 for a in alerts if a.severity == Severity.CRITICAL),
            mean_resolution_minutes=_mean(response_times),
            by_category=by_category,
            by_severity=by_severity,
            daily=daily,
        )

    async def stale(self, threshold_minutes: float | None = None) -> list[Alert]:
        """ACTIVE alerts older than the threshold, oldest first.

        A pure signal for monitoring; nothing is transitioned here.
        """
        threshold = (
            self._config.stale_threshold_minutes
            if threshold_minutes is None else threshold_minutes
        )
        if threshold < 0:
            raise InvalidInputError(
                "threshold must be non-negative", fields=["threshold_minutes"],
            )
        now = self._clock()
        cutoff = now - datetime.timedelta(minutes=threshold)
        try:
            candidates = await self._store.find(
                AlertFilter(statuses=[AlertStatus.ACTIVE], created_to=cutoff),
                sort=OLDEST_FIRST,
            )
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc
        stale = [a for a in candidates if a.is_stale(now, threshold)]
        if stale:
            logger.info("stale_alerts_found", count=len(stale), threshold_minutes=threshold)
        return stale

    async def search(
        self,
        criteria: AlertFilter | Mapping[str, Any] | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> AlertPage:
        """Filtered, paginated listing ordered by priority then newest."""
        if page < 1:
            raise InvalidInputError("page must be >= 1", fields=["page"])
        if not 1 <= limit <= MAX_PAGE_SIZE:
            raise InvalidInputError(
                f"limit must be between 1 and {MAX_PAGE_SIZE}", fields=["limit"],
            )
        criteria = validate_filter(criteria)
        try:
            total = await self._store.count(criteria)
            items = await self._store.find(
                criteria,
                skip=(page - 1) * limit,
                limit=limit,
                sort=PRIORITY_NEWEST_FIRST,
            )
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc
        return AlertPage(
            items=items,
            page=page,
            limit=limit,
            total=total,
            pages=math.ceil(total / limit),
        )

    async def list_active(self, limit: int | None = None) -> list[Alert]:
        """Open alerts, most urgent and then oldest first."""
        size = self._config.active_limit if limit is None else limit
        if size < 1:
            raise InvalidInputError("limit must be >= 1", fields=["limit"])
        try:
            return await self._store.find(
                AlertFilter(statuses=list(OPEN_STATUSES)),
                limit=size,
                sort=PRIORITY_OLDEST_FIRST,
            )
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc


def _require_aware(value: datetime.datetime | None, field: str) -> None:
    if value is not None and value.utcoffset() is None:
        raise InvalidInputError(f"{field} must carry a timezone", fields=[field])
