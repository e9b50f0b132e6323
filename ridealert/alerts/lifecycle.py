"""Alert lifecycle manager — trigger, transitions, escalation, contacts."""

from __future__ import annotations

import datetime
import secrets
import string
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog

from ridealert.alerts.exceptions import (
    ConflictError,
    DependencyFailureError,
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
)
from ridealert.alerts.geocoder import CoordinateGeocoder, GeocodedPlace, ReverseGeocoder
from ridealert.alerts.priority import compute_priority, next_severity
from ridealert.alerts.validation import (
    check_position,
    check_transition,
    require_resolution_comment,
    validate_contact,
    validate_for_creation,
    validate_transition_extra,
)
from ridealert.core.config import AlertsConfig
from ridealert.core.logging import AUDIT_LOGGER
from ridealert.core.types import (
    MAX_CONTACTS,
    TERMINAL_STATUSES,
    Alert,
    AlertCreate,
    AlertStatus,
    ContactInput,
    GeoPoint,
    NotifiedContact,
    Severity,
    TransitionExtra,
    utcnow,
)
from ridealert.notify.dispatcher import NotificationDispatcher
from ridealert.notify.types import NotificationKind
from ridealert.store.base import AlertStore
from ridealert.store.exceptions import (
    DuplicateOpenAlertError,
    StaleWriteError,
    StoreError,
)

# Dedicated structured logger for accepted lifecycle changes.
audit_log = structlog.get_logger(AUDIT_LOGGER)

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime.datetime]
# Mutates a draft in place; returns False when nothing changed.
Mutation = Callable[[Alert], bool]

_REFERENCE_ALPHABET = string.ascii_uppercase + string.digits


def generate_reference(now: datetime.datetime) -> str:
    """``URG`` + YYMMDD + four random uppercase alphanumerics."""
    suffix = "".join(secrets.choice(_REFERENCE_ALPHABET) for _ in range(4))
    return f"URG{now:%y%m%d}{suffix}"


class AlertLifecycleManager:
    """Owns every write to an alert.

    No alert state is kept between calls: each operation loads the alert,
    validates against that fresh copy and writes back conditionally on the
    version it read. A lost race is retried up to ``max_write_attempts``
    times before surfacing as ConflictError.

    Usage::

        manager = AlertLifecycleManager(store, dispatcher)
        alert = await manager.trigger(payload, actor="user-1")
        await manager.transition(alert.id, AlertStatus.IN_PROGRESS, "user-1")
    """

    def __init__(
        self,
        store: AlertStore,
        dispatcher: NotificationDispatcher | None = None,
        geocoder: ReverseGeocoder | None = None,
        config: AlertsConfig | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._geocoder = geocoder or CoordinateGeocoder()
        self._config = config or AlertsConfig()
        self._clock = clock

    # ── Operations ──────────────────────────────────────────────

    async def trigger(
        self,
        payload: Mapping[str, Any] | AlertCreate,
        actor: str,
    ) -> Alert:
        """Validate and persist a new ACTIVE alert, then schedule fan-out."""
        _require_actor(actor)
        create = validate_for_creation(payload, self._config)
        inside = check_position(create.position, self._config)
        if create.severity == Severity.CRITICAL and not create.notified_contacts:
            logger.warning(
                "critical_alert_without_contacts",
                trip=create.trip_reference,
                actor=actor,
            )

        # Fast path only. The store's conditional insert is the real guard.
        existing = await self._call_store(
            self._store.find_open_for_trip(create.trip_reference),
        )
        if existing is not None:
            raise ConflictError(
                f"alert {existing.reference} is already open for trip "
                f"{create.trip_reference}"
            )

        place = await self._enrich(create.position)
        now = self._clock()
        alert = Alert(
            reference=generate_reference(now),
            trip_reference=create.trip_reference,
            triggered_by=actor,
            position=create.position,
            outside_operating_region=not inside,
            address=place.address,
            locality=place.locality,
            category=create.category,
            description=create.description,
            severity=create.severity,
            priority=compute_priority(create.category, create.severity),
            occupants=create.occupants,
            notified_contacts=[NotifiedContact.from_input(c) for c in create.notified_contacts],
            trip_info=create.trip_info,
            created_at=now,
            updated_at=now,
        )

        try:
            await self._store.insert_if_no_open(alert)
        except DuplicateOpenAlertError as exc:
            raise ConflictError(
                f"an alert is already open for trip {create.trip_reference}"
            ) from exc
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc

        audit_log.info(
            "alert_triggered",
            alert_id=alert.id,
            reference=alert.reference,
            trip=alert.trip_reference,
            actor=actor,
            category=alert.category.value,
            severity=alert.severity.value,
            priority=alert.priority,
            position=[alert.position.longitude, alert.position.latitude],
        )
        self._schedule(alert, NotificationKind.TRIGGERED, emergency=alert.is_critical)
        return alert

    async def transition(
        self,
        alert_id: str,
        new_status: AlertStatus | str,
        actor: str,
        extra: Mapping[str, Any] | TransitionExtra | None = None,
    ) -> Alert:
        """Move an alert along the state machine.

        Only the trigger-er may transition. Closing (RESOLVED or FALSE_ALARM)
        requires a comment and stamps ``resolved_at``.
        """
        _require_actor(actor)
        target = _coerce_status(new_status)
        extras = validate_transition_extra(extra)

        def apply(alert: Alert) -> bool:
            if alert.triggered_by != actor:
                raise ForbiddenError("only the user who raised the alert may change it")
            check_transition(alert.status, target)
            if target in TERMINAL_STATUSES:
                alert.resolution_comment = require_resolution_comment(extras)
                alert.resolved_at = self._clock()
                alert.resolved_by = actor
            if extras.first_aid_given is not None:
                alert.first_aid_given = extras.first_aid_given
            if extras.police_contacted is not None:
                alert.police_contacted = extras.police_contacted
            alert.status = target
            return True

        before, after = await self._mutate(alert_id, apply)
        audit_log.info(
            "alert_transitioned",
            alert_id=after.id,
            reference=after.reference,
            actor=actor,
            from_status=before.status.value,
            to_status=after.status.value,
        )
        if after.status == AlertStatus.RESOLVED:
            self._schedule(after, NotificationKind.RESOLVED)
        return after

    async def escalate(self, alert_id: str, actor: str) -> Alert:
        """Raise severity one step and recompute priority. CRITICAL is a no-op."""
        _require_actor(actor)

        def apply(alert: Alert) -> bool:
            if alert.is_terminal:
                raise InvalidTransitionError(
                    f"cannot escalate a {alert.status.value} alert"
                )
            severity = next_severity(alert.severity)
            if severity == alert.severity:
                return False
            alert.severity = severity
            alert.priority = compute_priority(alert.category, severity)
            return True

        before, after = await self._mutate(alert_id, apply)
        if after is before:
            logger.info("alert_escalation_noop", alert_id=after.id, actor=actor)
            return after

        audit_log.info(
            "alert_escalated",
            alert_id=after.id,
            reference=after.reference,
            actor=actor,
            from_severity=before.severity.value,
            to_severity=after.severity.value,
            priority=after.priority,
        )
        self._schedule(
            after,
            NotificationKind.ESCALATED,
            emergency=after.is_critical and after.emergency_notified_at is None,
        )
        return after

    async def add_contact(
        self,
        alert_id: str,
        contact: Mapping[str, Any] | ContactInput,
        actor: str | None = None,
    ) -> Alert:
        """Append a contact as PENDING and notify that contact only."""
        entry = NotifiedContact.from_input(validate_contact(contact, self._config))

        def apply(alert: Alert) -> bool:
            if len(alert.notified_contacts) >= MAX_CONTACTS:
                raise LimitExceededError(
                    f"an alert may notify at most {MAX_CONTACTS} contacts"
                )
            alert.notified_contacts.append(entry.model_copy())
            return True

        _, after = await self._mutate(alert_id, apply)
        audit_log.info(
            "contact_added",
            alert_id=after.id,
            reference=after.reference,
            contact_id=entry.id,
            relation=entry.relation.value,
            actor=actor,
            contacts=len(after.notified_contacts),
        )
        self._schedule(after, NotificationKind.CONTACT_ADDED, contacts=[entry])
        return after

    # ── Internals ───────────────────────────────────────────────

    async def _mutate(self, alert_id: str, apply: Mutation) -> tuple[Alert, Alert]:
        """Read, apply and conditionally write. Returns (before, after)."""
        attempts = max(1, self._config.max_write_attempts)
        for attempt in range(1, attempts + 1):
            before = await self._load(alert_id)
            draft = before.model_copy(deep=True)
            if not apply(draft):
                return before, before
            draft.updated_at = self._clock()
            try:
                after = await self._store.replace(draft, expected_version=before.version)
            except StaleWriteError:
                logger.debug("alert_write_retry", alert_id=alert_id, attempt=attempt)
                continue
            except DuplicateOpenAlertError as exc:
                raise ConflictError(str(exc)) from exc
            except StoreError as exc:
                raise DependencyFailureError(f"alert store unavailable: {exc}") from exc
            return before, after

        logger.warning("alert_write_contended", alert_id=alert_id, attempts=attempts)
        raise ConflictError(f"alert {alert_id} is being modified concurrently")

    async def _load(self, alert_id: str) -> Alert:
        alert = await self._call_store(self._store.get(alert_id))
        if alert is None:
            raise NotFoundError(f"alert {alert_id} not found")
        return alert

    @staticmethod
    async def _call_store(op: Awaitable[Any]) -> Any:
        try:
            return await op
        except StoreError as exc:
            raise DependencyFailureError(f"alert store unavailable: {exc}") from exc

    async def _enrich(self, position: GeoPoint) -> GeocodedPlace:
        try:
            return await self._geocoder.resolve(position.latitude, position.longitude)
        except Exception as exc:
            logger.warning(
                "reverse_geocode_failed",
                latitude=position.latitude,
                longitude=position.longitude,
                error=str(exc),
            )
            return GeocodedPlace()

    def _schedule(
        self,
        alert: Alert,
        kind: NotificationKind,
        contacts: list[NotifiedContact] | None = None,
        emergency: bool = False,
    ) -> None:
        if self._dispatcher is None:
            return
        self._dispatcher.schedule(alert, kind, contacts=contacts, emergency=emergency)


def _require_actor(actor: str) -> None:
    if not isinstance(actor, str) or not actor.strip():
        raise InvalidInputError("an authenticated actor is required", fields=["actor"])


def _coerce_status(value: AlertStatus | str) -> AlertStatus:
    try:
        return AlertStatus(value)
    except ValueError as exc:
        raise InvalidInputError(f"unknown status {value!r}", fields=["status"]) from exc
