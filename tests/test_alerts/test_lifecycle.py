"""Tests for AlertLifecycleManager — trigger, transitions, escalation, contacts."""

from __future__ import annotations

import asyncio
import datetime
import re
from typing import Any

import pytest
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
from ridealert.alerts.geocoder import GeocodedPlace, ReverseGeocoder
from ridealert.alerts.lifecycle import AlertLifecycleManager, generate_reference
from ridealert.core.config import AlertsConfig, NotificationsConfig
from ridealert.core.types import Alert, AlertStatus, DeliveryStatus, Severity
from ridealert.notify.dispatcher import NotificationDispatcher
from ridealert.notify.senders import NotificationSender
from ridealert.notify.types import NotificationKind, NotificationMessage, Recipient
from ridealert.store.exceptions import StaleWriteError, StoreError
from ridealert.store.memory import InMemoryAlertStore

T0 = datetime.datetime(2026, 3, 1, 12, 0, tzinfo=datetime.UTC)

# ── Helpers ─────────────────────────────────────────────────────


class FakeSender(NotificationSender):
    """In-memory sender for testing."""

    def __init__(self, fail_phones: set[str] | None = None) -> None:
        self.sent: list[tuple[Recipient, NotificationMessage]] = []
        self._fail = fail_phones or set()

    async def send(self, recipient: Recipient, msg: NotificationMessage) -> bool:
        if recipient.phone in self._fail:
            return False
        self.sent.append((recipient, msg))
        return True

    async def close(self) -> None:
        pass

    def kinds_for(self, phone: str) -> list[NotificationKind]:
        return [m.kind for r, m in self.sent if r.phone == phone]


class YieldingGeocoder(ReverseGeocoder):
    """Suspends once so concurrent triggers interleave."""

    async def resolve(self, latitude: float, longitude: float) -> GeocodedPlace:
        await asyncio.sleep(0)
        return GeocodedPlace(address="Plateau, Abidjan", locality="Abidjan")


class BrokenGeocoder(ReverseGeocoder):
    async def resolve(self, latitude: float, longitude: float) -> GeocodedPlace:
        raise RuntimeError("provider down")


async def _no_sleep(_: float) -> None:
    return None


def _clock() -> datetime.datetime:
    return T0


def _payload(**overrides: Any) -> dict[str, Any]:
    base: dict[str, Any] = {
        "trip_reference": "T1",
        "position": {"longitude": -4.0, "latitude": 5.3},
        "category": "SOS",
        "description": "Driver is behaving aggressively",
        "severity": "CRITICAL",
        "occupants": [
            {"name": "Awa", "phone": "0700000001"},
            {"name": "Yao", "phone": "0700000002", "is_driver": True},
        ],
        "notified_contacts": [{"name": "Koffi", "phone": "0700000003", "relation": "FAMILY"}],
    }
    base.update(overrides)
    return base


def _contact(i: int) -> dict[str, str]:
    return {"name": f"Contact {i}", "phone": f"07100000{i:02d}", "relation": "FRIEND"}


def _stack(
    store: InMemoryAlertStore | None = None,
    sender: FakeSender | None = None,
    geocoder: ReverseGeocoder | None = None,
    **config: Any,
) -> tuple[AlertLifecycleManager, InMemoryAlertStore, FakeSender, NotificationDispatcher]:
    if store is None:
        store = InMemoryAlertStore()
    if sender is None:
        sender = FakeSender()
    dispatcher = NotificationDispatcher(
        store=store,
        sender=sender,
        config=NotificationsConfig(max_retries=1, base_delay_secs=0.0),
        clock=_clock,
        sleep=_no_sleep,
    )
    manager = AlertLifecycleManager(
        store=store,
        dispatcher=dispatcher,
        geocoder=geocoder,
        config=AlertsConfig(**config),
        clock=_clock,
    )
    return manager, store, sender, dispatcher


# ── Reference numbers ───────────────────────────────────────────


class TestReference:
    def test_format(self) -> None:
        ref = generate_reference(T0)
        assert re.fullmatch(r"URG260301[A-Z0-9]{4}", ref)


# ── Trigger ─────────────────────────────────────────────────────


class TestTrigger:
    async def test_creates_active_critical_alert(self) -> None:
        manager, store, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        assert alert.status == AlertStatus.ACTIVE
        assert alert.priority == 5
        assert alert.is_critical
        assert alert.triggered_by == "user-1"
        assert alert.occupant_count == 2
        assert alert.created_at == T0
        assert alert.reference.startswith("URG260301")
        assert alert.notified_contacts[0].delivery_status == DeliveryStatus.PENDING
        assert await store.get(alert.id) is not None

    async def test_every_supplied_contact_is_attached(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(
            _payload(notified_contacts=[_contact(1), _contact(2)]), actor="user-1",
        )
        assert [c.name for c in alert.notified_contacts] == ["Contact 1", "Contact 2"]

    async def test_unknown_payload_key_rejected(self) -> None:
        manager, store, _, _ = _stack()
        with pytest.raises(InvalidInputError) as exc:
            await manager.trigger(_payload(contacts=[_contact(1)]), actor="user-1")
        assert exc.value.fields == ["contacts"]
        assert len(store) == 0

    async def test_second_trigger_for_same_trip_conflicts(self) -> None:
        manager, _, _, _ = _stack()
        await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(ConflictError):
            await manager.trigger(_payload(), actor="user-2")

    async def test_concurrent_triggers_yield_one_alert(self) -> None:
        manager, store, _, _ = _stack(geocoder=YieldingGeocoder())
        results = await asyncio.gather(
            manager.trigger(_payload(), actor="user-1"),
            manager.trigger(_payload(), actor="user-2"),
            return_exceptions=True,
        )
        created = [r for r in results if isinstance(r, Alert)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(created) == 1
        assert len(conflicts) == 1
        assert len(store) == 1

    async def test_trip_can_alert_again_after_resolution(self) -> None:
        manager, _, _, _ = _stack()
        first = await manager.trigger(_payload(), actor="user-1")
        await manager.transition(
            first.id, AlertStatus.RESOLVED, "user-1", {"comment": "handled by dispatch"},
        )
        second = await manager.trigger(_payload(), actor="user-1")
        assert second.id != first.id

    async def test_invalid_input_rejected(self) -> None:
        manager, store, _, _ = _stack()
        with pytest.raises(InvalidInputError):
            await manager.trigger(_payload(description="short"), actor="user-1")
        assert len(store) == 0

    async def test_missing_actor_rejected(self) -> None:
        manager, _, _, _ = _stack()
        with pytest.raises(InvalidInputError) as exc:
            await manager.trigger(_payload(), actor="  ")
        assert exc.value.fields == ["actor"]

    async def test_geocoding_enriches(self) -> None:
        manager, _, _, _ = _stack(geocoder=YieldingGeocoder())
        alert = await manager.trigger(_payload(), actor="user-1")
        assert alert.address == "Plateau, Abidjan"
        assert alert.locality == "Abidjan"

    async def test_default_geocoder_uses_coordinates(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        assert alert.address == "Coordinates: 5.3000, -4.0000"

    async def test_geocoding_failure_does_not_block(self) -> None:
        manager, _, _, _ = _stack(geocoder=BrokenGeocoder())
        with structlog.testing.capture_logs() as logs:
            alert = await manager.trigger(_payload(), actor="user-1")
        assert alert.address is None
        assert any(e["event"] == "reverse_geocode_failed" for e in logs)

    async def test_outside_region_is_flagged_not_rejected(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(
            _payload(position={"longitude": 2.35, "latitude": 48.85}), actor="user-1",
        )
        assert alert.outside_operating_region is True

    async def test_critical_without_contacts_warns(self) -> None:
        manager, _, _, _ = _stack()
        with structlog.testing.capture_logs() as logs:
            await manager.trigger(_payload(notified_contacts=[]), actor="user-1")
        assert any(e["event"] == "critical_alert_without_contacts" for e in logs)

    async def test_trigger_is_audited(self) -> None:
        manager, _, _, _ = _stack()
        with structlog.testing.capture_logs() as logs:
            alert = await manager.trigger(_payload(), actor="user-1")
        audited = [e for e in logs if e["event"] == "alert_triggered"]
        assert audited and audited[0]["alert_id"] == alert.id

    async def test_store_failure_surfaces_as_dependency_failure(self) -> None:
        class DownStore(InMemoryAlertStore):
            async def insert_if_no_open(self, alert: Alert) -> None:
                raise StoreError("connection refused")

        manager, _, _, _ = _stack(store=DownStore())
        with pytest.raises(DependencyFailureError):
            await manager.trigger(_payload(), actor="user-1")


# ── Notifications from trigger ──────────────────────────────────


class TestTriggerNotifications:
    async def test_contacts_and_emergency_services_notified(self) -> None:
        manager, store, sender, dispatcher = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        await dispatcher.drain()

        assert sender.kinds_for("0700000003") == [NotificationKind.TRIGGERED]
        assert {"110", "180", "185"} <= {r.phone for r, _ in sender.sent}
        stored = await store.get(alert.id)
        assert stored is not None
        assert stored.notified_contacts[0].delivery_status == DeliveryStatus.SENT
        assert stored.notified_contacts[0].notified_at == T0
        assert stored.emergency_notified_at == T0

    async def test_non_critical_skips_emergency_services(self) -> None:
        manager, store, sender, dispatcher = _stack()
        alert = await manager.trigger(
            _payload(category="BREAKDOWN", severity="LOW"), actor="user-1",
        )
        await dispatcher.drain()
        assert alert.priority == 1
        assert "110" not in {r.phone for r, _ in sender.sent}
        stored = await store.get(alert.id)
        assert stored is not None and stored.emergency_notified_at is None

    async def test_failed_delivery_does_not_fail_trigger(self) -> None:
        manager, store, _, dispatcher = _stack(sender=FakeSender(fail_phones={"0700000003"}))
        alert = await manager.trigger(_payload(), actor="user-1")
        await dispatcher.drain()
        stored = await store.get(alert.id)
        assert stored is not None
        assert stored.notified_contacts[0].delivery_status == DeliveryStatus.FAILED
        assert stored.status == AlertStatus.ACTIVE


# ── Transition ──────────────────────────────────────────────────


class TestTransition:
    async def test_full_scenario(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")

        with pytest.raises(ConflictError):
            await manager.trigger(_payload(), actor="user-1")

        in_progress = await manager.transition(alert.id, AlertStatus.IN_PROGRESS, "user-1")
        assert in_progress.status == AlertStatus.IN_PROGRESS

        with pytest.raises(InvalidInputError) as exc:
            await manager.transition(alert.id, AlertStatus.RESOLVED, "user-1")
        assert exc.value.fields == ["comment"]

        resolved = await manager.transition(
            alert.id, AlertStatus.RESOLVED, "user-1", {"comment": "handled by dispatch"},
        )
        assert resolved.status == AlertStatus.RESOLVED
        assert resolved.resolved_at == T0
        assert resolved.resolved_by == "user-1"
        assert resolved.resolution_comment == "handled by dispatch"

        with pytest.raises(InvalidTransitionError):
            await manager.transition(alert.id, AlertStatus.ACTIVE, "user-1")

    async def test_only_trigger_er_may_transition(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(ForbiddenError):
            await manager.transition(alert.id, AlertStatus.IN_PROGRESS, "user-2")

    async def test_unknown_alert(self) -> None:
        manager, _, _, _ = _stack()
        with pytest.raises(NotFoundError):
            await manager.transition("nope", AlertStatus.IN_PROGRESS, "user-1")

    async def test_unknown_status(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(InvalidInputError) as exc:
            await manager.transition(alert.id, "CLOSED", "user-1")
        assert exc.value.fields == ["status"]

    async def test_same_status_is_invalid(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(InvalidTransitionError):
            await manager.transition(alert.id, AlertStatus.ACTIVE, "user-1")

    async def test_in_progress_back_to_active(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        await manager.transition(alert.id, "IN_PROGRESS", "user-1")
        back = await manager.transition(alert.id, "ACTIVE", "user-1")
        assert back.status == AlertStatus.ACTIVE

    async def test_false_alarm_requires_comment(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(InvalidInputError):
            await manager.transition(alert.id, AlertStatus.FALSE_ALARM, "user-1", {"comment": "oops"})
        closed = await manager.transition(
            alert.id, AlertStatus.FALSE_ALARM, "user-1", {"comment": "pressed by mistake"},
        )
        assert closed.status == AlertStatus.FALSE_ALARM
        assert closed.resolved_at == T0

    async def test_extras_recorded(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        updated = await manager.transition(
            alert.id,
            AlertStatus.IN_PROGRESS,
            "user-1",
            {"first_aid_given": True, "police_contacted": False},
        )
        assert updated.first_aid_given is True
        assert updated.police_contacted is False

    async def test_resolution_notifies_contacts(self) -> None:
        manager, _, sender, dispatcher = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        await manager.transition(
            alert.id, AlertStatus.RESOLVED, "user-1", {"comment": "everyone is safe"},
        )
        await dispatcher.drain()
        assert sender.kinds_for("0700000003") == [
            NotificationKind.TRIGGERED,
            NotificationKind.RESOLVED,
        ]

    async def test_false_alarm_sends_no_resolution(self) -> None:
        manager, _, sender, dispatcher = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        await manager.transition(
            alert.id, AlertStatus.FALSE_ALARM, "user-1", {"comment": "pressed by mistake"},
        )
        await dispatcher.drain()
        assert sender.kinds_for("0700000003") == [NotificationKind.TRIGGERED]

    async def test_stale_write_is_retried(self) -> None:
        class RacyStore(InMemoryAlertStore):
            def __init__(self) -> None:
                super().__init__()
                self.losses = 2

            async def replace(self, alert: Alert, expected_version: int) -> Alert:
                if self.losses:
                    self.losses -= 1
                    raise StaleWriteError("lost race")
                return await super().replace(alert, expected_version)

        store = RacyStore()
        manager, _, _, _ = _stack(store=store)
        alert = await manager.trigger(_payload(), actor="user-1")
        updated = await manager.transition(alert.id, AlertStatus.IN_PROGRESS, "user-1")
        assert updated.status == AlertStatus.IN_PROGRESS
        assert store.losses == 0

    async def test_persistent_contention_is_conflict(self) -> None:
        class AlwaysStale(InMemoryAlertStore):
            async def replace(self, alert: Alert, expected_version: int) -> Alert:
                raise StaleWriteError("lost race")

        manager, _, _, _ = _stack(store=AlwaysStale(), max_write_attempts=3)
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(ConflictError):
            await manager.transition(alert.id, AlertStatus.IN_PROGRESS, "user-1")


# ── Escalation ──────────────────────────────────────────────────


class TestEscalate:
    async def test_ratchet_and_priority_recompute(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(
            _payload(category="MEDICAL", severity="LOW"), actor="user-1",
        )
        assert alert.priority == 2

        first = await manager.escalate(alert.id, "operator")
        assert (first.severity, first.priority) == (Severity.MEDIUM, 3)
        second = await manager.escalate(alert.id, "operator")
        assert (second.severity, second.priority) == (Severity.CRITICAL, 4)
        third = await manager.escalate(alert.id, "operator")
        assert third.severity == Severity.CRITICAL
        assert third.version == second.version

    async def test_terminal_alert_cannot_escalate(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(severity="LOW"), actor="user-1")
        await manager.transition(
            alert.id, AlertStatus.RESOLVED, "user-1", {"comment": "handled by dispatch"},
        )
        with pytest.raises(InvalidTransitionError):
            await manager.escalate(alert.id, "user-1")

    async def test_unknown_alert(self) -> None:
        manager, _, _, _ = _stack()
        with pytest.raises(NotFoundError):
            await manager.escalate("nope", "operator")

    async def test_becoming_critical_notifies_emergency_services_once(self) -> None:
        manager, _, sender, dispatcher = _stack()
        alert = await manager.trigger(
            _payload(category="BREAKDOWN", severity="MEDIUM"), actor="user-1",
        )
        await manager.escalate(alert.id, "operator")
        await manager.escalate(alert.id, "operator")
        await dispatcher.drain()

        police = [m for r, m in sender.sent if r.phone == "110"]
        assert len(police) == 1
        assert police[0].kind == NotificationKind.EMERGENCY_SERVICES
        assert sender.kinds_for("0700000003") == [
            NotificationKind.TRIGGERED,
            NotificationKind.ESCALATED,
        ]


# ── Contacts ────────────────────────────────────────────────────


class TestAddContact:
    async def test_twenty_contacts_then_limit(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(notified_contacts=[]), actor="user-1")
        for i in range(20):
            updated = await manager.add_contact(alert.id, _contact(i))
        assert len(updated.notified_contacts) == 20
        with pytest.raises(LimitExceededError):
            await manager.add_contact(alert.id, _contact(20))

    async def test_new_contact_is_pending_and_only_it_is_notified(self) -> None:
        manager, store, sender, dispatcher = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        await dispatcher.drain()
        sender.sent.clear()

        updated = await manager.add_contact(alert.id, _contact(7))
        assert updated.notified_contacts[-1].delivery_status == DeliveryStatus.PENDING
        await dispatcher.drain()

        assert [r.phone for r, _ in sender.sent] == ["0710000007"]
        stored = await store.get(alert.id)
        assert stored is not None
        assert stored.notified_contacts[-1].delivery_status == DeliveryStatus.SENT

    async def test_invalid_contact(self) -> None:
        manager, _, _, _ = _stack()
        alert = await manager.trigger(_payload(), actor="user-1")
        with pytest.raises(InvalidInputError):
            await manager.add_contact(alert.id, {"name": "X", "phone": "1", "relation": "FRIEND"})

    async def test_unknown_alert(self) -> None:
        manager, _, _, _ = _stack()
        with pytest.raises(NotFoundError):
            await manager.add_contact("nope", _contact(1))
