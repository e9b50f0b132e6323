"""Pure functions that render alerts into notification messages."""

from __future__ import annotations

from ridealert.core.types import Alert
from ridealert.notify.types import NotificationKind, NotificationMessage

_TITLES: dict[NotificationKind, str] = {
    NotificationKind.TRIGGERED: "EMERGENCY ALERT",
    NotificationKind.ESCALATED: "EMERGENCY ESCALATED",
    NotificationKind.RESOLVED: "EMERGENCY RESOLVED",
    NotificationKind.CONTACT_ADDED: "EMERGENCY ALERT",
    NotificationKind.EMERGENCY_SERVICES: "CRITICAL EMERGENCY",
}


def maps_link(alert: Alert) -> str:
    return (
        "https://maps.google.com/?q="
        f"{alert.position.latitude:.6f},{alert.position.longitude:.6f}"
    )


def _location(alert: Alert) -> str:
    if alert.address:
        return alert.address
    return f"{alert.position.latitude:.4f}, {alert.position.longitude:.4f}"


def format_alert_message(alert: Alert, kind: NotificationKind) -> NotificationMessage:
    """Render *alert* for delivery as a *kind* notification."""
    title = f"{_TITLES[kind]} {alert.reference}".strip()

    if kind == NotificationKind.RESOLVED:
        body = f"The {alert.category.value.lower()} alert has been resolved."
        if alert.resolution_comment:
            body += f" {alert.resolution_comment}"
    else:
        body = (
            f"{alert.category.value} ({alert.severity.value}) reported at "
            f"{_location(alert)}. {alert.description} {maps_link(alert)}"
        )

    fields = {
        "category": alert.category.value,
        "severity": alert.severity.value,
        "priority": str(alert.priority),
        "status": alert.status.value,
        "occupants": str(alert.occupant_count),
    }
    if alert.trip_info and alert.trip_info.vehicle_plate:
        fields["vehicle_plate"] = alert.trip_info.vehicle_plate

    return NotificationMessage(
        kind=kind,
        alert_id=alert.id,
        reference=alert.reference,
        title=title,
        body=body,
        fields=fields,
    )
