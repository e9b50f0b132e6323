"""Field-level validation for alert input and transitions."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from ridealert.alerts.exceptions import InvalidInputError, InvalidTransitionError
from ridealert.core.config import AlertsConfig
from ridealert.core.geo import in_region
from ridealert.core.types import (
    COMMENT_MAX_LENGTH,
    COMMENT_MIN_LENGTH,
    AlertCreate,
    AlertFilter,
    AlertStatus,
    ContactInput,
    GeoPoint,
    TransitionExtra,
)

logger = structlog.get_logger(__name__)

_ModelT = TypeVar("_ModelT", bound=BaseModel)

# current status → statuses it may move to
TRANSITIONS: dict[AlertStatus, frozenset[AlertStatus]] = {
    AlertStatus.ACTIVE: frozenset({
        AlertStatus.IN_PROGRESS,
        AlertStatus.RESOLVED,
        AlertStatus.FALSE_ALARM,
    }),
    AlertStatus.IN_PROGRESS: frozenset({
        AlertStatus.ACTIVE,
        AlertStatus.RESOLVED,
        AlertStatus.FALSE_ALARM,
    }),
    AlertStatus.RESOLVED: frozenset(),
    AlertStatus.FALSE_ALARM: frozenset(),
}


def _field_path(loc: tuple[int | str, ...]) -> str:
    return ".".join(str(part) for part in loc)


def _parse(model: type[_ModelT], payload: Mapping[str, Any] | BaseModel) -> _ModelT:
    """Validate *payload* into *model*, translating pydantic errors."""
    data = payload.model_dump() if isinstance(payload, BaseModel) else payload
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = exc.errors()
        fields = list(dict.fromkeys(_field_path(e["loc"]) for e in errors))
        detail = "; ".join(f"{_field_path(e['loc'])}: {e['msg']}" for e in errors)
        raise InvalidInputError(f"invalid input: {detail}", fields=fields) from exc


def _check_phones(
    entries: list[Any], prefix: str, pattern: re.Pattern[str],
) -> list[str]:
    return [
        f"{prefix}.{i}.phone"
        for i, entry in enumerate(entries)
        if not pattern.fullmatch(entry.phone)
    ]


def validate_for_creation(
    payload: Mapping[str, Any] | AlertCreate,
    config: AlertsConfig | None = None,
) -> AlertCreate:
    """Validate a trigger request.

    Strings are trimmed and phone numbers normalized by the model. Raises
    InvalidInputError listing every offending field.
    """
    config = config or AlertsConfig()
    create = _parse(AlertCreate, payload)
    pattern = re.compile(config.phone_pattern)
    bad = _check_phones(create.occupants, "occupants", pattern)
    bad += _check_phones(create.notified_contacts, "notified_contacts", pattern)
    if bad:
        raise InvalidInputError(
            f"invalid phone number(s): {', '.join(bad)}", fields=bad,
        )
    return create


def validate_contact(
    payload: Mapping[str, Any] | ContactInput,
    config: AlertsConfig | None = None,
) -> ContactInput:
    config = config or AlertsConfig()
    contact = _parse(ContactInput, payload)
    if not re.fullmatch(config.phone_pattern, contact.phone):
        raise InvalidInputError("invalid phone number: phone", fields=["phone"])
    return contact


def validate_transition_extra(
    payload: Mapping[str, Any] | TransitionExtra | None,
) -> TransitionExtra:
    if payload is None:
        return TransitionExtra()
    return _parse(TransitionExtra, payload)


def check_position(point: GeoPoint, config: AlertsConfig | None = None) -> bool:
    """Soft region check. Logs a warning and returns False outside the region."""
    config = config or AlertsConfig()
    if in_region(point, config.region):
        return True
    logger.warning(
        "position_outside_region",
        longitude=point.longitude,
        latitude=point.latitude,
        region=config.region.name,
    )
    return False


def check_transition(current: AlertStatus, new: AlertStatus) -> None:
    """Raise InvalidTransitionError unless *current* → *new* is allowed."""
    if new not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(
            f"cannot move alert from {current.value} to {new.value}"
        )


def require_resolution_comment(extra: TransitionExtra) -> str:
    """Return the trimmed comment required to close an alert."""
    comment = (extra.comment or "").strip()
    if len(comment) < COMMENT_MIN_LENGTH:
        raise InvalidInputError(
            f"a comment of at least {COMMENT_MIN_LENGTH} characters is required",
            fields=["comment"],
        )
    if len(comment) > COMMENT_MAX_LENGTH:
        raise InvalidInputError(
            f"comment exceeds {COMMENT_MAX_LENGTH} characters",
            fields=["comment"],
        )
    return comment


def validate_point(payload: Mapping[str, Any] | GeoPoint) -> GeoPoint:
    """Parse a query point; the global bounds are enforced by the model."""
    if isinstance(payload, GeoPoint):
        return payload
    return _parse(GeoPoint, payload)


def validate_filter(payload: Mapping[str, Any] | AlertFilter | None) -> AlertFilter:
    """Parse search criteria. Window bounds must carry a timezone."""
    if payload is None:
        return AlertFilter()
    if isinstance(payload, AlertFilter):
        return payload
    return _parse(AlertFilter, payload)


def validate_statuses(values: Iterable[AlertStatus | str]) -> list[AlertStatus]:
    """Coerce a status filter, rejecting unknown names."""
    try:
        return [AlertStatus(v) for v in values]
    except ValueError as exc:
        raise InvalidInputError(f"unknown status in filter: {exc}", fields=["statuses"]) from exc
