"""Deterministic priority scoring and severity ratchet."""

from __future__ import annotations

from ridealert.core.types import AlertCategory, Severity

DEFAULT_PRIORITY = 1

_PERSONAL_DANGER: dict[Severity, int] = {
    Severity.CRITICAL: 5,
    Severity.MEDIUM: 4,
    Severity.LOW: 3,
}

PRIORITY_TABLE: dict[AlertCategory, dict[Severity, int]] = {
    AlertCategory.SOS: _PERSONAL_DANGER,
    AlertCategory.ACCIDENT: _PERSONAL_DANGER,
    AlertCategory.AGGRESSION: _PERSONAL_DANGER,
    AlertCategory.MEDICAL: {
        Severity.CRITICAL: 4,
        Severity.MEDIUM: 3,
        Severity.LOW: 2,
    },
    AlertCategory.BREAKDOWN: {
        Severity.CRITICAL: 2,
        Severity.MEDIUM: 2,
        Severity.LOW: 1,
    },
    AlertCategory.OTHER: {
        Severity.CRITICAL: 3,
        Severity.MEDIUM: 2,
        Severity.LOW: 1,
    },
}

SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.LOW,
    Severity.MEDIUM,
    Severity.CRITICAL,
)


def compute_priority(category: AlertCategory | str, severity: Severity | str) -> int:
    """Look up the 1-5 priority for a category/severity pair.

    Unmapped pairs (including unknown values) score DEFAULT_PRIORITY.
    """
    try:
        cat = AlertCategory(category)
        sev = Severity(severity)
    except ValueError:
        return DEFAULT_PRIORITY
    return PRIORITY_TABLE.get(cat, {}).get(sev, DEFAULT_PRIORITY)


def next_severity(severity: Severity) -> Severity:
    """One step up the ratchet. CRITICAL stays CRITICAL."""
    idx = SEVERITY_ORDER.index(severity)
    return SEVERITY_ORDER[min(idx + 1, len(SEVERITY_ORDER) - 1)]
