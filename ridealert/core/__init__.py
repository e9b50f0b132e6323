"""Core module — config, types, logging and geo math."""

from ridealert.core.config import Settings, get_settings, load_settings, reset_settings
from ridealert.core.geo import distance_km, haversine_km, in_region
from ridealert.core.logging import setup_logging
from ridealert.core.types import (
    Alert,
    AlertCategory,
    AlertCreate,
    AlertFilter,
    AlertPage,
    AlertStatistics,
    AlertStatus,
    ContactChannel,
    ContactInput,
    ContactRelation,
    DeliveryStatus,
    GeoPoint,
    NearbyAlert,
    NotifiedContact,
    Occupant,
    Severity,
    TransitionExtra,
    TripInfo,
)

__all__ = [
    "Alert",
    "AlertCategory",
    "AlertCreate",
    "AlertFilter",
    "AlertPage",
    "AlertStatistics",
    "AlertStatus",
    "ContactChannel",
    "ContactInput",
    "ContactRelation",
    "DeliveryStatus",
    "GeoPoint",
    "NearbyAlert",
    "NotifiedContact",
    "Occupant",
    "Settings",
    "Severity",
    "TransitionExtra",
    "TripInfo",
    "distance_km",
    "get_settings",
    "haversine_km",
    "in_region",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
