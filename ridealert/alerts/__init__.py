"""Emergency alert lifecycle, validation and queries."""

from ridealert.alerts.exceptions import (
    AlertError,
    ConflictError,
    DependencyFailureError,
    ForbiddenError,
    InvalidInputError,
    InvalidTransitionError,
    LimitExceededError,
    NotFoundError,
)
from ridealert.alerts.geocoder import (
    CoordinateGeocoder,
    GeocodedPlace,
    HttpReverseGeocoder,
    ReverseGeocoder,
)
from ridealert.alerts.lifecycle import AlertLifecycleManager
from ridealert.alerts.priority import compute_priority, next_severity
from ridealert.alerts.queries import AlertQueryService
from ridealert.alerts.validation import validate_for_creation

__all__ = [
    "AlertError",
    "AlertLifecycleManager",
    "AlertQueryService",
    "ConflictError",
    "CoordinateGeocoder",
    "DependencyFailureError",
    "ForbiddenError",
    "GeocodedPlace",
    "HttpReverseGeocoder",
    "InvalidInputError",
    "InvalidTransitionError",
    "LimitExceededError",
    "NotFoundError",
    "ReverseGeocoder",
    "compute_priority",
    "next_severity",
    "validate_for_creation",
]
