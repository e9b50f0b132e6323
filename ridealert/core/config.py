"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class StoreConfig(BaseModel):
    """Alert store backend configuration."""

    backend: str = "memory"  # memory | mongo
    mongo_uri: str = "mongodb://localhost:27017"
    database: str = "ridealert"
    collection: str = "emergency_alerts"


class RegionConfig(BaseModel):
    """Bounding box of the platform's expected operating region."""

    name: str = "Côte d'Ivoire"
    min_longitude: float = -8.6
    max_longitude: float = -2.5
    min_latitude: float = 4.3
    max_latitude: float = 10.7


class AlertsConfig(BaseModel):
    """Lifecycle and query limits for emergency alerts."""

    region: RegionConfig = RegionConfig()
    phone_pattern: str = r"^\+?[0-9]{8,15}$"
    max_write_attempts: int = 5
    stale_threshold_minutes: int = 120
    default_nearby_radius_km: float = 50.0
    nearby_limit: int = 50
    active_limit: int = 100
    statistics_window_days: int = 30


class SmsGatewayConfig(BaseModel):
    """HTTP SMS gateway used to reach contacts."""

    enabled: bool = False
    url: str = ""
    api_key: SecretStr = SecretStr("")
    sender_id: str = "RIDEALERT"


class EmergencyServiceConfig(BaseModel):
    """A public emergency service reached for critical alerts."""

    name: str
    phone: str


class NotificationsConfig(BaseModel):
    """Fan-out delivery configuration."""

    max_concurrency: int = 10
    max_retries: int = 3
    base_delay_secs: float = 1.0
    max_delay_secs: float = 30.0
    attempt_timeout_secs: float = 10.0
    rate_per_sec: int = 20
    sms: SmsGatewayConfig = SmsGatewayConfig()
    emergency_services: list[EmergencyServiceConfig] = [
        EmergencyServiceConfig(name="Police", phone="110"),
        EmergencyServiceConfig(name="Fire brigade", phone="180"),
        EmergencyServiceConfig(name="Ambulance", phone="185"),
    ]


class GeocoderConfig(BaseModel):
    """Reverse geocoding provider configuration."""

    enabled: bool = False
    base_url: str = "https://nominatim.openstreetmap.org/reverse"
    timeout_secs: float = 5.0
    user_agent: str = "ridealert/0.1"


class MonitorConfig(BaseModel):
    """Background stale-alert monitor configuration."""

    enabled: bool = True
    check_interval_secs: float = 300.0


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"  # json | console
    # When set, audit_log records are also appended to this file.
    audit_path: str | None = None


class Settings(BaseModel):
    """Root settings container."""

    store: StoreConfig = StoreConfig()
    alerts: AlertsConfig = AlertsConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    geocoder: GeocoderConfig = GeocoderConfig()
    monitor: MonitorConfig = MonitorConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    _settings = Settings(**data)
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
