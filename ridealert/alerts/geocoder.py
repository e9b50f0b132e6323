"""Reverse geocoding for best-effort address enrichment."""

from __future__ import annotations

import abc
from typing import Any

import httpx
import structlog
from pydantic import BaseModel

from ridealert.alerts.exceptions import GeocodingError
from ridealert.core.config import GeocoderConfig

logger = structlog.get_logger(__name__)

# Nominatim address keys, most specific first.
_LOCALITY_KEYS = ("city", "town", "village", "suburb", "municipality", "county", "state")


class GeocodedPlace(BaseModel):
    address: str | None = None
    locality: str | None = None


def coordinates_text(latitude: float, longitude: float) -> str:
    return f"Coordinates: {latitude:.4f}, {longitude:.4f}"


class ReverseGeocoder(abc.ABC):
    """Resolves a coordinate to a human-readable place."""

    @abc.abstractmethod
    async def resolve(self, latitude: float, longitude: float) -> GeocodedPlace:
        """Return the place at the coordinate. Raises GeocodingError on failure."""

    async def close(self) -> None:
        """Release resources. Default is a no-op."""


class CoordinateGeocoder(ReverseGeocoder):
    """Offline fallback that renders the raw coordinates as the address."""

    async def resolve(self, latitude: float, longitude: float) -> GeocodedPlace:
        return GeocodedPlace(address=coordinates_text(latitude, longitude))


def _parse_nominatim(data: dict[str, Any]) -> GeocodedPlace:
    address = data.get("display_name")
    parts = data.get("address")
    locality = None
    if isinstance(parts, dict):
        for key in _LOCALITY_KEYS:
            value = parts.get(key)
            if isinstance(value, str) and value:
                locality = value
                break
    return GeocodedPlace(
        address=address if isinstance(address, str) and address else None,
        locality=locality,
    )


class HttpReverseGeocoder(ReverseGeocoder):
    """Nominatim-compatible reverse geocoder over httpx.

    Falls back to the coordinate text when the provider knows no address.
    """

    def __init__(self, config: GeocoderConfig) -> None:
        self._config = config
        self._http: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._config.timeout_secs),
                headers={"User-Agent": self._config.user_agent},
            )
        return self._http

    async def resolve(self, latitude: float, longitude: float) -> GeocodedPlace:
        params = {
            "lat": latitude,
            "lon": longitude,
            "format": "jsonv2",
            "addressdetails": 1,
        }
        try:
            response = await self._get_client().get(self._config.base_url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise GeocodingError(
                f"geocoder returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise GeocodingError(f"geocoder request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise GeocodingError("geocoder returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise GeocodingError("geocoder returned non-object")

        place = _parse_nominatim(body)
        if place.address is None:
            place.address = coordinates_text(latitude, longitude)
        return place

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
