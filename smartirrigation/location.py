"""Device location with a persisted local mirror."""
from __future__ import annotations

import logging
import math

from .const import (
    DEFAULT_LATITUDE,
    DEFAULT_LONGITUDE,
    KEY_HAS_SAVED_LOCATION,
    KEY_SAVED_LATITUDE,
    KEY_SAVED_LONGITUDE,
)
from .irrigation_api import InvalidLocationError, IrrigationClient
from .models import DeviceLocation, LocationConfig, LookupOutcome
from .storage import KeyValueStore

_LOGGER = logging.getLogger(__name__)


def _parse_coordinate(value, name: str, limit: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError) as err:
        raise InvalidLocationError(f"{name} must be a number, got {value!r}") from err
    if not math.isfinite(parsed):
        raise InvalidLocationError(f"{name} must be finite, got {value!r}")
    if not -limit <= parsed <= limit:
        raise InvalidLocationError(f"{name} must be between -{limit:g} and {limit:g}, got {parsed:g}")
    return parsed


def _stored_float(raw: str | None, default: float) -> float:
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if math.isfinite(value) else default


class LocationStore:
    """Owns :class:`LocationConfig`; the mirror only records what the backend confirmed."""

    def __init__(self, client: IrrigationClient, store: KeyValueStore):
        self._client = client
        self._store = store

    @property
    def config(self) -> LocationConfig:
        return LocationConfig(
            latitude=_stored_float(self._store.get(KEY_SAVED_LATITUDE), DEFAULT_LATITUDE),
            longitude=_stored_float(self._store.get(KEY_SAVED_LONGITUDE), DEFAULT_LONGITUDE),
            has_real_location=self._store.get(KEY_HAS_SAVED_LOCATION) == "true",
        )

    @property
    def needs_setup(self) -> bool:
        """True until a location has been saved or found on the backend."""
        return not self.config.has_real_location

    async def get(self) -> DeviceLocation | None:
        lookup = await self._client.get_location()
        if lookup.outcome is LookupOutcome.FOUND and lookup.location is not None:
            self._remember(lookup.location.latitude, lookup.location.longitude)
            return lookup.location
        if lookup.outcome is LookupOutcome.ABSENT:
            self._store.set(KEY_HAS_SAVED_LOCATION, "false")
        return None

    async def save(self, latitude, longitude) -> LocationConfig:
        """Validate, send, and only then mirror the new coordinates locally."""
        lat = _parse_coordinate(latitude, "latitude", 90)
        lon = _parse_coordinate(longitude, "longitude", 180)

        await self._client.update_location(lat, lon)
        self._remember(lat, lon)
        _LOGGER.info("Location saved: %.4f, %.4f", lat, lon)
        return self.config

    def _remember(self, latitude: float, longitude: float) -> None:
        self._store.set(KEY_SAVED_LATITUDE, repr(latitude))
        self._store.set(KEY_SAVED_LONGITUDE, repr(longitude))
        self._store.set(KEY_HAS_SAVED_LOCATION, "true")
