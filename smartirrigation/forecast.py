import asyncio
import logging
from datetime import date
from typing import Callable

from .const import DEFAULT_FORECAST_SETTLE_DELAY, FORECAST_DAYS
from .irrigation_api import IrrigationClient
from .location import LocationStore
from .models import WeatherForecast

_LOGGER = logging.getLogger(__name__)


class ForecastCacheCoordinator:
    """Trigger a server-side forecast refresh, wait, then read the cache.

    The backend computes forecasts asynchronously, so the read after the
    settle delay may still see the previous cache.
    """

    def __init__(
        self,
        client: IrrigationClient,
        locations: LocationStore,
        *,
        settle_delay: float = DEFAULT_FORECAST_SETTLE_DELAY,
        days: int = FORECAST_DAYS,
        today: Callable[[], date] = date.today,
    ):
        self._client = client
        self._locations = locations
        self._settle_delay = settle_delay
        self._days = days
        self._today = today
        self.forecast: list[WeatherForecast] = []

    async def request_refresh(
        self, latitude: float | None = None, longitude: float | None = None
    ) -> bool:
        """Ask the backend to recompute; False when skipped or rejected."""
        if latitude is None or longitude is None:
            location = await self._locations.get()
            if location is None:
                _LOGGER.info("No device location yet, skipping forecast refresh")
                return False
            latitude, longitude = location.latitude, location.longitude
        return await self._client.update_forecast(latitude, longitude)

    async def refresh(
        self, latitude: float | None = None, longitude: float | None = None
    ) -> list[WeatherForecast]:
        await self.request_refresh(latitude, longitude)
        await asyncio.sleep(self._settle_delay)

        records = await self._client.get_forecast(self._days)
        if len(records) < self._days:
            _LOGGER.info("Forecast cache has %d of %d days, showing placeholder", len(records), self._days)
            self.forecast = WeatherForecast.placeholder(self._today(), self._days)
        else:
            records = sorted(records, key=lambda r: r.date)[: self._days]
            self.forecast = [r.to_forecast() for r in records]
        return self.forecast
