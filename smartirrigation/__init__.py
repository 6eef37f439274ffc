import logging
from dataclasses import dataclass, field

import aiohttp

from .config import ClientSettings
from .coordinator import DeviceSyncScheduler, data_age, filter_logs
from .forecast import ForecastCacheCoordinator
from .irrigation_api import (
    InvalidLocationError,
    IrrigationApiError,
    IrrigationAuthError,
    IrrigationClient,
    IrrigationConnectionError,
)
from .location import LocationStore
from .models import LocationConfig, Session, WeatherForecast
from .session import SessionStore
from .storage import JsonFileKeyValueStore, KeyValueStore

_LOGGER = logging.getLogger(__name__)

__all__ = [
    "ClientSettings",
    "DeviceSyncScheduler",
    "ForecastCacheCoordinator",
    "InvalidLocationError",
    "IrrigationApiError",
    "IrrigationAuthError",
    "IrrigationClient",
    "IrrigationConnectionError",
    "IrrigationContext",
    "LocationStore",
    "SessionStore",
    "async_setup",
    "async_unload",
    "data_age",
    "filter_logs",
]


@dataclass
class IrrigationContext:
    """Everything a running client needs, wired together once."""

    settings: ClientSettings
    store: KeyValueStore
    http: aiohttp.ClientSession
    sessions: SessionStore
    client: IrrigationClient
    scheduler: DeviceSyncScheduler
    locations: LocationStore
    forecasts: ForecastCacheCoordinator
    owns_http: bool = field(default=False, repr=False)

    # --- action entry points ---

    async def login(self, username: str, password: str, *, admin: bool = False) -> Session:
        return await self.client.login(username, password, admin=admin)

    async def logout(self) -> None:
        """End the session and stop everything that was polling on its behalf."""
        await self.scheduler.async_shutdown()
        self.client.logout()

    async def trigger_irrigation(self, volume_l: float) -> str | None:
        return await self.client.trigger_irrigation(volume_l)

    async def recompute_plan(self):
        return await self.client.recompute_plan()

    async def change_password(self, old_password: str, new_password: str) -> str:
        return await self.client.change_password(old_password, new_password)

    async def save_location(self, latitude, longitude) -> LocationConfig:
        """Save the location, then pull a forecast for it."""
        config = await self.locations.save(latitude, longitude)
        await self.forecasts.refresh(config.latitude, config.longitude)
        return config

    async def load_location(self) -> tuple[LocationConfig, list[WeatherForecast]]:
        """Initial load for a location view: saved coordinates plus forecast."""
        await self.locations.get()
        forecast = await self.forecasts.refresh()
        return self.locations.config, forecast

    # --- dashboard lifecycle ---

    def mount(self) -> None:
        self.scheduler.start()

    def unmount(self) -> None:
        self.scheduler.cancel()


async def async_setup(
    settings: ClientSettings | None = None,
    *,
    store: KeyValueStore | None = None,
    http: aiohttp.ClientSession | None = None,
) -> IrrigationContext:
    """Build the client stack and restore any persisted session."""
    settings = settings or ClientSettings()
    if store is None:
        store = JsonFileKeyValueStore(settings.state_file)

    owns_http = http is None
    if http is None:
        http = aiohttp.ClientSession()

    sessions = SessionStore(store)
    sessions.restore()

    client = IrrigationClient(http, sessions, settings)
    scheduler = DeviceSyncScheduler(
        client,
        status_interval=settings.status_interval,
        logs_interval=settings.logs_interval,
        page_size=settings.logs_page_size,
    )
    locations = LocationStore(client, store)
    forecasts = ForecastCacheCoordinator(
        client,
        locations,
        settle_delay=settings.forecast_settle_delay,
        days=settings.forecast_days,
    )

    _LOGGER.debug("Client set up against %s (authenticated=%s)", client.base_url, sessions.is_authenticated)
    return IrrigationContext(
        settings=settings,
        store=store,
        http=http,
        sessions=sessions,
        client=client,
        scheduler=scheduler,
        locations=locations,
        forecasts=forecasts,
        owns_http=owns_http,
    )


async def async_unload(context: IrrigationContext) -> None:
    """Tear down polling and close the HTTP session if we opened it."""
    await context.scheduler.async_shutdown()
    if context.owns_http:
        await context.http.close()
