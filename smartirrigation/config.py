from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from yarl import URL

from .const import (
    DEFAULT_API_PREFIX,
    DEFAULT_BACKEND_PORT,
    DEFAULT_DEVICE_ID,
    DEFAULT_FORECAST_SETTLE_DELAY,
    DEFAULT_LOGS_INTERVAL,
    DEFAULT_STATUS_INTERVAL,
    FORECAST_DAYS,
    LOGS_PAGE_SIZE,
    LOOPBACK_HOSTS,
)


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="IRRIGATION_", extra="ignore")

    # where the client is served from; loopback means "talk to the backend directly"
    origin: str = Field(default="http://localhost")
    backend_port: int = DEFAULT_BACKEND_PORT
    api_prefix: str = DEFAULT_API_PREFIX

    default_device_id: str = DEFAULT_DEVICE_ID

    status_interval: float = Field(default=DEFAULT_STATUS_INTERVAL, gt=0)
    logs_interval: float = Field(default=DEFAULT_LOGS_INTERVAL, gt=0)
    logs_page_size: int = Field(default=LOGS_PAGE_SIZE, gt=0)
    forecast_settle_delay: float = Field(default=DEFAULT_FORECAST_SETTLE_DELAY, ge=0)
    forecast_days: int = Field(default=FORECAST_DAYS, gt=0)

    # None leaves timeouts to aiohttp's transport defaults
    request_timeout: float | None = None

    state_file: str = Field(default=".smartirrigation/state.json")
    log_level: str = "INFO"


def resolve_base_url(settings: ClientSettings) -> str:
    """Pick the API base for the deployment the client runs in.

    Local development talks straight to the backend port; everything else
    goes through a path on the serving origin so a reverse proxy can forward.
    """
    prefix = "/" + settings.api_prefix.strip("/")
    origin = URL(settings.origin)
    if origin.host in LOOPBACK_HOSTS:
        return f"http://localhost:{settings.backend_port}{prefix}"
    return str(origin.with_path(prefix).with_query(None).with_fragment(None))
