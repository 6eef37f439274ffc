import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import aiohttp
from pydantic import ValidationError

from .config import ClientSettings, resolve_base_url
from .const import (
    FORECAST_DAYS,
    HISTORY_HOURS,
    HISTORY_LIMIT,
    LOGS_PAGE_SIZE,
    MANUAL_IRRIGATION_REASON,
    ROLE_USER,
)
from .models import (
    DailyPlan,
    DeviceLocation,
    DeviceStatus,
    ForecastRecord,
    LocationLookup,
    LogPage,
    LoginResponse,
    LookupOutcome,
    ManagedUser,
    SensorHistoryPoint,
    SensorReading,
    Session,
)
from .session import SessionStore, device_id_from_token

_LOGGER = logging.getLogger(__name__)


class IrrigationApiError(Exception):
    """Failure whose message is meant for the user."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class IrrigationConnectionError(IrrigationApiError):
    """The backend could not be reached at all."""


class IrrigationAuthError(IrrigationApiError):
    """Bad credentials, or a missing/expired token on a protected call."""


class IrrigationNotFoundError(IrrigationApiError):
    """404 from the backend."""


class InvalidLocationError(IrrigationApiError, ValueError):
    """Coordinates rejected before anything was sent."""


def _message(data: Any) -> str | None:
    if isinstance(data, dict):
        msg = data.get("message")
        if isinstance(msg, str) and msg:
            return msg
    return None


def _rfc3339(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class IrrigationClient:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        sessions: SessionStore,
        settings: ClientSettings | None = None,
    ):
        self._session = session
        self._sessions = sessions
        self._settings = settings or ClientSettings()

        # resolved once; the deployment does not change under a running client
        self._base_url = resolve_base_url(self._settings)
        self._timeout = (
            aiohttp.ClientTimeout(total=self._settings.request_timeout)
            if self._settings.request_timeout
            else None
        )
        self._last_auth_error: IrrigationAuthError | None = None
        _LOGGER.debug("API base URL: %s", self._base_url)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def last_auth_error(self) -> IrrigationAuthError | None:
        """Most recent 401/403 seen on any call, cleared by a successful login."""
        return self._last_auth_error

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def device_id(self) -> str:
        """Device the session is bound to, or the default unit."""
        return self._sessions.device_id or self._settings.default_device_id

    # --- transport ---

    def _headers(self, with_body: bool, auth: bool = True) -> dict:
        headers = {}
        if with_body:
            headers["Content-Type"] = "application/json"
        token = self._sessions.token
        if auth and token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        payload: dict | None = None,
        auth: bool = True,
    ) -> Any:
        """Run one request and return the decoded JSON body.

        Raises IrrigationConnectionError when nothing came back,
        IrrigationNotFoundError on 404, IrrigationAuthError on 401/403 and
        IrrigationApiError for any other non-2xx status or an undecodable body.
        """
        url = f"{self._base_url}{path}"
        kwargs = {}
        if self._timeout is not None:
            kwargs["timeout"] = self._timeout

        _LOGGER.debug("API call: %s %s params=%s", method, url, params)
        try:
            async with self._session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(payload is not None, auth),
                **kwargs,
            ) as resp:
                status = resp.status
                malformed = False
                try:
                    data = await resp.json(content_type=None)
                except ValueError:
                    data = None
                    malformed = True
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise IrrigationConnectionError(f"{method} {path} failed: {err!r}") from err

        _LOGGER.debug("API response: %s %s status=%s data=%s", method, path, status, data)

        if status == 404:
            raise IrrigationNotFoundError(_message(data) or f"{path} not found", status)
        if status in (401, 403):
            err = IrrigationAuthError(_message(data) or f"{method} {path} HTTP {status}", status)
            if auth:
                self._last_auth_error = err
            raise err
        if not 200 <= status < 300:
            raise IrrigationApiError(_message(data) or f"{method} {path} HTTP {status}", status)
        if malformed:
            raise IrrigationApiError(f"{method} {path} returned malformed JSON", status)
        return data

    async def _action(self, method: str, path: str, what: str, **kwargs) -> dict:
        """Run a user-initiated call; a ``success: false`` body counts as failure."""
        data = await self._request(method, path, **kwargs)
        if not isinstance(data, dict):
            return {}
        if data.get("success") is False:
            raise IrrigationApiError(_message(data) or f"{what} failed")
        return data

    # --- reads: never raise, fall back instead ---

    async def get_device_status(self) -> DeviceStatus:
        device_id = self.device_id
        try:
            data = await self._request("GET", f"/device/{device_id}/status")
            return DeviceStatus.model_validate(data)
        except (IrrigationApiError, ValidationError) as err:
            _LOGGER.warning("Error fetching status for %s, using fallback snapshot: %s", device_id, err)
            return DeviceStatus.fallback(device_id)

    async def get_history(
        self, hours: int = HISTORY_HOURS, limit: int = HISTORY_LIMIT
    ) -> list[SensorHistoryPoint]:
        device_id = self.device_id
        end = datetime.now(timezone.utc)
        start = end - timedelta(hours=hours)
        params = {
            "start_time": _rfc3339(start),
            "end_time": _rfc3339(end),
            "limit": str(limit),
        }
        try:
            result = await self._request("GET", f"/device/{device_id}/history", params=params)
            rows = result.get("data") if isinstance(result, dict) else None
            if not rows:
                _LOGGER.warning("No history data available for %s", device_id)
                return []
            readings = sorted(
                (SensorReading.model_validate(row) for row in rows),
                key=lambda r: r.timestamp,
            )
        except (IrrigationApiError, ValidationError, TypeError) as err:
            _LOGGER.warning("Error fetching history for %s: %s", device_id, err)
            return []
        return [r.to_point() for r in readings[-limit:]]

    async def get_logs(self, limit: int = LOGS_PAGE_SIZE, offset: int = 0) -> LogPage:
        device_id = self.device_id
        params = {"limit": str(limit), "offset": str(offset)}
        try:
            result = await self._request("GET", f"/device/{device_id}/logs", params=params)
            return LogPage.model_validate(result)
        except (IrrigationApiError, ValidationError) as err:
            _LOGGER.warning("Error fetching logs for %s: %s", device_id, err)
            return LogPage()

    async def get_location(self) -> LocationLookup:
        device_id = self.device_id
        try:
            data = await self._request("GET", f"/location/{device_id}")
        except IrrigationNotFoundError:
            # first run: nothing saved yet
            _LOGGER.info("No saved location for %s", device_id)
            return LocationLookup(outcome=LookupOutcome.ABSENT)
        except IrrigationApiError as err:
            _LOGGER.error("Error fetching location for %s: %s", device_id, err)
            return LocationLookup(outcome=LookupOutcome.FAILED)

        try:
            location = DeviceLocation.model_validate(data)
        except ValidationError as err:
            _LOGGER.error("Unexpected location payload for %s: %s", device_id, err)
            return LocationLookup(outcome=LookupOutcome.FAILED)
        return LocationLookup(outcome=LookupOutcome.FOUND, location=location)

    async def update_forecast(self, latitude: float, longitude: float) -> bool:
        """Ask the backend to refresh its forecast cache; failure is not fatal."""
        payload = {
            "device_id": self.device_id,
            "latitude": latitude,
            "longitude": longitude,
        }
        try:
            await self._action("POST", "/forecast/update", "Forecast update", payload=payload)
        except IrrigationApiError as err:
            _LOGGER.warning("Forecast update failed: %s", err)
            return False
        return True

    async def get_forecast(self, days: int = FORECAST_DAYS) -> list[ForecastRecord]:
        try:
            result = await self._request("GET", "/forecast", params={"days": str(days)})
            if not isinstance(result, dict) or not result.get("success"):
                return []
            return [ForecastRecord.model_validate(row) for row in result.get("data") or []]
        except (IrrigationApiError, ValidationError, TypeError) as err:
            _LOGGER.info("No forecast data available: %s", err)
            return []

    # --- actions: raise IrrigationApiError with a displayable message ---

    async def login(self, username: str, password: str, *, admin: bool = False) -> Session:
        path = "/auth/admin/login" if admin else "/auth/login"
        payload = {"username": username.strip(), "password": password.strip()}

        _LOGGER.debug("Login request for %s (admin=%s)", payload["username"], admin)
        try:
            data = await self._request("POST", path, payload=payload, auth=False)
        except IrrigationConnectionError:
            raise
        except IrrigationApiError as err:
            raise IrrigationAuthError(err.message, err.status) from err

        try:
            response = LoginResponse.model_validate(data)
        except ValidationError as err:
            raise IrrigationAuthError("Login failed: unexpected response") from err
        if not response.success or not response.token or response.user is None:
            raise IrrigationAuthError(response.message or "Login failed")

        self._last_auth_error = None
        device_id = None
        if response.user.role == ROLE_USER:
            device_id = device_id_from_token(response.token)
        return self._sessions.login(response.token, response.user, device_id)

    def logout(self) -> None:
        self._sessions.logout()

    async def change_password(self, old_password: str, new_password: str) -> str:
        self._require_login()
        data = await self._action(
            "POST",
            "/user/change-password",
            "Password change",
            payload={"old_password": old_password, "new_password": new_password},
        )
        return _message(data) or "Password changed"

    async def trigger_irrigation(
        self, volume_l: float, reason: str = MANUAL_IRRIGATION_REASON
    ) -> str | None:
        """Queue a watering command; returns the backend's command id."""
        device_id = self.device_id
        data = await self._action(
            "POST",
            f"/device/{device_id}/irrigate",
            "Irrigation",
            payload={"volume_l": volume_l, "reason": reason},
        )
        _LOGGER.info("Irrigation of %.2f L queued for %s", volume_l, device_id)
        command_id = data.get("command_id")
        return str(command_id) if command_id is not None else None

    async def recompute_plan(self) -> list[DailyPlan]:
        data = await self._action(
            "POST", "/plan/recompute", "Plan recompute", params={"device_id": self.device_id}
        )
        try:
            return [DailyPlan.model_validate(p) for p in data.get("plan") or []]
        except ValidationError as err:
            raise IrrigationApiError("Plan recompute returned an unexpected plan") from err

    async def update_location(self, latitude: float, longitude: float) -> None:
        await self._action(
            "POST",
            f"/location/{self.device_id}",
            "Location update",
            payload={"latitude": latitude, "longitude": longitude},
        )

    # --- admin ---

    async def list_users(self) -> list[ManagedUser]:
        self._require_admin()
        data = await self._action("GET", "/admin/users", "Loading users")
        try:
            return [ManagedUser.model_validate(u) for u in data.get("users") or []]
        except ValidationError as err:
            raise IrrigationApiError("User list has an unexpected format") from err

    async def create_user(
        self, username: str, password: str, device_id: str, device_name: str = ""
    ) -> ManagedUser | None:
        self._require_admin()
        payload = {
            "username": username,
            "password": password,
            "device_id": device_id,
            "device_name": device_name,
        }
        data = await self._action("POST", "/admin/users", "Creating user", payload=payload)
        user = data.get("user")
        if not user:
            return None
        try:
            return ManagedUser.model_validate(user)
        except ValidationError:
            _LOGGER.debug("Created user record not understood: %s", user)
            return None

    async def delete_user(self, user_id: int) -> None:
        self._require_admin()
        await self._action("DELETE", f"/admin/users/{user_id}", "Deleting user")

    def _require_login(self) -> None:
        if not self._sessions.is_authenticated:
            raise IrrigationAuthError("Not logged in")

    def _require_admin(self) -> None:
        self._require_login()
        if not self._sessions.is_admin:
            raise IrrigationAuthError("Administrator login required")
