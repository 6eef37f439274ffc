"""Data models exchanged with the irrigation backend."""
from __future__ import annotations

import json
from datetime import date as Date, datetime, timedelta, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .const import (
    DEFAULT_CONDITION,
    FALLBACK_EXECUTED_VOLUME_L,
    FALLBACK_HUMIDITY_PCT,
    FALLBACK_PLANNED_VOLUME_L,
    FALLBACK_PUMP_STATE,
    FALLBACK_RAIN_STATUS,
    FALLBACK_SHADE_STATE,
    FALLBACK_SOIL_RAW,
    FALLBACK_SOIL_STATUS,
    FALLBACK_TEMPERATURE_C,
    PLACEHOLDER_TEMP_MAX,
    PLACEHOLDER_TEMP_MIN,
    ROLE_ADMIN,
)


def _zero_if_none(v: Any) -> Any:
    return 0 if v is None else v


# ============================================================================
# Session
# ============================================================================

class User(BaseModel):
    """Account returned by the login endpoints."""
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: Literal["admin", "user"]
    created_at: str | None = None
    updated_at: str | None = None


class Session(BaseModel):
    """Authenticated identity plus the device it is bound to.

    ``token`` and ``user`` are either both set or both unset; build sessions
    through :class:`~smartirrigation.session.SessionStore` to keep it that way.
    """
    model_config = ConfigDict(frozen=True)

    token: str | None = None
    user: User | None = None
    device_id: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token) and self.user is not None

    @property
    def is_admin(self) -> bool:
        return self.user is not None and self.user.role == ROLE_ADMIN


class LoginResponse(BaseModel):
    success: bool = False
    token: str | None = None
    user: User | None = None
    message: str | None = None


# ============================================================================
# Device data
# ============================================================================

class TodayPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    planned_volume_l: float = 0.0
    executed_volume_l: float = 0.0


class DeviceStatus(BaseModel):
    """Latest device snapshot; replaced wholesale on every poll."""
    model_config = ConfigDict(frozen=True)

    device_id: str
    timestamp: datetime
    temperature_c: float
    humidity_pct: float
    soil_status: Literal["dry", "optimal", "wet"]
    soil_raw: int = FALLBACK_SOIL_RAW
    rain_status: Literal["raining", "no_rain"]
    pump_state: Literal["on", "off"]
    shade_state: Literal["open", "closed", "partial"]
    today_plan: TodayPlan = Field(default_factory=TodayPlan)

    @field_validator("soil_raw", mode="before")
    def _default_soil_raw(cls, v):
        # status responses omit the raw reading; 0 means "not reported"
        return v or FALLBACK_SOIL_RAW

    @classmethod
    def fallback(cls, device_id: str, now: datetime | None = None) -> "DeviceStatus":
        """Synthetic snapshot used whenever the real one cannot be fetched."""
        return cls(
            device_id=device_id,
            timestamp=now or datetime.now(timezone.utc),
            temperature_c=FALLBACK_TEMPERATURE_C,
            humidity_pct=FALLBACK_HUMIDITY_PCT,
            soil_status=FALLBACK_SOIL_STATUS,
            soil_raw=FALLBACK_SOIL_RAW,
            rain_status=FALLBACK_RAIN_STATUS,
            pump_state=FALLBACK_PUMP_STATE,
            shade_state=FALLBACK_SHADE_STATE,
            today_plan=TodayPlan(
                planned_volume_l=FALLBACK_PLANNED_VOLUME_L,
                executed_volume_l=FALLBACK_EXECUTED_VOLUME_L,
            ),
        )


class SensorReading(BaseModel):
    """Raw history row as stored by the backend."""

    timestamp: datetime
    temperature_c: float | None = None
    humidity_pct: float | None = None
    soil_raw: int | None = None

    def to_point(self) -> "SensorHistoryPoint":
        local = self.timestamp.astimezone() if self.timestamp.tzinfo else self.timestamp
        return SensorHistoryPoint(
            time=local.strftime("%H:%M"),
            temp=self.temperature_c or 0,
            humidity=self.humidity_pct or 0,
            soil=self.soil_raw or 0,
        )


class SensorHistoryPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    time: str
    temp: float = 0
    humidity: float = 0
    soil: int = 0


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    timestamp: datetime
    level: Literal["INFO", "WARN", "ERROR"]
    message: str
    device_id: str


class LogPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: list[LogEntry] = Field(default_factory=list)
    total: int = 0

    @field_validator("data", "total", mode="before")
    def _null_as_empty(cls, v, info):
        if v is None:
            return [] if info.field_name == "data" else 0
        return v


# ============================================================================
# Weather
# ============================================================================

def condition_from_raw(raw_json: str | None) -> str:
    """Pull the provider's ``textDay`` out of a stored forecast payload."""
    if not raw_json:
        return DEFAULT_CONDITION
    try:
        payload = json.loads(raw_json)
    except (TypeError, ValueError):
        return DEFAULT_CONDITION
    if not isinstance(payload, dict):
        return DEFAULT_CONDITION
    text = payload.get("textDay")
    return text if isinstance(text, str) and text else DEFAULT_CONDITION


class ForecastRecord(BaseModel):
    """Cached forecast row returned by ``GET /forecast``."""

    date: Date
    temp_max: float | None = None
    temp_min: float | None = None
    precip_mm: float | None = None
    raw_json: str | None = None

    @field_validator("date", mode="before")
    def _date_only(cls, v):
        # rows may carry a full RFC3339 timestamp
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    def to_forecast(self) -> "WeatherForecast":
        return WeatherForecast(
            date=self.date,
            temp_max=_zero_if_none(self.temp_max),
            temp_min=_zero_if_none(self.temp_min),
            condition=condition_from_raw(self.raw_json),
            precip_mm=_zero_if_none(self.precip_mm),
        )


class WeatherForecast(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: Date
    temp_max: float
    temp_min: float
    condition: str
    precip_mm: float = 0

    @classmethod
    def placeholder(cls, today: Date, days: int) -> list["WeatherForecast"]:
        return [
            cls(
                date=today + timedelta(days=i),
                temp_max=PLACEHOLDER_TEMP_MAX,
                temp_min=PLACEHOLDER_TEMP_MIN,
                condition=DEFAULT_CONDITION,
                precip_mm=0,
            )
            for i in range(days)
        ]


# ============================================================================
# Location
# ============================================================================

class DeviceLocation(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    address: str | None = None


class LocationConfig(BaseModel):
    """Persisted mirror of the device location."""
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    has_real_location: bool = False


class LookupOutcome(str, Enum):
    FOUND = "found"
    ABSENT = "absent"
    FAILED = "failed"


class LocationLookup(BaseModel):
    model_config = ConfigDict(frozen=True)

    outcome: LookupOutcome
    location: DeviceLocation | None = None


# ============================================================================
# Actions
# ============================================================================

class DailyPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    planned_volume_l: float = 0


class ManagedUser(BaseModel):
    """User account as listed by the admin endpoints."""
    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str = "user"
    device_id: str | None = None
    device_name: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
