"""
Shared fixtures for the smartirrigation test suite.

Provides:
- FakeBackend: an aiohttp application that mimics the irrigation backend,
  with per-route failure and delay injection
- a running test server, an HTTP session and a client wired to it
- stub clients for scheduler/forecast tests that need no network
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any

import aiohttp
import pytest
from aiohttp import web
from multidict import CIMultiDict

from smartirrigation.config import ClientSettings
from smartirrigation.irrigation_api import IrrigationClient
from smartirrigation.models import LogPage
from smartirrigation.session import SessionStore
from smartirrigation.storage import MemoryKeyValueStore

logging.getLogger("smartirrigation").setLevel(logging.DEBUG)


def _segment(obj: Any) -> str:
    return base64.urlsafe_b64encode(json.dumps(obj).encode()).rstrip(b"=").decode()


def make_token(payload: dict) -> str:
    """JWT-shaped token; the signature is never checked client side."""
    return f"{_segment({'alg': 'HS256', 'typ': 'JWT'})}.{_segment(payload)}.c2lnbmF0dXJl"


ALICE = {"id": 2, "username": "alice", "role": "user", "created_at": "2026-01-01T00:00:00Z"}
ROOT = {"id": 1, "username": "root", "role": "admin", "created_at": "2026-01-01T00:00:00Z"}

STATUS = {
    "device_id": "esp32s3-9",
    "timestamp": "2026-10-19T08:00:00Z",
    "temperature_c": 22.4,
    "humidity_pct": 48.0,
    "soil_status": "dry",
    "rain_status": "no_rain",
    "pump_state": "on",
    "shade_state": "open",
    "today_plan": {"planned_volume_l": 3.0, "executed_volume_l": 0.5},
}


class FakeBackend:
    """In-memory stand-in for the irrigation backend's HTTP API."""

    def __init__(self):
        self.accounts = {
            "alice": {"password": "secret1", "user": ALICE, "device_id": "esp32s3-9"},
            "root": {"password": "adminpw", "user": ROOT, "device_id": None},
        }
        self.tokens: set[str] = set()
        self.status = dict(STATUS)
        self.history: list[dict] = []
        self.logs: list[dict] = []
        self.locations: dict[str, dict] = {}
        self.forecast: list[dict] = []
        self.managed_users = [dict(ALICE, device_id="esp32s3-9", device_name="Garden")]

        # keyed by "METHOD /api/path/{template}"; fail holds a status code or "malformed",
        # replies a canned JSON body served in place of the handler
        self.fail: dict[str, Any] = {}
        self.delays: dict[str, float] = {}
        self.replies: dict[str, Any] = {}

        self.calls: list[tuple[str, str, CIMultiDict]] = []
        self.irrigations: list[tuple[str, dict]] = []
        self.forecast_updates: list[dict] = []

    def calls_to(self, route: str) -> list[tuple[str, str, CIMultiDict]]:
        return [c for c in self.calls if c[0] == route]

    def app(self) -> web.Application:
        @web.middleware
        async def fake_behaviour(request: web.Request, handler):
            resource = request.match_info.route.resource
            route = f"{request.method} {resource.canonical if resource else request.path}"
            self.calls.append((route, request.path_qs, request.headers.copy()))

            if route in self.delays:
                await asyncio.sleep(self.delays[route])
            failure = self.fail.get(route)
            if failure == "malformed":
                return web.Response(text="{not json", content_type="application/json")
            if failure is not None:
                return web.json_response({"success": False, "message": "injected failure"}, status=failure)

            if not request.path.startswith("/api/auth/"):
                auth = request.headers.get("Authorization", "")
                if not auth.startswith("Bearer ") or auth[7:] not in self.tokens:
                    return web.json_response({"success": False, "message": "unauthorized"}, status=401)
            if route in self.replies:
                return web.json_response(self.replies[route])
            return await handler(request)

        app = web.Application(middlewares=[fake_behaviour])
        app.router.add_post("/api/auth/login", self._login)
        app.router.add_post("/api/auth/admin/login", self._admin_login)
        app.router.add_post("/api/user/change-password", self._change_password)
        app.router.add_get("/api/device/{device_id}/status", self._status)
        app.router.add_get("/api/device/{device_id}/history", self._history)
        app.router.add_get("/api/device/{device_id}/logs", self._logs)
        app.router.add_post("/api/device/{device_id}/irrigate", self._irrigate)
        app.router.add_get("/api/location/{device_id}", self._get_location)
        app.router.add_post("/api/location/{device_id}", self._set_location)
        app.router.add_post("/api/forecast/update", self._update_forecast)
        app.router.add_get("/api/forecast", self._get_forecast)
        app.router.add_post("/api/plan/recompute", self._recompute)
        app.router.add_get("/api/admin/users", self._list_users)
        app.router.add_post("/api/admin/users", self._create_user)
        app.router.add_delete("/api/admin/users/{user_id}", self._delete_user)
        return app

    # --- auth ---

    async def _do_login(self, request: web.Request, role: str) -> web.Response:
        body = await request.json()
        account = self.accounts.get(body.get("username"))
        if account is None or account["password"] != body.get("password"):
            return web.json_response({"success": False, "message": "invalid username or password"}, status=401)
        if account["user"]["role"] != role:
            return web.json_response({"success": False, "message": "wrong login entry"}, status=403)
        claims = {"user_id": account["user"]["id"], "username": body["username"], "role": role}
        if account["device_id"]:
            claims["device_id"] = account["device_id"]
        token = make_token(claims)
        self.tokens.add(token)
        return web.json_response({"success": True, "token": token, "user": account["user"]})

    async def _login(self, request):
        return await self._do_login(request, "user")

    async def _admin_login(self, request):
        return await self._do_login(request, "admin")

    async def _change_password(self, request):
        body = await request.json()
        if body.get("old_password") != self.accounts["alice"]["password"]:
            return web.json_response({"success": False, "message": "old password is wrong"}, status=400)
        self.accounts["alice"]["password"] = body["new_password"]
        return web.json_response({"success": True, "message": "password changed"})

    # --- device ---

    async def _status(self, request):
        return web.json_response(self.status)

    async def _history(self, request):
        return web.json_response({"data": self.history, "total": len(self.history)})

    async def _logs(self, request):
        limit = int(request.query.get("limit", "20"))
        offset = int(request.query.get("offset", "0"))
        return web.json_response({"data": self.logs[offset:offset + limit], "total": len(self.logs)})

    async def _irrigate(self, request):
        self.irrigations.append((request.match_info["device_id"], await request.json()))
        return web.json_response({"success": True, "command_id": str(len(self.irrigations))})

    # --- location & forecast ---

    async def _get_location(self, request):
        location = self.locations.get(request.match_info["device_id"])
        if location is None:
            return web.json_response({"success": False, "message": "Location not found"}, status=404)
        return web.json_response(location)

    async def _set_location(self, request):
        body = await request.json()
        self.locations[request.match_info["device_id"]] = {
            "device_id": request.match_info["device_id"],
            "latitude": body["latitude"],
            "longitude": body["longitude"],
        }
        return web.json_response({"success": True})

    async def _update_forecast(self, request):
        self.forecast_updates.append(await request.json())
        return web.json_response({"success": True, "updated_days": 15})

    async def _get_forecast(self, request):
        days = int(request.query.get("days", "5"))
        return web.json_response({"success": True, "data": self.forecast[:days]})

    async def _recompute(self, request):
        return web.json_response({
            "success": True,
            "plan": [
                {"date": "2026-10-19", "planned_volume_l": 2.0},
                {"date": "2026-10-20", "planned_volume_l": 0.0},
            ],
        })

    # --- admin ---

    async def _list_users(self, request):
        return web.json_response({"success": True, "users": self.managed_users})

    async def _create_user(self, request):
        body = await request.json()
        user = {"id": len(self.managed_users) + 10, "username": body["username"], "role": "user",
                "device_id": body["device_id"], "device_name": body["device_name"]}
        self.managed_users.append(user)
        return web.json_response({"success": True, "message": "created", "user": user})

    async def _delete_user(self, request):
        user_id = int(request.match_info["user_id"])
        before = len(self.managed_users)
        self.managed_users = [u for u in self.managed_users if u["id"] != user_id]
        if len(self.managed_users) == before:
            return web.json_response({"success": False, "message": "no such user"}, status=500)
        return web.json_response({"success": True, "message": "deleted"})


class StubClient:
    """Scripted replacement for IrrigationClient's read methods."""

    def __init__(self):
        self.status_results: list = []
        self.history_results: list = []
        self.log_results: list = []
        self.delays: list[float] = []
        self.log_requests: list[tuple[int, int]] = []
        self.status_calls = 0

    async def get_device_status(self):
        index = self.status_calls
        self.status_calls += 1
        delay = self.delays[index] if index < len(self.delays) else 0
        if delay:
            await asyncio.sleep(delay)
        return self.status_results[min(index, len(self.status_results) - 1)]

    async def get_history(self):
        index = self.status_calls - 1
        return self.history_results[min(index, len(self.history_results) - 1)] if self.history_results else []

    async def get_logs(self, limit, offset):
        self.log_requests.append((limit, offset))
        if self.log_results:
            return self.log_results.pop(0)
        return LogPage()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def server(aiohttp_server, backend):
    return await aiohttp_server(backend.app())


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def settings(server) -> ClientSettings:
    return ClientSettings(
        origin="http://localhost",
        backend_port=server.port,
        forecast_settle_delay=0,
        status_interval=0.05,
        logs_interval=0.05,
    )


@pytest.fixture
async def http():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def sessions(store) -> SessionStore:
    return SessionStore(store)


@pytest.fixture
def client(http, sessions, settings) -> IrrigationClient:
    return IrrigationClient(http, sessions, settings)


@pytest.fixture
def stub_client() -> StubClient:
    return StubClient()
