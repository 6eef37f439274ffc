import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Callable, Coroutine

from .const import DEFAULT_LOGS_INTERVAL, DEFAULT_STATUS_INTERVAL, LOGS_PAGE_SIZE
from .irrigation_api import IrrigationClient
from .models import DeviceStatus, LogEntry, LogPage, SensorHistoryPoint

_LOGGER = logging.getLogger(__name__)


def data_age(timestamp: datetime, now: datetime | None = None) -> str:
    """Human-relative age of a reading, e.g. ``"3 minutes ago"``."""
    now = now or datetime.now(timezone.utc)
    # naive values are wall-clock local time
    if timestamp.tzinfo is None:
        timestamp = timestamp.astimezone()
    if now.tzinfo is None:
        now = now.astimezone()

    minutes = math.floor((now - timestamp).total_seconds() / 60)
    hours = minutes // 60
    days = hours // 24
    if days > 0:
        return f"{days} days ago"
    if hours > 0:
        return f"{hours} hours ago"
    if minutes > 0:
        return f"{minutes} minutes ago"
    return "just now"


def filter_logs(entries: list[LogEntry], term: str) -> list[LogEntry]:
    """Entries whose message or device id contains ``term``, ignoring case."""
    needle = term.strip().lower()
    if not needle:
        return list(entries)
    return [e for e in entries if needle in e.message.lower() or needle in e.device_id.lower()]


class DeviceSyncScheduler:
    """Polls device status+history and the current log page.

    ``start()`` begins both cadences with an immediate tick; ``cancel()`` stops
    them and drops whatever is still in flight. Each tick is numbered, and a
    result is dropped once a newer tick of the same kind has started, so a slow
    response never overwrites fresher data.
    """

    def __init__(
        self,
        client: IrrigationClient,
        *,
        status_interval: float = DEFAULT_STATUS_INTERVAL,
        logs_interval: float = DEFAULT_LOGS_INTERVAL,
        page_size: int = LOGS_PAGE_SIZE,
        clock: Callable[[], datetime] | None = None,
    ):
        self._client = client
        self._status_interval = status_interval
        self._logs_interval = logs_interval
        self._page_size = page_size
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.status: DeviceStatus | None = None
        self.history: list[SensorHistoryPoint] = []
        self.logs: LogPage = LogPage()
        self.last_update: datetime | None = None

        self._log_page = 1
        self._status_started = 0
        self._logs_started = 0

        self._loops: list[asyncio.Task] = []
        self._inflight: set[asyncio.Task] = set()
        self._listeners: list[Callable[[], None]] = []
        self._cancelled = False

    # --- derived state ---

    @property
    def running(self) -> bool:
        return bool(self._loops)

    @property
    def data_age(self) -> str | None:
        if self.status is None:
            return None
        return data_age(self.status.timestamp, self._clock())

    @property
    def log_page(self) -> int:
        return self._log_page

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def total_log_pages(self) -> int:
        return math.ceil(self.logs.total / self._page_size)

    # --- listeners ---

    def add_listener(self, update_callback: Callable[[], None]) -> Callable[[], None]:
        """Call ``update_callback`` after every applied update; returns a remover."""
        self._listeners.append(update_callback)

        def remove_listener() -> None:
            if update_callback in self._listeners:
                self._listeners.remove(update_callback)

        return remove_listener

    def _notify(self) -> None:
        for update_callback in list(self._listeners):
            update_callback()

    # --- lifecycle ---

    def start(self) -> None:
        if self._loops:
            return
        self._cancelled = False
        self._loops = [
            asyncio.create_task(self._run(self._status_interval, self._status_tick)),
            asyncio.create_task(self._run(self._logs_interval, self._logs_tick)),
        ]
        _LOGGER.debug(
            "Device sync started (status every %ss, logs every %ss)",
            self._status_interval,
            self._logs_interval,
        )

    def cancel(self) -> None:
        """Stop polling; late responses from in-flight ticks are thrown away."""
        self._cancelled = True
        for task in [*self._loops, *self._inflight]:
            task.cancel()
        self._loops = []
        _LOGGER.debug("Device sync cancelled")

    async def async_shutdown(self) -> None:
        """Cancel and wait until every task has actually finished."""
        tasks = [*self._loops, *self._inflight]
        self.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _run(self, interval: float, tick: Callable[[], Coroutine]) -> None:
        # ticks are spawned, not awaited, so a hung request never delays the schedule
        while True:
            self._spawn(tick())
            await asyncio.sleep(interval)

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _status_tick(self) -> None:
        try:
            await self.async_refresh_status()
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Unexpected error refreshing device status")

    async def _logs_tick(self) -> None:
        try:
            await self.async_refresh_logs()
        except Exception:  # noqa: BLE001
            _LOGGER.exception("Unexpected error refreshing device logs")

    # --- ticks ---

    async def async_refresh_status(self) -> bool:
        """Fetch status and history together; True when the result was applied."""
        self._status_started += 1
        generation = self._status_started

        status, history = await asyncio.gather(
            self._client.get_device_status(),
            self._client.get_history(),
        )

        if self._cancelled:
            return False
        if generation < self._status_started:
            _LOGGER.debug("Discarding status tick %s, tick %s already started", generation, self._status_started)
            return False

        self.status = status
        self.history = history
        self.last_update = self._clock()
        _LOGGER.debug("Status tick %s applied for %s", generation, status.device_id)
        self._notify()
        return True

    async def async_refresh_logs(self) -> bool:
        """Re-fetch the current log page; True when the result was applied."""
        self._logs_started += 1
        generation = self._logs_started
        page = self._log_page

        result = await self._client.get_logs(self._page_size, (page - 1) * self._page_size)

        if self._cancelled:
            return False
        if generation < self._logs_started or page != self._log_page:
            _LOGGER.debug("Discarding logs tick %s for page %s", generation, page)
            return False

        self.logs = result
        self._notify()
        return True

    def set_log_page(self, page: int) -> None:
        """Switch the live log view to ``page`` (1-based) and fetch it right away."""
        self._log_page = max(1, page)
        if self._loops:
            self._spawn(self._logs_tick())
