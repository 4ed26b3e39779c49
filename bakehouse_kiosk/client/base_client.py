from abc import ABC, abstractmethod
import asyncio
import inspect
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.errors import ApiError
from bakehouse_kiosk.shared.models import StreamState
from bakehouse_kiosk.shared.retry import backoff_delay, describe_error

# Failures that end one session but never the client.
SESSION_ERRORS = (httpx.HTTPError, ApiError, OSError, asyncio.TimeoutError)


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every client calls this once in __init__.
    Keys: events_received, reconnect_count, heartbeats_received,
          last_event_at, connected_at.
    """
    return {
        "events_received": 0,
        "reconnect_count": 0,
        "heartbeats_received": 0,
        "last_event_at": None,
        "connected_at": None,
    }


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class BaseConnectionClient(ABC):
    """
    Owns one logical server-push connection and keeps it alive.

    Subclasses implement `connect()`, which runs a single session and returns
    (or raises) when that session ends. `run()` wraps it in an endless
    reconnect loop with exponential backoff while `enabled` stays True.
    """
    protocol_name: str = "unknown"

    def __init__(
        self,
        client_id: str,
        on_open: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        on_status_change: Callable[[StreamState], Any] | None = None,
        reconnect_base_delay_s: float | None = None,
        reconnect_max_delay_s: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client_id = client_id
        self.on_open_callback = on_open
        self.on_error_callback = on_error
        self.on_status_change_callback = on_status_change
        self.reconnect_base_delay_s = (
            reconnect_base_delay_s if reconnect_base_delay_s is not None else settings.sse_reconnect_base_delay_s
        )
        self.reconnect_max_delay_s = (
            reconnect_max_delay_s if reconnect_max_delay_s is not None else settings.sse_reconnect_max_delay_s
        )
        self._sleep = sleep

        self.stats = make_client_stats()
        self.state: StreamState = "closed"
        self.enabled = False
        self._task: asyncio.Task | None = None

    @property
    def events_received(self): return self.stats["events_received"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _set_state(self, state: StreamState):
        if state == self.state:
            return
        self.state = state
        logger.debug(f"client_id={self.client_id} protocol={self.protocol_name} state={state}")
        await self._run_callback("on_status_change", self.on_status_change_callback, state)

    async def _mark_open(self):
        self.stats["connected_at"] = datetime.now(timezone.utc).isoformat()
        await self._set_state("open")
        logger.info(f"client_id={self.client_id} protocol={self.protocol_name} event=connect")
        await self._run_callback("on_open", self.on_open_callback)

    async def _run_callback(self, name: str, callback: Callable[..., Any] | None, *args) -> None:
        # Owner callbacks must never end the reconnect loop.
        if callback is None:
            return
        try:
            await _maybe_await(callback(*args))
        except Exception as e:
            logger.error(f"client_id={self.client_id} {name} callback raised: {e}")

    async def _report_error(self, error: BaseException):
        await self._run_callback("on_error", self.on_error_callback, error)

    @abstractmethod
    async def connect(self) -> None:
        """Run one session until the server closes it or it fails."""

    async def disconnect(self) -> None:
        """Release transport resources. Called once when the client stops."""

    async def run(self) -> None:
        failures = 0
        try:
            while self.enabled:
                await self._set_state("connecting")
                error: BaseException | None = None
                try:
                    await self.connect()
                except SESSION_ERRORS as e:
                    error = e

                if not self.enabled:
                    break

                # A session that reached `open` resets the backoff sequence.
                if self.state == "open":
                    failures = 0
                failures += 1
                reason = describe_error(error) if error else "server closed stream"
                await self._set_state("error")
                self.stats["reconnect_count"] += 1
                await self._report_error(error or ConnectionError(reason))

                delay = backoff_delay(
                    failures,
                    self.reconnect_base_delay_s,
                    jitter_s=self.reconnect_base_delay_s * 0.1,
                    max_delay_s=self.reconnect_max_delay_s,
                )
                logger.warning(
                    f"client_id={self.client_id} protocol={self.protocol_name} "
                    f"reconnect={failures} delay={delay:.2f}s reason='{reason}'"
                )
                await self._sleep(delay)
        finally:
            await self._set_state("closed")

    async def start(self) -> asyncio.Task:
        """Open the connection, closing any previous one first."""
        await self.stop()
        self.enabled = True
        self._task = asyncio.create_task(self.run(), name=f"{self.protocol_name}:{self.client_id}")
        return self._task

    async def stop(self) -> None:
        self.enabled = False
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if task is not None:
            logger.info(f"client_id={self.client_id} protocol={self.protocol_name} event=disconnect")

    async def set_enabled(self, enabled: bool) -> None:
        if enabled and not self.is_running:
            await self.start()
        elif not enabled:
            await self.stop()

    async def aclose(self) -> None:
        await self.stop()
        await self.disconnect()
