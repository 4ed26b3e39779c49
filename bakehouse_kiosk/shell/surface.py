"""
MODULE OVERVIEW:
Display surfaces the kiosk shell supervises.

WHAT IS HAPPENING HERE:
A surface is anything that shows (or pretends to show) a page and reports
faults as named events, the way a browser window does:

    render-process-gone   the renderer died
    did-fail-load         the page (or the renderer binary) could not load
    unresponsive          the surface stopped ticking
    did-finish-load       a load/reload completed
    closed                the surface was closed

`BrowserProcessSurface` runs the customer-facing kiosk browser as a child
process. `ProbeSurface` is invisible: it only proves the shell's own event
loop is still turning, and is watched from a separate thread so a fully
locked loop is still detected.
"""
import asyncio
import inspect
import shlex
import threading
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from typing import Any, Callable

from loguru import logger

SurfaceCallback = Callable[..., Any]

FAULT_EVENTS = ("render-process-gone", "did-fail-load", "unresponsive")


class DisplaySurface(ABC):
    name: str = "surface"

    def __init__(self):
        self._listeners: dict[str, list[SurfaceCallback]] = defaultdict(list)
        self.url: str | None = None
        self.ping_seq = 0

    def on(self, event: str, callback: SurfaceCallback) -> None:
        self._listeners[event].append(callback)

    def emit(self, event: str, *args: Any) -> None:
        """
        Call every listener for `event` in the calling thread.
        Coroutine listeners are scheduled on the running loop when there is one.
        """
        for callback in list(self._listeners.get(event, ())):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    asyncio.ensure_future(result)
            except Exception as e:
                logger.error(f"surface={self.name} listener for '{event}' raised: {e}")

    async def ping(self) -> None:
        """Ask the page to prove it is alive; the answer arrives via the shell bridge."""
        self.ping_seq += 1

    @abstractmethod
    async def load(self, url: str) -> None: ...

    @abstractmethod
    async def reload(self) -> None: ...

    @abstractmethod
    def is_destroyed(self) -> bool: ...

    @abstractmethod
    async def close(self) -> None: ...


class BrowserProcessSurface(DisplaySurface):
    name = "primary"

    def __init__(self, command: str | list[str], terminate_timeout_s: float = 5.0):
        super().__init__()
        self.command = shlex.split(command) if isinstance(command, str) else list(command)
        self.terminate_timeout_s = terminate_timeout_s
        self._proc: asyncio.subprocess.Process | None = None
        self._watcher: asyncio.Task | None = None
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._proc.pid if self._proc else None

    def is_destroyed(self) -> bool:
        return self._closed

    async def load(self, url: str) -> None:
        self.url = url
        self._closed = False
        await self._terminate()
        await self._spawn()

    async def reload(self) -> None:
        if not self.url:
            logger.warning(f"surface={self.name} reload skipped reason=no_url")
            return
        await self.load(self.url)

    async def close(self) -> None:
        self._closed = True
        await self._terminate()
        self.emit("closed")

    async def _spawn(self) -> None:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command, self.url,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"surface={self.name} failed to start '{self.command[0]}': {e}")
            self.emit("did-fail-load", {"reason": str(e), "url": self.url})
            return

        self._proc = proc
        self._watcher = asyncio.create_task(self._watch(proc))
        logger.info(f"surface={self.name} pid={proc.pid} url={self.url} event=did-finish-load")
        self.emit("did-finish-load")

    async def _watch(self, proc: asyncio.subprocess.Process) -> None:
        exit_code = await proc.wait()
        # A replaced or deliberately stopped process is not a crash.
        if proc is not self._proc:
            return
        self._proc = None
        logger.error(f"surface={self.name} pid={proc.pid} event=render-process-gone exit_code={exit_code}")
        self.emit("render-process-gone", {"reason": "exited", "exit_code": exit_code})

    async def _terminate(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None or proc.returncode is not None:
            return
        proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.terminate_timeout_s)
        except asyncio.TimeoutError:
            logger.warning(f"surface={self.name} pid={proc.pid} did not exit; killing")
            proc.kill()
            await proc.wait()


class ProbeSurface(DisplaySurface):
    """
    Invisible liveness probe.

    An asyncio task rewrites `location` every `interval_s`. A daemon thread
    checks the age of the last tick and emits `unresponsive` once per stall
    when it exceeds `unresponsive_after_s`. Listeners for `unresponsive` run
    in that thread and must not rely on the event loop.
    """
    name = "probe"

    def __init__(
        self,
        interval_s: float = 1.0,
        unresponsive_after_s: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.interval_s = interval_s
        self.unresponsive_after_s = unresponsive_after_s
        self._clock = clock
        self.location = "about:blank"
        self.ticks = 0
        self.last_tick_at = clock()
        self._reported = False
        self._tick_task: asyncio.Task | None = None
        self._monitor: threading.Thread | None = None
        self._stop = threading.Event()

    def is_destroyed(self) -> bool:
        return self._stop.is_set()

    def tick(self) -> None:
        self.ticks += 1
        self.location = f"about:blank#tick-{self.ticks}"
        self.last_tick_at = self._clock()

    def check(self) -> bool:
        """Return True while stalled; emit `unresponsive` on the first stalled check."""
        stalled = self._clock() - self.last_tick_at > self.unresponsive_after_s
        if not stalled:
            self._reported = False
            return False
        if not self._reported:
            self._reported = True
            logger.critical(
                f"surface={self.name} event=unresponsive last_tick={self.ticks} "
                f"silence={self._clock() - self.last_tick_at:.1f}s"
            )
            self.emit("unresponsive")
        return True

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            self.tick()

    def _monitor_loop(self) -> None:
        while not self._stop.wait(self.interval_s):
            self.check()

    async def load(self, url: str = "about:blank") -> None:
        self.url = url
        self.location = url
        self.last_tick_at = self._clock()
        self._stop.clear()
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._tick_loop(), name="probe-tick")
        if self._monitor is None or not self._monitor.is_alive():
            self._monitor = threading.Thread(target=self._monitor_loop, name="probe-monitor", daemon=True)
            self._monitor.start()

    async def reload(self) -> None:
        await self.load(self.url or "about:blank")

    async def close(self) -> None:
        self._stop.set()
        if self._tick_task is not None:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        self.emit("closed")
