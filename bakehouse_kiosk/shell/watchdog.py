"""
MODULE OVERVIEW:
The supervisor that keeps an unattended kiosk screen alive.

WHAT IS HAPPENING HERE:
Three independent signals feed two recovery paths.

  Light path (reload the primary surface):
    * the primary surface emits render-process-gone / did-fail-load /
      unresponsive / closed
    * the heartbeat loop sees no pong from the page for `heartbeat_timeout_s`

  Escalation (replace the whole process):
    * the invisible probe surface reports unresponsive, meaning the shell's
      own event loop is stuck and a reload would never run

    healthy -> recovering -> healthy
    healthy -> frozen -> relaunching

The `recovering` flag collapses overlapping triggers into one recovery. It is
released when the reload call returns, not after a fixed delay, so a slow
reload cannot be overlapped by a second one.
"""
import asyncio
import functools
import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shell.lifecycle import AppLifecycle
from bakehouse_kiosk.shell.surface import FAULT_EVENTS, DisplaySurface


@dataclass
class WatchdogState:
    last_heartbeat_at: float
    recovering: bool = False
    relaunching: bool = False
    recoveries: int = 0
    failed_recoveries: int = 0
    relaunches: int = 0
    last_reason: str | None = None


class KioskWatchdog:
    def __init__(
        self,
        primary: DisplaySurface,
        probe: DisplaySurface,
        lifecycle: AppLifecycle,
        recovery_grace_s: float | None = None,
        heartbeat_interval_s: float | None = None,
        heartbeat_timeout_s: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.primary = primary
        self.probe = probe
        self.lifecycle = lifecycle
        self.recovery_grace_s = (
            recovery_grace_s if recovery_grace_s is not None else settings.WATCHDOG_RECOVERY_GRACE_S
        )
        self.heartbeat_interval_s = heartbeat_interval_s or settings.WATCHDOG_HEARTBEAT_INTERVAL_S
        self.heartbeat_timeout_s = heartbeat_timeout_s or settings.WATCHDOG_HEARTBEAT_TIMEOUT_S
        self._clock = clock
        self._sleep = sleep

        self.state = WatchdogState(last_heartbeat_at=clock())
        self._relaunch_lock = threading.Lock()
        self._recovery_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None

        for event in FAULT_EVENTS:
            primary.on(event, functools.partial(self._on_primary_fault, event))
        primary.on("closed", self._on_primary_closed)
        probe.on("unresponsive", self._on_probe_unresponsive)

    # ==========================
    # LIGHT RECOVERY
    # ==========================
    def _on_primary_fault(self, event: str, *details) -> None:
        logger.error(f"surface={self.primary.name} event={event} details={details or '-'}")
        self.trigger_recovery(event)

    def _on_primary_closed(self, *_) -> None:
        if self._heartbeat_task is None:
            # Closed during shutdown.
            return
        if not self.lifecycle.on_all_windows_closed():
            self.trigger_recovery("closed")

    def trigger_recovery(self, reason: str) -> bool:
        """Start a recovery unless one is already running. Returns True if started."""
        if self.state.recovering:
            logger.info(f"recovery already in progress; ignoring trigger reason={reason}")
            return False
        self.state.recovering = True
        self.state.last_reason = reason
        self._recovery_task = asyncio.get_running_loop().create_task(self._recover(reason), name="kiosk-recovery")
        return True

    async def _recover(self, reason: str) -> None:
        try:
            logger.warning(f"recovering primary surface in {self.recovery_grace_s}s reason={reason}")
            await self._sleep(self.recovery_grace_s)
            await self.primary.reload()
            self.state.recoveries += 1
            # A fresh page gets a full heartbeat window before it is judged.
            self.state.last_heartbeat_at = self._clock()
            logger.info(f"primary surface reloaded reason={reason} recoveries={self.state.recoveries}")
        except Exception as e:
            self.state.failed_recoveries += 1
            logger.error(f"primary surface recovery failed reason={reason}: {e}")
        finally:
            self.state.recovering = False

    async def wait_for_recovery(self) -> None:
        if self._recovery_task is not None:
            await asyncio.shield(self._recovery_task)

    # ==========================
    # ESCALATION
    # ==========================
    def _on_probe_unresponsive(self, *_) -> None:
        self.relaunch("probe-unresponsive")

    def relaunch(self, reason: str) -> bool:
        # May run on the probe's monitor thread while the loop is frozen.
        with self._relaunch_lock:
            if self.state.relaunching:
                return False
            self.state.relaunching = True
        self.state.relaunches += 1
        logger.critical(f"escalating to hard relaunch reason={reason}")
        self.lifecycle.relaunch(reason)
        return True

    # ==========================
    # HEARTBEAT
    # ==========================
    def acknowledge_heartbeat(self) -> None:
        self.state.last_heartbeat_at = self._clock()

    def check_heartbeat(self) -> bool:
        silence = self._clock() - self.state.last_heartbeat_at
        if silence <= self.heartbeat_timeout_s:
            return False
        logger.warning(f"no heartbeat from primary surface for {silence:.1f}s (timeout {self.heartbeat_timeout_s}s)")
        # The next trigger needs another full timeout of silence.
        self.state.last_heartbeat_at = self._clock()
        return self.trigger_recovery("heartbeat-timeout")

    async def _heartbeat_loop(self) -> None:
        while True:
            await self._sleep(self.heartbeat_interval_s)
            try:
                await self.primary.ping()
            except Exception as e:
                logger.warning(f"heartbeat ping to primary surface failed: {e}")
            self.check_heartbeat()

    # ==========================
    # LIFECYCLE
    # ==========================
    async def start(self) -> None:
        self.state.last_heartbeat_at = self._clock()
        await self.probe.load("about:blank")
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop(), name="kiosk-heartbeat")
        logger.info(
            f"watchdog started heartbeat_interval={self.heartbeat_interval_s}s "
            f"heartbeat_timeout={self.heartbeat_timeout_s}s grace={self.recovery_grace_s}s"
        )

    async def stop(self) -> None:
        tasks = [t for t in (self._heartbeat_task, self._recovery_task) if t is not None]
        self._heartbeat_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.probe.close()
        logger.info("watchdog stopped")
