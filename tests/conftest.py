"""
Pytest configuration and shared fixtures.

Fixtures available to all tests:
  • recording_sleep  : async sleep stand-in that records delays and returns at once
  • fake_clock       : manually advanced monotonic clock
  • status_sequence  : builds a payment-status fetcher from a list of states
  • primary / probe  : in-memory display surfaces
  • exec_recorder    : os.execv stand-in; lifecycle uses it
"""

from __future__ import annotations

import asyncio
import os
import sys
import threading
from typing import List

import pytest

# Ensure the project root is on the path so package imports resolve without installing.
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from bakehouse_kiosk.shared.models import PaymentStatus  # noqa: E402
from bakehouse_kiosk.shell.lifecycle import AppLifecycle  # noqa: E402
from bakehouse_kiosk.shell.surface import DisplaySurface  # noqa: E402


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def fake_clock():
    return FakeClock()


def make_status(state: str, order_id: int = 7) -> PaymentStatus:
    return PaymentStatus(
        paid=state == "paid",
        order_id=order_id,
        order_number=f"ORD-20261017-{order_id:04d}",
        payment_status=state,
    )


@pytest.fixture
def status_sequence():
    """Returns (fetcher, calls) where fetcher yields the given states in order, repeating the last."""
    def _factory(states: List[str]):
        calls: List[int] = []

        async def fetch(order_id: int) -> PaymentStatus:
            index = min(len(calls), len(states) - 1)
            calls.append(order_id)
            return make_status(states[index], order_id)

        return fetch, calls
    return _factory


class FakeSurface(DisplaySurface):
    def __init__(self, name: str = "primary"):
        super().__init__()
        self.name = name
        self.loads: List[str] = []
        self.reloads = 0
        self.closed = False
        self.reload_gate: asyncio.Event | None = None
        self.reload_error: Exception | None = None

    async def load(self, url: str) -> None:
        self.url = url
        self.loads.append(url)

    async def reload(self) -> None:
        if self.reload_gate is not None:
            await self.reload_gate.wait()
        if self.reload_error is not None:
            raise self.reload_error
        self.reloads += 1

    def is_destroyed(self) -> bool:
        return self.closed

    async def close(self) -> None:
        self.closed = True


class RecordingExec:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, executable, argv):
        with self._lock:
            self.calls.append((executable, argv))


@pytest.fixture
def exec_recorder():
    return RecordingExec()


@pytest.fixture
def lifecycle(exec_recorder):
    return AppLifecycle(argv=["runner.py", "kiosk"], executable="/usr/bin/python3", exec_fn=exec_recorder)


@pytest.fixture
def primary():
    return FakeSurface("primary")


@pytest.fixture
def probe():
    return FakeSurface("probe")
