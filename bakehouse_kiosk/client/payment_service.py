"""
MODULE OVERVIEW:
QR payment creation and payment-status polling for the kiosk checkout.

WHAT IS HAPPENING HERE:
The gateway confirms payments asynchronously through a webhook on the backend.
The kiosk cannot receive that webhook, so it polls the backend's status
endpoint until the order reads `paid`, the polling budget runs out, or the
status check itself fails.

State machine of one `PaymentPoller`:

    idle -> polling -> paid | timed_out | errored | cancelled

A failed status *check* is not a failed *payment*: it ends the poll with the
original error instead of looping silently, so the screen can tell the
customer to ask staff.
"""
import asyncio
import inspect
from typing import Any, Awaitable, Callable

from loguru import logger

from bakehouse_kiosk.client.api_client import ApiClient
from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.errors import PaymentCancelledError, PaymentTimeoutError
from bakehouse_kiosk.shared.models import PaymentQR, PaymentStatus, PollerState

StatusFetcher = Callable[[int], Awaitable[PaymentStatus]]
StatusCallback = Callable[[PaymentStatus], Any]

TERMINAL_STATES = ("paid", "timed_out", "errored", "cancelled")


class PaymentPoller:
    def __init__(
        self,
        fetch_status: StatusFetcher,
        order_id: int,
        on_status_update: StatusCallback | None = None,
        max_attempts: int | None = None,
        interval_s: float | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetch_status = fetch_status
        self.order_id = order_id
        self.on_status_update = on_status_update
        self.max_attempts = max_attempts or settings.PAYMENT_POLL_MAX_ATTEMPTS
        self.interval_s = interval_s if interval_s is not None else settings.payment_poll_interval_s
        self._sleep = sleep

        self.state: PollerState = "idle"
        self.attempts = 0
        self.last_status: PaymentStatus | None = None
        self._cancel_requested = asyncio.Event()

    @property
    def done(self) -> bool:
        return self.state in TERMINAL_STATES

    def cancel(self) -> None:
        """Stop polling; a pending `run()` raises PaymentCancelledError."""
        if self.done:
            return
        logger.info(f"order_id={self.order_id} payment poll cancel requested after {self.attempts} attempts")
        self._cancel_requested.set()

    async def _notify(self, status: PaymentStatus) -> None:
        if self.on_status_update is None:
            return
        result = self.on_status_update(status)
        if inspect.isawaitable(result):
            await result

    async def _wait_interval(self) -> bool:
        """Sleep one interval. Returns True if a cancel arrived meanwhile."""
        sleeper = asyncio.ensure_future(self._sleep(self.interval_s))
        canceller = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({sleeper, canceller}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, canceller):
                if not task.done():
                    task.cancel()
        return self._cancel_requested.is_set()

    async def run(self) -> PaymentStatus:
        if self.state != "idle":
            raise RuntimeError(f"PaymentPoller for order {self.order_id} already ran (state={self.state})")
        self.state = "polling"
        logger.info(
            f"order_id={self.order_id} payment poll start "
            f"max_attempts={self.max_attempts} interval={self.interval_s}s"
        )
        try:
            while True:
                if self._cancel_requested.is_set():
                    self.state = "cancelled"
                    raise PaymentCancelledError(self.order_id)

                self.attempts += 1
                try:
                    status = await self.fetch_status(self.order_id)
                except Exception as e:
                    self.state = "errored"
                    logger.error(f"order_id={self.order_id} payment status check failed attempt={self.attempts}: {e}")
                    raise

                self.last_status = status
                await self._notify(status)

                if status.paid:
                    self.state = "paid"
                    logger.info(f"order_id={self.order_id} order_number={status.order_number} paid after {self.attempts} checks")
                    return status

                if self.attempts >= self.max_attempts:
                    self.state = "timed_out"
                    logger.warning(f"order_id={self.order_id} payment poll timed out after {self.attempts} checks")
                    raise PaymentTimeoutError(self.order_id, self.attempts)

                if await self._wait_interval():
                    self.state = "cancelled"
                    raise PaymentCancelledError(self.order_id)
        except asyncio.CancelledError:
            self.state = "cancelled"
            raise


class PaymentService:
    def __init__(self, api: ApiClient):
        self.api = api

    async def create_payment_qr(self, order_id: int, amount: float) -> PaymentQR:
        data = await self.api.post("/payment/create-qr", json={"order_id": order_id, "amount": amount})
        return PaymentQR.model_validate(data)

    async def check_payment_status(self, order_id: int) -> PaymentStatus:
        data = await self.api.get(f"/payment/status/{order_id}")
        return PaymentStatus.model_validate(data)

    def poller(
        self,
        order_id: int,
        on_status_update: StatusCallback | None = None,
        max_attempts: int | None = None,
        interval_s: float | None = None,
    ) -> PaymentPoller:
        return PaymentPoller(
            self.check_payment_status,
            order_id,
            on_status_update=on_status_update,
            max_attempts=max_attempts,
            interval_s=interval_s,
        )

    async def poll_payment_status(
        self,
        order_id: int,
        on_status_update: StatusCallback | None = None,
        max_attempts: int | None = None,
        interval_s: float | None = None,
    ) -> PaymentStatus:
        return await self.poller(order_id, on_status_update, max_attempts, interval_s).run()
