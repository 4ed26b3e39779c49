"""Tests for PaymentPoller and PaymentService."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from bakehouse_kiosk.client.api_client import ApiClient
from bakehouse_kiosk.client.payment_service import PaymentPoller, PaymentService
from bakehouse_kiosk.shared.errors import (
    PAYMENT_TIMEOUT_MESSAGE,
    ApiError,
    PaymentCancelledError,
    PaymentTimeoutError,
)


@pytest.mark.asyncio
async def test_stops_on_first_paid(status_sequence, recording_sleep):
    fetch, calls = status_sequence(["pending", "pending", "paid", "pending"])
    poller = PaymentPoller(fetch, 7, max_attempts=10, interval_s=5.0, sleep=recording_sleep)

    status = await poller.run()
    await asyncio.sleep(0)

    assert status.paid is True
    assert status.payment_status == "paid"
    assert len(calls) == 3
    assert poller.attempts == 3
    assert poller.state == "paid"
    assert poller.done
    assert recording_sleep.delays == [5.0, 5.0]


@pytest.mark.asyncio
async def test_paid_on_first_check_never_waits(status_sequence, recording_sleep):
    fetch, calls = status_sequence(["paid"])
    poller = PaymentPoller(fetch, 7, max_attempts=3, interval_s=5.0, sleep=recording_sleep)

    await poller.run()

    assert len(calls) == 1
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_times_out_after_exactly_max_attempts(status_sequence, recording_sleep):
    fetch, calls = status_sequence(["pending"])
    poller = PaymentPoller(fetch, 7, max_attempts=5, interval_s=5.0, sleep=recording_sleep)

    with pytest.raises(PaymentTimeoutError) as excinfo:
        await poller.run()

    assert len(calls) == 5
    assert excinfo.value.attempts == 5
    assert excinfo.value.order_id == 7
    assert str(excinfo.value) == PAYMENT_TIMEOUT_MESSAGE
    assert isinstance(excinfo.value, ApiError)
    assert poller.state == "timed_out"
    # no sleep after the final check
    assert len(recording_sleep.delays) == 4


@pytest.mark.asyncio
async def test_callback_sees_every_status_in_order(status_sequence, recording_sleep):
    fetch, _ = status_sequence(["pending", "pending", "expired", "paid"])
    seen = []
    poller = PaymentPoller(
        fetch, 7, on_status_update=lambda s: seen.append(s.payment_status),
        max_attempts=10, interval_s=0.0, sleep=recording_sleep,
    )

    await poller.run()

    assert seen == ["pending", "pending", "expired", "paid"]


@pytest.mark.asyncio
async def test_async_callback_is_awaited(status_sequence, recording_sleep):
    fetch, _ = status_sequence(["pending", "paid"])
    seen = []

    async def on_update(status):
        await asyncio.sleep(0)
        seen.append(status.payment_status)

    poller = PaymentPoller(fetch, 7, on_status_update=on_update, max_attempts=3, interval_s=0.0, sleep=recording_sleep)
    await poller.run()

    assert seen == ["pending", "paid"]


@pytest.mark.asyncio
async def test_fetch_failure_ends_poll_with_original_error(recording_sleep):
    boom = ApiError("Unable to reach the server", code="ECONNREFUSED")
    calls = []

    async def fetch(order_id):
        calls.append(order_id)
        raise boom

    poller = PaymentPoller(fetch, 7, max_attempts=10, interval_s=5.0, sleep=recording_sleep)
    with pytest.raises(ApiError) as excinfo:
        await poller.run()

    assert excinfo.value is boom
    assert len(calls) == 1
    assert poller.state == "errored"


@pytest.mark.asyncio
async def test_cancel_stops_waiting_poller(status_sequence):
    fetch, calls = status_sequence(["pending"])
    poller = PaymentPoller(fetch, 7, max_attempts=10, interval_s=30.0)

    task = asyncio.create_task(poller.run())
    while poller.attempts < 1:
        await asyncio.sleep(0)
    poller.cancel()

    with pytest.raises(PaymentCancelledError):
        await asyncio.wait_for(task, timeout=2)
    assert poller.state == "cancelled"
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_task_cancellation_marks_poller_cancelled(status_sequence):
    fetch, _ = status_sequence(["pending"])
    poller = PaymentPoller(fetch, 7, max_attempts=10, interval_s=30.0)

    task = asyncio.create_task(poller.run())
    while poller.attempts < 1:
        await asyncio.sleep(0)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task
    assert poller.state == "cancelled"


@pytest.mark.asyncio
async def test_poller_runs_once(status_sequence, recording_sleep):
    fetch, _ = status_sequence(["paid"])
    poller = PaymentPoller(fetch, 7, sleep=recording_sleep)
    await poller.run()

    with pytest.raises(RuntimeError):
        await poller.run()


@pytest.mark.asyncio
async def test_cancel_after_finish_is_a_no_op(status_sequence, recording_sleep):
    fetch, _ = status_sequence(["paid"])
    poller = PaymentPoller(fetch, 7, sleep=recording_sleep)
    await poller.run()

    poller.cancel()
    assert poller.state == "paid"


@pytest.mark.asyncio
async def test_service_talks_to_payment_endpoints():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.url.path.endswith("/payment/create-qr"):
            return httpx.Response(200, json={"success": True, "data": {
                "qr_id": "qr_1", "qr_string": "00020101", "order_number": "ORD-20261017-0001", "amount": 12.5,
            }})
        return httpx.Response(200, json={"success": True, "data": {
            "paid": True, "order_id": 1, "order_number": "ORD-20261017-0001", "payment_status": "paid",
        }})

    async with ApiClient(base_url="http://kiosk.test/api", token="", transport=httpx.MockTransport(handler)) as api:
        service = PaymentService(api)
        qr = await service.create_payment_qr(1, 12.5)
        status = await service.poll_payment_status(1, max_attempts=3, interval_s=0.0)

    assert qr.qr_id == "qr_1"
    assert qr.amount == 12.5
    assert status.paid is True
    assert requests[0].method == "POST"
    assert requests[1].url.path == "/api/payment/status/1"
    assert "Authorization" not in requests[0].headers
