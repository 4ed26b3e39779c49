"""Tests for ApiClient: retries over the wire, error translation and 401 handling."""

from __future__ import annotations

import json

import httpx
import pytest

from bakehouse_kiosk.client.api_client import NETWORK_ERROR_MESSAGE, ApiClient
from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.errors import ApiError


def _client(handler, recording_sleep, **kwargs) -> ApiClient:
    return ApiClient(
        base_url="http://kiosk.test/api",
        token=kwargs.pop("token", "staff-token"),
        max_attempts=kwargs.pop("max_attempts", 3),
        base_delay_s=kwargs.pop("base_delay_s", 1.0),
        jitter_s=0.0,
        transport=httpx.MockTransport(handler),
        sleep=recording_sleep,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_unwraps_envelope_and_sends_bearer(recording_sleep):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "message": "ok", "data": {"id": 3}})

    async with _client(handler, recording_sleep) as api:
        data = await api.get("/orders/3")

    assert data == {"id": 3}
    assert seen[0].url.path == "/api/orders/3"
    assert seen[0].headers["Authorization"] == "Bearer staff-token"
    assert "no-cache" in seen[0].headers["Cache-Control"]


@pytest.mark.asyncio
async def test_retries_server_errors_then_succeeds(recording_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503, json={"message": "warming up"})
        return httpx.Response(200, json={"data": {"ready": True}})

    async with _client(handler, recording_sleep) as api:
        data = await api.get("/menu")

    assert data == {"ready": True}
    assert len(calls) == 3
    assert recording_sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_server_error_exhausts_budget(recording_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(502, json={"message": "bad gateway"})

    async with _client(handler, recording_sleep) as api:
        with pytest.raises(ApiError) as excinfo:
            await api.post("/payment/create-qr", json={"order_id": 1, "amount": 10})

    assert len(calls) == 3
    assert excinfo.value.status_code == 502
    assert excinfo.value.message == "bad gateway"
    # every retry repeats the same body
    assert all(json.loads(c.content) == {"order_id": 1, "amount": 10} for c in calls)


@pytest.mark.asyncio
async def test_client_error_is_not_retried(recording_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(404, json={"success": False, "message": "Order not found"})

    async with _client(handler, recording_sleep) as api:
        with pytest.raises(ApiError) as excinfo:
            await api.get("/payment/status/99")

    assert len(calls) == 1
    assert excinfo.value.status_code == 404
    assert excinfo.value.message == "Order not found"
    assert recording_sleep.delays == []


@pytest.mark.asyncio
async def test_fastapi_detail_is_used_as_message(recording_sleep):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"detail": "Order already paid"})

    async with _client(handler, recording_sleep) as api:
        with pytest.raises(ApiError) as excinfo:
            await api.post("/payment/create-qr", json={})

    assert excinfo.value.message == "Order already paid"


@pytest.mark.asyncio
async def test_connection_failure_becomes_network_error(recording_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler, recording_sleep) as api:
        with pytest.raises(ApiError) as excinfo:
            await api.get("/orders")

    assert len(calls) == 3
    assert excinfo.value.code == "ECONNREFUSED"
    assert excinfo.value.has_response is False
    assert excinfo.value.message == NETWORK_ERROR_MESSAGE
    assert isinstance(excinfo.value.__cause__, httpx.ConnectError)


@pytest.mark.asyncio
async def test_unauthorized_clears_token_and_notifies(recording_sleep):
    calls = []
    notified = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(401, json={"message": "Token expired"})

    api = _client(handler, recording_sleep, on_unauthorized=lambda: notified.append(True))
    try:
        with pytest.raises(ApiError) as excinfo:
            await api.get("/orders")
    finally:
        await api.aclose()

    assert excinfo.value.status_code == 401
    assert len(calls) == 1
    assert api.token is None
    assert notified == [True]


@pytest.mark.asyncio
async def test_retry_can_be_disabled_per_request(recording_sleep):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    async with _client(handler, recording_sleep) as api:
        with pytest.raises(ApiError) as excinfo:
            await api.delete("/orders/5", retry=False)

    assert len(calls) == 1
    assert excinfo.value.message == "Request failed with status 500"


@pytest.mark.asyncio
async def test_configured_base_delay_drives_backoff(recording_sleep, monkeypatch):
    monkeypatch.setattr(settings, "HTTP_RETRY_BASE_DELAY_MS", 2000)
    monkeypatch.setattr(settings, "HTTP_RETRY_JITTER_MS", 0)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    api = ApiClient(
        base_url="http://kiosk.test/api",
        max_attempts=4,
        transport=httpx.MockTransport(handler),
        sleep=recording_sleep,
    )
    async with api:
        with pytest.raises(ApiError):
            await api.get("/payment/status/1")

    assert api.base_delay_s == 2.0
    assert recording_sleep.delays == [2.0, 4.0, 8.0]
