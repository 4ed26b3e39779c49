"""
MODULE OVERVIEW:
The HTTPX client every kiosk service talks to the backend through.

WHAT IS HAPPENING HERE:
Each request goes through `retry_with_backoff`. Transport exceptions are
translated into `ApiError` with a network code first, so classification sees
one error type whether the failure happened on the wire or in the response.
A 401 clears the bearer token and notifies the owner; it is never retried.
"""
import asyncio
from json import JSONDecodeError
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.errors import ApiError
from bakehouse_kiosk.shared.retry import network_error_code, retry_with_backoff

NETWORK_ERROR_MESSAGE = "Unable to reach the server. Please check the network connection and try again."


class ApiClient:
    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        timeout_s: float | None = None,
        max_attempts: int | None = None,
        base_delay_s: float | None = None,
        jitter_s: float | None = None,
        on_unauthorized: Callable[[], None] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.token = token if token is not None else settings.API_TOKEN
        self.max_attempts = max_attempts or settings.HTTP_MAX_RETRIES
        self.base_delay_s = base_delay_s if base_delay_s is not None else settings.http_retry_base_delay_s
        self.jitter_s = jitter_s if jitter_s is not None else settings.http_retry_jitter_s
        self.on_unauthorized = on_unauthorized
        self._sleep = sleep
        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_s or settings.API_TIMEOUT_S,
            headers={
                "Content-Type": "application/json",
                "Cache-Control": "no-cache, no-store, must-revalidate",
            },
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def _auth_headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except (JSONDecodeError, ValueError):
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("detail")
            if isinstance(message, str) and message:
                return message
        return f"Request failed with status {response.status_code}"

    async def _send_once(self, method: str, path: str, json: Any = None, params: dict | None = None) -> Any:
        try:
            response = await self.client.request(
                method, path, json=json, params=params, headers=self._auth_headers()
            )
        except httpx.TransportError as e:
            raise ApiError(NETWORK_ERROR_MESSAGE, code=network_error_code(e)) from e

        if response.status_code == 401:
            logger.warning(f"{method} {path} unauthorized; clearing token")
            self.token = None
            if self.on_unauthorized:
                self.on_unauthorized()

        if response.is_error:
            raise ApiError(self._error_message(response), status_code=response.status_code)

        try:
            body = response.json()
        except (JSONDecodeError, ValueError) as e:
            raise ApiError("Server returned an unreadable response", status_code=response.status_code) from e

        # Backend routes wrap payloads in {success, message, data}
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict | None = None,
        retry: bool = True,
    ) -> Any:
        async def send():
            return await self._send_once(method, path, json=json, params=params)

        if not retry:
            return await send()
        return await retry_with_backoff(
            send,
            operation=f"{method} {path}",
            max_attempts=self.max_attempts,
            base_delay_s=self.base_delay_s,
            jitter_s=self.jitter_s,
            sleep=self._sleep,
        )

    async def get(self, path: str, params: dict | None = None, **kwargs) -> Any:
        return await self.request("GET", path, params=params, **kwargs)

    async def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("POST", path, json=json, **kwargs)

    async def put(self, path: str, json: Any = None, **kwargs) -> Any:
        return await self.request("PUT", path, json=json, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)
