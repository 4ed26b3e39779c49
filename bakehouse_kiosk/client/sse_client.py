"""
MODULE OVERVIEW:
The Server-Sent Events client every kiosk screen uses to hear about order,
menu and custom-cake changes.

WHAT IS HAPPENING HERE:
We use HTTPX `stream()` to keep the response body open and parse the raw
`event:` / `data:` / `id:` blocks ourselves. Each named event is handed to the
handler registered for that name, exactly once, in the order the server sent
it. Names without a handler are ignored so the server can add new events
without breaking older kiosks.

The stream is a trigger, not a log: after a reconnect nothing guarantees the
missed events are replayed (we send Last-Event-ID, the server may honour it).
Handlers are expected to revalidate their data from the REST API.
"""
import inspect
import json
import uuid
from typing import Any, Callable, Mapping

import httpx
from loguru import logger

from bakehouse_kiosk.client.base_client import BaseConnectionClient
from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.models import DomainEvent

EventHandler = Callable[[Any], Any]


class EventStreamClient(BaseConnectionClient):
    protocol_name: str = "sse"

    def __init__(
        self,
        url: str,
        handlers: Mapping[str, EventHandler] | None = None,
        token: str | None = None,
        client_id: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        on_event: Callable[[DomainEvent], Any] | None = None,
        **kwargs,
    ):
        super().__init__(client_id or f"sse-{str(uuid.uuid4())[:8]}", **kwargs)
        self.url = url
        self.token = token
        self.handlers: dict[str, EventHandler] = dict(handlers or {})
        self.on_event_callback = on_event
        self.last_event_id: str | None = None

        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            # Server comment heartbeats arrive well inside this read window;
            # silence beyond it means the connection is dead.
            timeout=httpx.Timeout(10.0, read=settings.SSE_HEARTBEAT_INTERVAL_S * 2),
        )

    def on(self, event_name: str, handler: EventHandler) -> None:
        self.handlers[event_name] = handler

    def off(self, event_name: str) -> None:
        self.handlers.pop(event_name, None)

    async def disconnect(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.last_event_id:
            headers["Last-Event-ID"] = self.last_event_id
        return headers

    async def connect(self) -> None:
        async with self.client.stream("GET", self.url, headers=self._headers()) as response:
            response.raise_for_status()
            await self._mark_open()

            buffer = ""
            async for chunk in response.aiter_text():
                buffer += chunk.replace("\r\n", "\n").replace("\r", "\n")
                while "\n\n" in buffer:
                    block, buffer = buffer.split("\n\n", 1)
                    await self._parse_sse_block(block)

    async def _parse_sse_block(self, block: str):
        event_name = "message"
        data_lines: list[str] = []
        event_id: str | None = None
        saw_field = False

        for line in block.split("\n"):
            if not line or line.startswith(":"):
                continue
            field, _, value = line.partition(":")
            if value.startswith(" "):
                value = value[1:]
            saw_field = True
            if field == "event":
                event_name = value
            elif field == "data":
                data_lines.append(value)
            elif field == "id":
                event_id = value

        if not saw_field:
            # Comment-only block: the server's keep-alive heartbeat
            self.stats["heartbeats_received"] += 1
            return

        if event_id:
            self.last_event_id = event_id
        if not data_lines:
            return

        data_str = "\n".join(data_lines)
        try:
            payload = json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning(f"client_id={self.client_id} event={event_name} dropped reason=invalid_json")
            return

        await self._dispatch(DomainEvent(name=event_name, payload=payload, event_id=event_id))

    async def _dispatch(self, event: DomainEvent):
        self.stats["events_received"] += 1
        self.stats["last_event_at"] = event.received_at.isoformat()

        await self._run_callback("on_event", self.on_event_callback, event)

        handler = self.handlers.get(event.name)
        if handler is None:
            logger.debug(f"client_id={self.client_id} event={event.name} ignored reason=no_handler")
            return
        try:
            result = handler(event.payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"client_id={self.client_id} event={event.name} handler failed: {e}")


async def open_stream(
    topic: str,
    handlers: Mapping[str, EventHandler],
    token: str | None = None,
    enabled: bool = True,
    **kwargs,
) -> EventStreamClient:
    """Create a client for one backend topic and connect it if `enabled`."""
    client = EventStreamClient(
        settings.stream_url(topic),
        handlers,
        token=token,
        client_id=f"{topic}-{str(uuid.uuid4())[:8]}",
        **kwargs,
    )
    await client.set_enabled(enabled)
    return client
