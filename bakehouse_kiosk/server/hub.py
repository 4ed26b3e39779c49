"""
MODULE OVERVIEW:
The channel registry behind the /sse endpoints.

WHAT IS HAPPENING HERE:
Each connected stream gets its own bounded asyncio.Queue. `broadcast()` fans an
event out to every queue on the channel and appends it to a per-channel
history ring, so a client reconnecting with Last-Event-ID can be sent what it
missed (when its last id is still in the ring). A slow client whose queue is
full loses the event rather than stalling everyone else.
"""

import asyncio
import json
import secrets
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict

from loguru import logger

from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.events import EventNames
from bakehouse_kiosk.shared.models import ConnectionStats

Message = Dict[str, str]


@dataclass
class Subscriber:
    client_id: str
    channel: str
    queue: asyncio.Queue
    user_id: str | None = None


class StreamHub:
    def __init__(self, history_size: int | None = None, queue_size: int = 100):
        self.history_size = history_size or settings.SSE_HISTORY_SIZE
        self.queue_size = queue_size
        self.subscribers: Dict[str, Subscriber] = {}
        self.history: Dict[str, Deque[Message]] = {}
        self.total_events_dispatched = 0
        self.startup_time = datetime.now(timezone.utc)

    @staticmethod
    def new_event_id() -> str:
        return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"

    def subscribe(
        self,
        channel: str,
        client_id: str,
        last_event_id: str | None = None,
        user_id: str | None = None,
    ) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        queue.put_nowait({
            "event": EventNames.CONNECTED,
            "data": json.dumps({
                "clientId": client_id,
                "channel": channel,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }),
        })
        if last_event_id:
            self._replay(queue, channel, client_id, last_event_id)

        self.subscribers[client_id] = Subscriber(client_id, channel, queue, user_id)
        logger.info(f"client_id={client_id} protocol=sse channel={channel} event=connect")
        return queue

    def unsubscribe(self, client_id: str):
        sub = self.subscribers.pop(client_id, None)
        if sub is not None:
            logger.info(f"client_id={client_id} protocol=sse channel={sub.channel} event=disconnect")

    def _replay(self, queue: asyncio.Queue, channel: str, client_id: str, last_event_id: str):
        history = list(self.history.get(channel, ()))
        ids = [m["id"] for m in history]
        if last_event_id not in ids:
            # Too old or unknown: the client revalidates over REST instead.
            return
        missed = history[ids.index(last_event_id) + 1:]
        for message in missed[: self.queue_size - 1]:
            queue.put_nowait(message)
        logger.info(f"client_id={client_id} channel={channel} replayed={len(missed)}")

    def broadcast(self, channel: str, event: str, data: Any, user_id: str | None = None) -> int:
        message: Message = {
            "id": self.new_event_id(),
            "event": event,
            "data": json.dumps(data, default=str),
        }
        self.history.setdefault(channel, deque(maxlen=self.history_size)).append(message)
        self.total_events_dispatched += 1

        sent = 0
        for sub in list(self.subscribers.values()):
            if sub.channel != channel:
                continue
            if user_id and sub.user_id != user_id:
                continue
            try:
                sub.queue.put_nowait(message)
                sent += 1
            except asyncio.QueueFull:
                logger.warning(f"client_id={sub.client_id} protocol=sse event=dropped reason=queue_full")
        logger.debug(f"broadcast channel={channel} event={event} recipients={sent}")
        return sent

    async def on_bus_event(self, channel: str, event: str, payload: Any):
        self.broadcast(channel, event, payload)

    def client_count(self, channel: str | None = None) -> int:
        if channel is None:
            return len(self.subscribers)
        return sum(1 for s in self.subscribers.values() if s.channel == channel)

    def get_stats(self) -> ConnectionStats:
        channel_stats: Dict[str, int] = {}
        for sub in self.subscribers.values():
            channel_stats[sub.channel] = channel_stats.get(sub.channel, 0) + 1
        return ConnectionStats(
            total_clients=len(self.subscribers),
            channel_stats=channel_stats,
            total_events_dispatched=self.total_events_dispatched,
            uptime_s=(datetime.now(timezone.utc) - self.startup_time).total_seconds(),
            server_time=datetime.now(timezone.utc),
        )


# Global singleton instance
hub = StreamHub()
