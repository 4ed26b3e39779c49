"""
MODULE OVERVIEW:
The Rich terminal dashboard for watching a live stream from the counter PC.

WHAT IS HAPPENING HERE:
The dashboard takes over the stream client's status and event callbacks and
redraws four times a second: a status bar on top, the event feed on the
left, connection health and the state history on the right. Events with no
registered handler are shown dimmed, since a kiosk would ignore them.
"""

import asyncio
from collections import deque
from datetime import datetime

from rich.console import Group
from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from bakehouse_kiosk.client.sse_client import EventStreamClient
from bakehouse_kiosk.shared.models import DomainEvent, StreamState

TOPIC_INFO = {
    "orders": "Orders: created, status changes, prints. Cashier screens refetch on every event.",
    "custom-cakes": "Custom cakes: submissions, approvals and customer messages.",
    "menu": "Menu: item edits and stock changes pushed to kiosks.",
    "inventory": "Inventory: low-stock alerts for the back office.",
    "notifications": "Notifications: staff-facing announcements.",
}

STATE_COLORS = {"open": "green", "connecting": "yellow", "error": "red", "closed": "grey50"}
PAYLOAD_PREVIEW = 40


def _preview(payload) -> str:
    text = str(payload)
    return text if len(text) <= PAYLOAD_PREVIEW else text[:PAYLOAD_PREVIEW] + "..."


class Visualizer:
    def __init__(self, client: EventStreamClient, topic: str, feed_size: int = 12):
        self.client = client
        self.topic = topic
        self.state: StreamState | None = None
        self.recent_events: deque = deque(maxlen=feed_size)
        self.state_history: deque = deque(maxlen=6)

    @property
    def status(self) -> str:
        return (self.state or "starting").upper()

    def on_status_change(self, state: StreamState):
        self.state = state
        self.state_history.appendleft((datetime.now().strftime("%H:%M:%S"), state))

    def on_event(self, event: DomainEvent):
        handled = "yes" if event.name in self.client.handlers else "no"
        self.recent_events.appendleft(
            (event.received_at.astimezone().strftime("%H:%M:%S"), event.name, _preview(event.payload), handled)
        )

    def _status_bar(self) -> Panel:
        color = STATE_COLORS.get(self.state or "", "yellow")
        return Panel(Text(f"{self.topic}  |  {self.status}  |  {self.client.url}", style=f"bold {color}"))

    def _feed(self) -> Panel:
        table = Table(expand=True, show_edge=False)
        table.add_column("Time", style="cyan", no_wrap=True)
        table.add_column("Event", style="magenta")
        table.add_column("Payload")
        table.add_column("Handled", justify="center")
        for received, name, payload, handled in self.recent_events:
            table.add_row(received, name, payload, handled, style=None if handled == "yes" else "dim")
        return Panel(table, title=f"Live events ({len(self.recent_events)})")

    def _health(self) -> Panel:
        stats = self.client.stats
        lines = [
            f"Events received : {stats['events_received']}",
            f"Reconnects      : {stats['reconnect_count']}",
            f"Heartbeats      : {stats['heartbeats_received']}",
            f"Last event id   : {self.client.last_event_id or '-'}",
            f"Connected at    : {stats['connected_at'] or '-'}",
        ]
        history = Text("\n".join(f"{ts}  {state}" for ts, state in self.state_history), style="grey70")
        return Panel(Group(Text("\n".join(lines)), Text(""), history), title="Connection")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(Layout(self._status_bar(), name="status", size=3), Layout(name="body"))
        layout["body"].split_row(Layout(self._feed(), name="feed", ratio=2), Layout(name="side", ratio=1))
        layout["side"].split_column(
            Layout(self._health(), name="health"),
            Layout(Panel(TOPIC_INFO.get(self.topic, "Custom topic"), title="Topic"), name="topic", size=6),
        )
        return layout

    async def run(self, duration_s: float | None = None):
        """Show the dashboard until the client stops or `duration_s` elapses."""
        self.client.on_status_change_callback = self.on_status_change
        self.client.on_event_callback = self.on_event

        client_task = await self.client.start()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s if duration_s else None

        try:
            with Live(self.generate_layout(), refresh_per_second=4) as live:
                while not client_task.done():
                    if deadline is not None and loop.time() >= deadline:
                        break
                    live.update(self.generate_layout())
                    await asyncio.sleep(0.25)
        finally:
            await self.client.aclose()
