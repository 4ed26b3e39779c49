"""
MODULE OVERVIEW:
Stream channel and event names, plus the in-process event bus.

WHAT IS HAPPENING HERE:
Names are shared by the server (which broadcasts them) and the clients (which
register handlers for them). Clients must ignore names they do not know, so new
names can be added here without breaking older kiosks.

The bus decouples the payment/order routes (publishers) from the stream hub
(subscriber). A multi-worker deployment would swap it for Redis Pub/Sub.
"""
from typing import Any, Awaitable, Callable, List

from loguru import logger


class Channels:
    ORDERS = "orders"
    MENU = "menu"
    INVENTORY = "inventory"
    CUSTOM_CAKES = "custom-cakes"
    NOTIFICATIONS = "notifications"


class EventNames:
    CONNECTED = "connected"

    ORDER_CREATED = "order.created"
    ORDER_UPDATED = "order.updated"
    ORDER_STATUS_CHANGED = "order.status_changed"
    ORDER_DELETED = "order.deleted"
    ORDER_PRINTED = "order.printed"

    MENU_ITEM_CREATED = "menu.item.created"
    MENU_ITEM_UPDATED = "menu.item.updated"
    MENU_ITEM_DELETED = "menu.item.deleted"
    MENU_ITEM_STOCK_CHANGED = "menu.item.stock_changed"

    INVENTORY_ALERT = "inventory.alert"
    INVENTORY_UPDATED = "inventory.updated"

    CUSTOM_CAKE_SUBMITTED = "custom_cake.submitted"
    CUSTOM_CAKE_APPROVED = "custom_cake.approved"
    CUSTOM_CAKE_REJECTED = "custom_cake.rejected"
    CUSTOM_CAKE_COMPLETED = "custom_cake.completed"
    CUSTOM_CAKE_MESSAGE_RECEIVED = "custom_cake.message_received"
    CUSTOM_CAKE_MESSAGES_READ = "custom_cake.messages_read"

    NOTIFICATION = "notification"
    CACHE_INVALIDATED = "cache.invalidated"


ORDER_EVENTS = (
    EventNames.ORDER_CREATED,
    EventNames.ORDER_UPDATED,
    EventNames.ORDER_STATUS_CHANGED,
    EventNames.ORDER_DELETED,
    EventNames.ORDER_PRINTED,
)

Subscriber = Callable[[str, str, Any], Awaitable[None]]


class GlobalInternalBus:
    """
    A minimal pub/sub bus. Subscribers receive (channel, event_name, payload).
    A failing subscriber is logged and skipped so one bad consumer cannot
    block the others.
    """
    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber):
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def publish(self, channel: str, event: str, payload: Any):
        for sub in list(self._subscribers):
            try:
                await sub(channel, event, payload)
            except Exception as e:
                logger.error(f"Error in subscriber during publish channel={channel} event={event}: {e}")


# The singleton instance used by the server process
global_bus = GlobalInternalBus()
