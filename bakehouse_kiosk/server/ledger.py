"""
MODULE OVERVIEW:
In-memory order book for the reference server.

WHAT IS HAPPENING HERE:
Just enough order state to exercise checkout end to end: create an order, ask
for its payment status, and let the gateway webhook mark it paid. Once paid an
order never goes back to any other payment status.
"""
from datetime import datetime, timezone
from typing import Dict

from loguru import logger

from bakehouse_kiosk.shared.models import Order, PaymentStatus, PaymentStatusValue


class OrderLedger:
    def __init__(self):
        self._orders: Dict[int, Order] = {}
        self._next_id = 1

    def create(self, amount: float, customer_name: str | None = None) -> Order:
        order_id = self._next_id
        self._next_id += 1
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d")
        order = Order(
            order_id=order_id,
            order_number=f"ORD-{stamp}-{order_id:04d}",
            amount=amount,
            customer_name=customer_name,
        )
        self._orders[order_id] = order
        logger.info(f"order_id={order_id} order_number={order.order_number} amount={amount} event=created")
        return order

    def get(self, order_id: int) -> Order | None:
        return self._orders.get(order_id)

    def by_number(self, order_number: str) -> Order | None:
        for order in self._orders.values():
            if order.order_number == order_number:
                return order
        return None

    def set_payment_status(self, order_id: int, status: PaymentStatusValue) -> bool:
        """Returns True if the status changed. `paid` is final."""
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        if order.payment_status == "paid" or order.payment_status == status:
            return False
        order.payment_status = status
        logger.info(f"order_id={order_id} payment_status={status}")
        return True

    def payment_status(self, order_id: int) -> PaymentStatus:
        order = self._orders.get(order_id)
        if order is None:
            raise KeyError(order_id)
        return PaymentStatus(
            paid=order.payment_status == "paid",
            order_id=order.order_id,
            order_number=order.order_number,
            payment_status=order.payment_status,
        )


ledger = OrderLedger()
