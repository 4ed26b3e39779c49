"""
MODULE OVERVIEW:
Order creation, QR payment and the gateway webhook.

WHAT IS HAPPENING HERE:
The webhook is the authoritative "paid" signal. Kiosks poll
GET /payment/status/{order_id} because they cannot receive it themselves;
cashier screens learn about it through the `order.status_changed` event the
webhook publishes on the orders channel.
"""
import secrets

from fastapi import APIRouter, Header, HTTPException
from loguru import logger

from bakehouse_kiosk.server.ledger import ledger
from bakehouse_kiosk.server.route_utils import envelope
from bakehouse_kiosk.shared.config import settings
from bakehouse_kiosk.shared.events import Channels, EventNames, global_bus
from bakehouse_kiosk.shared.models import (
    CreateOrderRequest,
    CreateQRRequest,
    PaymentQR,
    PaymentWebhook,
)

router = APIRouter()

# Gateway status -> our payment status
GATEWAY_STATUSES = {
    "COMPLETED": "paid",
    "SUCCEEDED": "paid",
    "FAILED": "failed",
    "EXPIRED": "expired",
}


def _order_or_404(order_id: int):
    order = ledger.get(order_id)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post("/orders", status_code=201)
async def create_order(body: CreateOrderRequest):
    order = ledger.create(body.amount, body.customer_name)
    await global_bus.publish(Channels.ORDERS, EventNames.ORDER_CREATED, order.model_dump(mode="json"))
    return envelope("Order created", order)


@router.get("/orders/{order_id}")
async def get_order(order_id: int):
    return envelope("Order retrieved", _order_or_404(order_id))


@router.post("/payment/create-qr")
async def create_qr(body: CreateQRRequest):
    order = _order_or_404(body.order_id)
    if order.payment_status == "paid":
        raise HTTPException(status_code=400, detail="Order has already been paid")

    qr = PaymentQR(
        qr_id=f"qr_{secrets.token_hex(8)}",
        qr_string=f"BAKEHOUSE|{order.order_number}|{body.amount:.2f}|{secrets.token_hex(6)}",
        order_number=order.order_number,
        amount=body.amount,
    )
    logger.info(f"order_id={order.order_id} qr_id={qr.qr_id} amount={body.amount} event=qr_created")
    return envelope("QR code created successfully", qr)


@router.get("/payment/status/{order_id}")
async def payment_status(order_id: int):
    _order_or_404(order_id)
    status = ledger.payment_status(order_id)
    message = "Payment completed" if status.paid else "Payment pending"
    return envelope(message, status)


@router.post("/payment/webhook")
async def payment_webhook(
    body: PaymentWebhook,
    x_callback_token: str | None = Header(None),
):
    if settings.WEBHOOK_CALLBACK_TOKEN and x_callback_token != settings.WEBHOOK_CALLBACK_TOKEN:
        logger.warning(f"webhook id={body.id} rejected reason=invalid_token")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    new_status = GATEWAY_STATUSES.get(body.status.upper())
    order = ledger.by_number(body.external_id)
    if order is None or new_status is None:
        logger.warning(f"webhook id={body.id} external_id={body.external_id} status={body.status} ignored")
        return {"received": True, "processed": False}

    changed = ledger.set_payment_status(order.order_id, new_status)
    if changed:
        await global_bus.publish(Channels.ORDERS, EventNames.ORDER_STATUS_CHANGED, {
            "order_id": order.order_id,
            "order_number": order.order_number,
            "payment_status": order.payment_status,
        })
    return {"received": True, "processed": changed}
