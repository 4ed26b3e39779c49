"""
MODULE OVERVIEW:
Strictly typed data structures shared by the kiosk clients, the reference
server and the kiosk shell, powered by Pydantic v2.

WHAT IS HAPPENING HERE:
The payment and stream shapes mirror the backend's JSON contract, so the
server routes and the clients validate against the same classes.
`RequestAttempt` is frozen: each retry derives a new value instead of
mutating shared request state.
"""
from datetime import datetime, timezone
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

PaymentStatusValue = Literal["pending", "paid", "failed", "expired"]
StreamState = Literal["connecting", "open", "closed", "error"]
PollerState = Literal["idle", "polling", "paid", "timed_out", "errored", "cancelled"]

T = TypeVar("T")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiEnvelope(BaseModel, Generic[T]):
    """The `{success, message, data}` wrapper every backend route answers with."""

    success: bool = True
    message: str = ""
    data: T | None = None


# WHAT IS HAPPENING HERE:
# One logical HTTP call. `attempt` counts the calls already made, so a fresh
# value starts at 0 and `next()` is used once per failure.
class RequestAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    operation: str
    attempt: int = 0
    last_error: str | None = None
    delay_s: float = 0.0

    def next(self, error: str, delay_s: float) -> "RequestAttempt":
        return self.model_copy(update={
            "attempt": self.attempt + 1,
            "last_error": error,
            "delay_s": delay_s,
        })


class PaymentStatus(BaseModel):
    paid: bool
    order_id: int
    order_number: str
    payment_status: PaymentStatusValue = "pending"


class PaymentQR(BaseModel):
    qr_id: str
    qr_string: str
    order_number: str
    amount: float


class CreateQRRequest(BaseModel):
    order_id: int
    amount: float = Field(gt=0)


class CreateOrderRequest(BaseModel):
    amount: float = Field(gt=0)
    customer_name: str | None = None


class Order(BaseModel):
    order_id: int
    order_number: str
    amount: float
    payment_status: PaymentStatusValue = "pending"
    customer_name: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class PaymentWebhook(BaseModel):
    """Gateway callback body. `external_id` is the order number we issued."""

    id: str
    external_id: str
    status: str
    amount: float | None = None


# WHAT IS HAPPENING HERE:
# A discrete named event as it arrived over a stream. `event_id` is the SSE
# `id:` field and is what a reconnecting client sends back as Last-Event-ID.
class DomainEvent(BaseModel):
    name: str
    payload: Any = None
    event_id: str | None = None
    received_at: datetime = Field(default_factory=utcnow)


class ConnectionStats(BaseModel):
    total_clients: int
    channel_stats: dict[str, int]
    total_events_dispatched: int
    uptime_s: float
    server_time: datetime


class KioskSettings(BaseModel):
    app_url: str | None = None
    last_updated: datetime = Field(default_factory=utcnow)
