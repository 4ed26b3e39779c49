"""
MODULE OVERVIEW:
The exception taxonomy shared by the clients and the kiosk shell.

WHAT IS HAPPENING HERE:
Only failures a person at the counter can act on are raised out of the core
(`ApiError` for rejected requests, `PaymentTimeoutError` when the gateway never
confirms). Stream drops and renderer faults are absorbed and logged instead,
so they have no exception type here.
"""

# Network-level codes, named after the socket errors the web clients matched on.
ECONNREFUSED = "ECONNREFUSED"
ENOTFOUND = "ENOTFOUND"
ETIMEDOUT = "ETIMEDOUT"
ECONNRESET = "ECONNRESET"
ECONNABORTED = "ECONNABORTED"

NETWORK_RETRY_CODES = frozenset({ECONNREFUSED, ENOTFOUND, ETIMEDOUT, ECONNRESET})

PAYMENT_TIMEOUT_MESSAGE = "Payment timeout - please check with staff"


class KioskError(Exception):
    """Base class for every error raised by bakehouse_kiosk."""


class ApiError(KioskError):
    """A request that failed, either with an HTTP status or at the network level.

    `status_code` is None when no response arrived; `code` then carries one of
    the network codes above.
    """

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code

    @property
    def has_response(self) -> bool:
        return self.status_code is not None

    def __repr__(self) -> str:
        return f"ApiError(message={self.message!r}, status_code={self.status_code}, code={self.code})"


class PaymentTimeoutError(ApiError):
    def __init__(self, order_id: int | str, attempts: int):
        super().__init__(PAYMENT_TIMEOUT_MESSAGE)
        self.order_id = order_id
        self.attempts = attempts


class PaymentCancelledError(KioskError):
    def __init__(self, order_id: int | str):
        super().__init__(f"Payment polling cancelled for order {order_id}")
        self.order_id = order_id


class SettingsError(KioskError):
    pass
