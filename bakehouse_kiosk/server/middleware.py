"""
MODULE OVERVIEW:
Request timing for the reference backend.

WHAT IS HAPPENING HERE:
Every response carries `X-Process-Time-Ms` and `X-Request-ID`. A kiosk that
sees a slow payment status check can tell server-side slowness from network
latency, and the request id ties its log line to ours. Status polls and
long-lived streams are kept out of the debug log because they would drown it;
slow requests are logged whatever the path.
"""

import time
import uuid

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

QUIET_PREFIXES = ("/api/payment/status/", "/api/sse/")
SLOW_REQUEST_MS = 1000.0


class TimingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, slow_request_ms: float = SLOW_REQUEST_MS):
        super().__init__(app)
        self.slow_request_ms = slow_request_ms

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.2f}"
        response.headers["X-Request-ID"] = request_id

        line = (
            f"request_id={request_id} {request.method} {request.url.path} "
            f"status={response.status_code} elapsed={elapsed_ms:.2f}ms"
        )
        if elapsed_ms >= self.slow_request_ms:
            logger.warning(f"{line} slow=true")
        elif not request.url.path.startswith(QUIET_PREFIXES):
            logger.debug(line)

        return response
