"""
MODULE OVERVIEW:
Bounded exponential-backoff retry for outbound calls.

WHAT IS HAPPENING HERE:
`retry_with_backoff` re-invokes the same zero-argument coroutine factory until
it succeeds, the error is classified as permanent, or the attempt budget is
spent. The last error is re-raised untouched so callers see exactly what the
server (or the network) said.

Classification follows the web clients:
  * no response + ECONNREFUSED / ENOTFOUND / ETIMEDOUT / ECONNRESET -> retry
  * HTTP status >= 500 -> retry
  * client-side timeout / abort -> retry
  * everything else (4xx, validation, programming errors) -> raise at once
"""
import asyncio
import errno
import random
import socket
from typing import Awaitable, Callable, TypeVar

import httpx
from loguru import logger

from bakehouse_kiosk.shared.errors import (
    ECONNABORTED,
    ECONNREFUSED,
    ECONNRESET,
    ENOTFOUND,
    ETIMEDOUT,
    NETWORK_RETRY_CODES,
)
from bakehouse_kiosk.shared.models import RequestAttempt

T = TypeVar("T")

_ERRNO_CODES = {
    errno.ECONNREFUSED: ECONNREFUSED,
    errno.ECONNRESET: ECONNRESET,
    errno.ETIMEDOUT: ETIMEDOUT,
}


def _os_error_code(exc: BaseException | None) -> str | None:
    # httpx wraps the socket error; walk the cause chain to find it.
    seen = 0
    while exc is not None and seen < 8:
        if isinstance(exc, socket.gaierror):
            return ENOTFOUND
        if isinstance(exc, OSError) and exc.errno in _ERRNO_CODES:
            return _ERRNO_CODES[exc.errno]
        if isinstance(exc, ConnectionRefusedError):
            return ECONNREFUSED
        if isinstance(exc, ConnectionResetError):
            return ECONNRESET
        exc = exc.__cause__ or exc.__context__
        seen += 1
    return None


def network_error_code(exc: BaseException) -> str | None:
    """Map a transport-level exception to a network code, or None if it is not one."""
    code = getattr(exc, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(exc, httpx.ConnectTimeout):
        return ETIMEDOUT
    if isinstance(exc, httpx.TimeoutException):
        return ECONNABORTED
    if isinstance(exc, httpx.ConnectError):
        found = _os_error_code(exc.__cause__ or exc.__context__)
        if found:
            return found
        text = str(exc).lower()
        if "name or service not known" in text or "nodename" in text or "getaddrinfo" in text:
            return ENOTFOUND
        return ECONNREFUSED
    if isinstance(exc, (httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError)):
        return ECONNRESET
    if isinstance(exc, asyncio.TimeoutError):
        return ECONNABORTED
    if isinstance(exc, OSError):
        return _os_error_code(exc)
    return None


def status_code_of(exc: BaseException) -> int | None:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    status = getattr(exc, "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(exc: BaseException) -> bool:
    status = status_code_of(exc)
    if status is not None:
        return status >= 500
    code = network_error_code(exc)
    return code in NETWORK_RETRY_CODES or code == ECONNABORTED


def describe_error(exc: BaseException) -> str:
    status = status_code_of(exc)
    if status is not None:
        return f"HTTP {status}"
    code = network_error_code(exc)
    if code:
        return code
    return f"{type(exc).__name__}: {exc}"


def backoff_delay(
    attempt: int,
    base_delay_s: float,
    jitter_s: float = 0.0,
    max_delay_s: float | None = None,
) -> float:
    """Delay before retry number `attempt` (1-indexed): base * 2^(attempt-1) + jitter."""
    if attempt < 1:
        raise ValueError("attempt is 1-indexed")
    delay = base_delay_s * (2 ** (attempt - 1))
    if max_delay_s is not None:
        delay = min(delay, max_delay_s)
    if jitter_s > 0:
        delay += random.uniform(0, jitter_s)
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    operation: str = "request",
    max_attempts: int = 3,
    base_delay_s: float = 1.0,
    jitter_s: float = 0.0,
    max_delay_s: float | None = None,
    should_retry: Callable[[BaseException], bool] = is_retryable,
    on_retry: Callable[[BaseException, RequestAttempt], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Await `fn()` up to `max_attempts` times.

    `fn` must be safe to repeat: it is re-invoked with identical input on
    every retry. There is no overall deadline beyond the attempt budget; wrap
    the call in `asyncio.wait_for` when a wall-clock limit is needed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    attempt = RequestAttempt(operation=operation)
    while True:
        try:
            return await fn()
        except Exception as exc:
            calls_made = attempt.attempt + 1
            if calls_made >= max_attempts or not should_retry(exc):
                raise
            delay = backoff_delay(calls_made, base_delay_s, jitter_s, max_delay_s)
            attempt = attempt.next(describe_error(exc), delay)
            logger.warning(
                f"operation={operation} retry={attempt.attempt}/{max_attempts - 1} "
                f"delay={delay:.2f}s reason='{attempt.last_error}'"
            )
            if on_retry:
                on_retry(exc, attempt)
            await sleep(delay)
