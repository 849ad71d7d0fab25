from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from agent_gateway.domain.exceptions import FatalProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_FATAL_STATUS_CODES = frozenset({400, 401, 403, 404})
_FATAL_MESSAGE_MARKERS = ("INVALID_ARGUMENT", "API_KEY_INVALID", "PERMISSION_DENIED")


def is_fatal_error(exc: BaseException) -> bool:
    """Client-input, auth, and explicit invalid-argument failures are not worth retrying."""
    if isinstance(exc, FatalProviderError):
        return True
    status = _status_code(exc)
    if status in _FATAL_STATUS_CODES:
        return True
    message = str(exc)
    return any(marker in message for marker in _FATAL_MESSAGE_MARKERS)


def backoff_delay(
    attempt: int,
    base_delay: float,
    jitter: bool = True,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt`` (1-based): ``base * 2**(attempt-1)``.

    With jitter the delay is drawn uniformly from the upper half of that window.
    """
    delay = base_delay * (2 ** (attempt - 1))
    if not jitter:
        return delay
    return delay / 2 + rng() * (delay / 2)


async def with_backoff(
    op: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    *,
    jitter: bool = True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    is_fatal: Callable[[BaseException], bool] = is_fatal_error,
    operation: str = "provider_call",
) -> T:
    if max_attempts < 1:
        msg = "max_attempts_must_be_positive"
        raise ValueError(msg)

    attempt = 1
    while True:
        try:
            return await op()
        except Exception as exc:
            if is_fatal(exc):
                logger.warning(
                    "provider_fatal_error",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "error_type": type(exc).__name__,
                        "error": str(exc)[:500],
                    },
                )
                raise
            if attempt >= max_attempts:
                logger.warning(
                    "provider_retries_exhausted",
                    extra={
                        "operation": operation,
                        "attempts": attempt,
                        "error_type": type(exc).__name__,
                        "error": str(exc)[:500],
                    },
                )
                raise

            delay = backoff_delay(attempt, base_delay, jitter=jitter, rng=rng)
            logger.info(
                "provider_retry_scheduled",
                extra={
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": max_attempts,
                    "delay_seconds": round(delay, 3),
                    "error_type": type(exc).__name__,
                },
            )
            await sleep(delay)
            attempt += 1


def _status_code(exc: BaseException) -> int | None:
    for attr in ("code", "status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    if isinstance(value, int):
        return value
    return None
