"""Retry policy for Lemon Squeezy API calls.

A call is retried when the provider answers 429 or a 5xx gateway status, or
when the connection fails before any response. Waits grow exponentially
with jitter; a Retry-After header from the provider takes precedence.
"""

from __future__ import annotations

import functools
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

_MIN_DELAY = 0.1


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.3

    def delay_for(self, attempt: int, response: httpx.Response | None = None) -> float:
        """Seconds to wait before retry number attempt + 1."""
        retry_after = _retry_after(response)
        if retry_after is not None:
            return min(retry_after, self.max_delay)
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        spread = delay * self.jitter
        return max(_MIN_DELAY, delay + random.uniform(-spread, spread))


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ReadTimeout))


def _retry_after(response: httpx.Response | None) -> float | None:
    if response is None:
        return None
    raw = response.headers.get("Retry-After")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _describe(exc: Exception) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code}"
    return type(exc).__name__


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    jitter: float = 0.3,
) -> Callable:
    """Decorator: re-invoke an httpx call under a RetryPolicy.

    Non-retryable errors, and the last retryable one, propagate unchanged.
    """
    policy = RetryPolicy(max_retries, base_delay, max_delay, jitter)

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return fn(*args, **kwargs)
                except (httpx.HTTPStatusError, httpx.ConnectError, httpx.ReadTimeout) as e:
                    if attempt >= policy.max_retries or not is_retryable(e):
                        raise
                    response = e.response if isinstance(e, httpx.HTTPStatusError) else None
                    delay = policy.delay_for(attempt, response)
                    attempt += 1
                    logger.warning(
                        "%s failed (%s), retry %d/%d in %.1fs",
                        fn.__name__,
                        _describe(e),
                        attempt,
                        policy.max_retries,
                        delay,
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
