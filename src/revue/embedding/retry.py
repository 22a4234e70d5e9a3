"""Retry policy: error classification, exponential backoff with jitter."""

from __future__ import annotations

import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from revue.exceptions import (
    PermanentJobError,
    ProviderCircuitOpenError,
    ProviderPermanentError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 30.0
DEFAULT_JITTER = 1.0

# Errors that no amount of retrying will fix
_NON_RETRYABLE: tuple[type[BaseException], ...] = (
    ProviderPermanentError,
    ProviderCircuitOpenError,
    PermanentJobError,
    ValueError,
    TypeError,
)


def is_retryable(exc: BaseException) -> bool:
    """Return True if *exc* is worth another attempt.

    Permanent provider errors, open circuits, permanent job errors and
    programming errors (``ValueError``, ``TypeError``) are not; anything
    else (transient provider errors, timeouts, connection resets) is.
    """
    return not isinstance(exc, _NON_RETRYABLE)


def backoff_delay(
    attempt: int,
    *,
    base: float,
    cap: float,
    jitter: float = 0.0,
) -> float:
    """Delay in seconds before retry number *attempt* (1-based).

    ``min(cap, base * 2 ** (attempt - 1))`` plus a uniform jitter in
    ``[0, jitter)``.  Without jitter the sequence is non-decreasing and
    bounded by *cap*.
    """
    exponent = max(attempt, 1) - 1
    delay = min(cap, base * (2**exponent))
    if jitter > 0:
        delay += random.uniform(0, jitter)
    return delay


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    jitter: float = DEFAULT_JITTER,
    retry_on: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Await ``fn()``, retrying up to *max_retries* extra times on retryable errors.

    Waits ``base_delay * 2 ** (n - 1)`` (capped at *max_delay*) plus up to
    *jitter* seconds before retry *n*.  The last error is re-raised once
    attempts are exhausted or a non-retryable error occurs.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=base_delay, max=max_delay) + wait_random(0, jitter),
        retry=retry_if_exception(retry_on),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            return await fn()
    # Unreachable: reraise=True re-raises the final error
    msg = "retry loop exited without a result"
    raise RuntimeError(msg)
