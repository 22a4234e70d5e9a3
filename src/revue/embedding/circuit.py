"""Circuit breaker guarding the vectorization provider.

Built on pybreaker.  Failures are counted per item, after the item's own
retries are exhausted, and ``fail_max`` consecutive failures open the
circuit.  Once ``reset_timeout`` seconds have passed the next call is a
half-open trial: success closes the circuit, failure re-opens it.
"""

from __future__ import annotations

import logging
from typing import Any

import pybreaker

logger = logging.getLogger(__name__)

DEFAULT_FAIL_MAX = 5
DEFAULT_RESET_TIMEOUT = 60.0


class CircuitTransitionListener(pybreaker.CircuitBreakerListener):
    """Logs state changes and counts how often the circuit opened."""

    def __init__(self) -> None:
        self.times_opened = 0

    def state_change(self, cb: pybreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        if new_state.name == pybreaker.STATE_OPEN:
            self.times_opened += 1
            logger.warning(
                "Circuit breaker %s opened after %d failure(s)", cb.name, cb.fail_counter
            )
        else:
            logger.info(
                "Circuit breaker %s: %s -> %s",
                cb.name,
                getattr(old_state, "name", None),
                new_state.name,
            )


def provider_breaker(
    fail_max: int = DEFAULT_FAIL_MAX,
    reset_timeout: float = DEFAULT_RESET_TIMEOUT,
    *,
    name: str = "embedding_provider_circuit_breaker",
) -> pybreaker.CircuitBreaker:
    """Breaker for the embedding provider.

    The failure that trips the circuit is re-raised as itself rather than
    as :class:`pybreaker.CircuitBreakerError`, so callers still see the
    provider's transient or permanent error for that item.
    """
    return pybreaker.CircuitBreaker(
        fail_max=fail_max,
        reset_timeout=reset_timeout,
        name=name,
        throw_new_error_on_trip=False,
    )


def breaker_status(breaker: pybreaker.CircuitBreaker) -> dict[str, Any]:
    """Status snapshot for health reporting."""
    return {
        "state": str(breaker.current_state),
        "fail_count": breaker.fail_counter,
        "fail_max": breaker.fail_max,
        "reset_timeout": breaker.reset_timeout,
    }
