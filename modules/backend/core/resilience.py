"""
Resilience helpers for outbound calls.

The trading API client and the Telegram sender wrap their calls as
breaker (aiobreaker) around retry (tenacity) around timeout. Each
transition and retry is logged with a ``resilience_event`` field, so

    jq 'select(.resilience_event != null)' logs/system.jsonl

shows the whole history of a flaky dependency.

Usage:
    breaker = create_circuit_breaker("trading_api", fail_max=5, timeout_duration=30)

    async def fetch():
        async for attempt in create_retrying((httpx.TransportError,), dependency="trading_api"):
            with attempt:
                async with asyncio.timeout(7):
                    return await client.get(url)

    response = await breaker.call_async(fetch)
"""

from collections.abc import Callable
from datetime import timedelta
from typing import Any

import aiobreaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from modules.backend.core.logging import get_logger, log_with_source

logger = get_logger(__name__)

BREAKER_EVENTS = {
    "open": "circuit_breaker_opened",
    "half-open": "circuit_breaker_half_open",
    "closed": "circuit_breaker_closed",
}


class ResilienceLogger(aiobreaker.CircuitBreakerListener):
    """Logs breaker transitions and recorded failures for one dependency."""

    def __init__(self, dependency: str) -> None:
        self.dependency = dependency

    def state_change(self, cb: aiobreaker.CircuitBreaker, old_state: Any, new_state: Any) -> None:
        state = str(new_state).lower()
        log_with_source(
            logger,
            "internal",
            "error" if state == "open" else "info",
            f"Circuit breaker {self.dependency}: {old_state} -> {new_state}",
            resilience_event=BREAKER_EVENTS.get(state, f"circuit_breaker_{state}"),
            dependency=self.dependency,
            failure_count=cb.fail_counter,
        )

    def failure(self, cb: aiobreaker.CircuitBreaker, exception: Exception) -> None:
        log_with_source(
            logger,
            "internal",
            "warning",
            f"Circuit breaker {self.dependency}: failure recorded",
            resilience_event="circuit_breaker_failure",
            dependency=self.dependency,
            failure_count=cb.fail_counter,
            error=str(exception),
        )


def retry_logger(dependency: str | None = None) -> Callable[[Any], None]:
    """
    Build a tenacity ``before_sleep`` callback.

    Without a dependency name the wrapped function's name is used. When
    retrying is driven by ``async for`` there is no wrapped function, so
    callers using that form should pass one.
    """

    def _log(retry_state: Any) -> None:
        name = dependency or getattr(retry_state.fn, "__name__", "unknown")
        duration_ms = None
        if retry_state.outcome_timestamp and retry_state.start_time:
            duration_ms = round((retry_state.outcome_timestamp - retry_state.start_time) * 1000)
        outcome = retry_state.outcome
        log_with_source(
            logger,
            "internal",
            "warning",
            f"Retrying {name} (attempt {retry_state.attempt_number})",
            resilience_event="retry_attempt",
            dependency=name,
            attempt=retry_state.attempt_number,
            duration_ms=duration_ms,
            error=str(outcome.exception()) if outcome and outcome.failed else None,
        )

    return _log


log_retry = retry_logger()


def create_circuit_breaker(
    dependency: str,
    fail_max: int = 5,
    timeout_duration: int = 30,
) -> aiobreaker.CircuitBreaker:
    return aiobreaker.CircuitBreaker(
        fail_max=fail_max,
        timeout_duration=timedelta(seconds=timeout_duration),
        listeners=[ResilienceLogger(dependency)],
    )


def create_retrying(
    exceptions: tuple[type[BaseException], ...],
    attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 4.0,
    wait: Any = None,
    dependency: str | None = None,
) -> AsyncRetrying:
    """
    Async retry controller for ``async for attempt in ...`` loops.

    Only ``exceptions`` are retried; anything else propagates on the
    first attempt. ``attempts`` counts the first call. ``wait`` replaces
    the default exponential backoff. The last failure is re-raised as-is.
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait or wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(exceptions),
        before_sleep=retry_logger(dependency),
        reraise=True,
    )
