"""
batu.resilience

Retry policy for external calls (tenacity), and a consecutive-failure circuit breaker.

Responsibilities:
- Build the shared retry policy for transient failures of Meta and LLM calls.
- Stop calling a failing dependency for a cool-off period once it keeps failing.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from batu.errors import CircuitOpenError
from batu.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

MAX_BACKOFF_SECONDS = 8.0


def _always(_: BaseException) -> bool:
    return True


def _log_retry(name: str) -> Callable[[RetryCallState], None]:
    def _before_sleep(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        log.warning(
            "retrying", target=name, attempt=state.attempt_number, delay=round(delay, 2), error=str(error)
        )

    return _before_sleep


def retrying(
    *,
    attempts: int,
    base_delay: float = 0.5,
    is_retryable: Callable[[BaseException], bool] = _always,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    name: str = "call",
) -> AsyncRetrying:
    """
    Up to `attempts` calls with exponential backoff (base_delay, 2x, 4x ... capped)
    plus up to half a base delay of jitter. Non-retryable errors propagate at once;
    the last retryable error is re-raised as-is once attempts run out.
    """

    return AsyncRetrying(
        sleep=sleep,
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=base_delay, max=MAX_BACKOFF_SECONDS, jitter=base_delay / 2),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry(name),
        reraise=True,
    )


class CircuitBreaker:
    """
    Opens after `threshold` consecutive failures and rejects calls for
    `reset_seconds`; the first call after that is let through as a trial.
    """

    def __init__(
        self,
        name: str,
        *,
        threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self._threshold = threshold
        self._reset_seconds = reset_seconds
        self._clock = clock
        self._failures = 0
        self._open_until: float | None = None

    @property
    def is_open(self) -> bool:
        return self._open_until is not None and self._clock() < self._open_until

    def record_success(self) -> None:
        self._failures = 0
        self._open_until = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures >= self._threshold:
            self._open_until = self._clock() + self._reset_seconds
            log.warning("circuit_open", breaker=self.name, failures=self._failures)

    async def call(self, fn: Callable[[], Awaitable[T]]) -> T:
        if self.is_open:
            raise CircuitOpenError(f"Circuit open for {self.name}")
        try:
            result = await fn()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result


_breakers: dict[str, CircuitBreaker] = {}


def get_breaker(name: str, *, threshold: int, reset_seconds: float) -> CircuitBreaker:
    # Process-wide registry so every request shares the same failure count.
    breaker = _breakers.get(name)
    if breaker is None:
        breaker = CircuitBreaker(name, threshold=threshold, reset_seconds=reset_seconds)
        _breakers[name] = breaker
    return breaker


def reset_breakers() -> None:
    _breakers.clear()
