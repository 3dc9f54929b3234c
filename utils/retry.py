"""Shared retry policy for external provider calls."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from .exceptions import TransientProviderError


logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    TransientProviderError,
    httpx.TransportError,
)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff with random jitter.

    The delay before retry ``n`` is ``base_delay * multiplier ** (n - 1)`` capped at
    ``max_delay``, plus a uniform jitter in ``[0, jitter]``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    jitter: float = 0.5
    max_delay: float = 30.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RetryPolicy":
        return cls(
            max_attempts=int(settings.max_attempts),
            base_delay=float(settings.base_delay_seconds),
            multiplier=float(settings.backoff_multiplier),
            jitter=float(settings.jitter_seconds),
            max_delay=float(settings.max_delay_seconds),
        )

    def delay_for(self, attempt: int) -> float:
        """Deterministic part of the delay after ``attempt`` failures."""
        return min(self.base_delay * (self.multiplier ** max(0, attempt - 1)), self.max_delay)

    def _retrying(
        self,
        label: str,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> AsyncRetrying:
        def _before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            wait = state.next_action.sleep if state.next_action else 0.0
            logger.warning(
                "[Retry] %s attempt %d/%d failed: %s; retrying in %.2fs",
                label,
                state.attempt_number,
                self.max_attempts,
                error,
                wait,
            )

        wait = wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier, max=self.max_delay)
        if self.jitter > 0:
            wait = wait + wait_random(0, self.jitter)

        return AsyncRetrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait,
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=_before_sleep,
            sleep=sleep or asyncio.sleep,
            reraise=True,
        )

    async def call(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        label: str = "provider call",
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> T:
        """Run ``fn`` until it succeeds, a non-retryable error is raised, or attempts run out."""
        async for attempt in self._retrying(label, sleep=sleep):
            with attempt:
                return await fn()
        raise RuntimeError("unreachable: retry loop exited without result")


NO_RETRY = RetryPolicy(max_attempts=1, base_delay=0.0, jitter=0.0)
