"""
Retry support for the Retry step.

A BackoffStrategy turns the number of the attempt that just failed into
a sleep in seconds. with_retry() keeps calling an async operation until
it succeeds or the RetryPolicy says stop; attempts never overlap.

    policy = RetryPolicy(max_attempts=3, backoff=ExponentialBackoff(base=0.5))
    outcome = await with_retry(fetch, policy, operation_name="fetch")
    if not outcome.success:
        raise outcome.final_error
"""

from __future__ import annotations

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apiharvest.catalog.pipeline import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Backoff
# =============================================================================


class BackoffStrategy(ABC):
    """Seconds to wait after a failed attempt (attempts count from 1)."""

    @abstractmethod
    def get_delay(self, attempt: int) -> float: ...


@dataclass
class NoBackoff(BackoffStrategy):
    def get_delay(self, attempt: int) -> float:
        return 0.0


@dataclass
class ConstantBackoff(BackoffStrategy):
    """Same pause after every failure."""

    delay: float = 1.0

    def get_delay(self, attempt: int) -> float:
        return self.delay


@dataclass
class LinearBackoff(BackoffStrategy):
    """Pause grows by `increment` per failure, starting at `initial`."""

    initial: float = 1.0
    increment: float = 0.5
    max_delay: float = 60.0

    def get_delay(self, attempt: int) -> float:
        steps = max(attempt, 1) - 1
        return min(self.initial + steps * self.increment, self.max_delay)


@dataclass
class ExponentialBackoff(BackoffStrategy):
    """
    Pause multiplies by `multiplier` per failure, starting at `base`.

    With jitter enabled the capped value is spread uniformly over
    +/- jitter_factor of itself and never drops below zero.
    """

    base: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    jitter_factor: float = 0.25

    def get_delay(self, attempt: int) -> float:
        exponent = max(attempt, 1) - 1
        capped = min(self.base * self.multiplier**exponent, self.max_delay)
        if not self.jitter:
            return capped
        spread = capped * self.jitter_factor
        return max(0.0, capped + random.uniform(-spread, spread))


_BACKOFF_KINDS: dict[str, Callable[[RetryConfig], BackoffStrategy]] = {
    "none": lambda c: NoBackoff(),
    "constant": lambda c: ConstantBackoff(delay=c.delay),
    "linear": lambda c: LinearBackoff(
        initial=c.delay, increment=c.increment, max_delay=c.max_delay
    ),
    "exponential": lambda c: ExponentialBackoff(
        base=c.delay, multiplier=c.multiplier, max_delay=c.max_delay, jitter=c.jitter
    ),
}


def backoff_from_config(config: RetryConfig) -> BackoffStrategy:
    """Build the strategy a Retry step config asks for."""
    factory = _BACKOFF_KINDS.get(config.backoff, _BACKOFF_KINDS["exponential"])
    return factory(config)


# =============================================================================
# Policy
# =============================================================================


@dataclass
class RetryPolicy:
    """
    Attempt budget, retryable error types and the pause between attempts.

    give_up_on beats retry_on: an error matching both is final.
    """

    max_attempts: int = 1
    backoff: BackoffStrategy = field(default_factory=NoBackoff)
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    give_up_on: tuple[type[BaseException], ...] = ()

    def should_retry(self, attempt: int, error: BaseException) -> bool:
        budget_left = attempt < self.max_attempts
        fatal = bool(self.give_up_on) and isinstance(error, self.give_up_on)
        return budget_left and not fatal and isinstance(error, self.retry_on)

    def get_delay(self, attempt: int) -> float:
        return self.backoff.get_delay(attempt)


# =============================================================================
# Driver
# =============================================================================


@dataclass
class RetryResult:
    """What with_retry() observed: the value or every error it swallowed."""

    success: bool
    result: Any = None
    attempts: int = 0
    total_delay: float = 0.0
    errors: list[Exception] = field(default_factory=list)

    @property
    def final_error(self) -> Exception | None:
        if not self.errors:
            return None
        return self.errors[-1]


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str = "operation",
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> RetryResult:
    """
    Await `operation` until it returns or `policy` gives up.

    `on_retry(attempt, error, delay)` fires before each pause. Errors are
    collected on the returned RetryResult instead of being raised.
    """
    outcome = RetryResult(success=False)

    while True:
        outcome.attempts += 1
        attempt = outcome.attempts
        try:
            value = await operation()
        except Exception as exc:
            outcome.errors.append(exc)
            if not policy.should_retry(attempt, exc):
                logger.error(f"{operation_name}: giving up after attempt {attempt}: {exc}")
                return outcome

            pause = policy.get_delay(attempt)
            outcome.total_delay += pause
            logger.warning(
                f"{operation_name}: attempt {attempt} of {policy.max_attempts} raised "
                f"{type(exc).__name__} ({exc}); next try in {pause:.2f}s"
            )
            if on_retry is not None:
                on_retry(attempt, exc, pause)
            await asyncio.sleep(pause)
        else:
            outcome.success = True
            outcome.result = value
            return outcome
