from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar, Union

import aiohttp

from redditbg.utils.logging import get_logger

T = TypeVar("T")

log = get_logger("redditbg.http.backoff")

# Errors a network call may end with; every one of them counts as a failed attempt.
RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ValueError,
)


@dataclass(frozen=True)
class RetryAfter:
    """Wait this long, then try again."""

    duration_s: float


@dataclass(frozen=True)
class GiveUp:
    """Stop retrying and hand the last error back to the caller."""


Decision = Union[RetryAfter, GiveUp]


@dataclass(frozen=True)
class BackoffPolicy:
    """Configuration for capped exponential backoff with jitter."""

    steps: int = 10
    min_delay_s: float = 1.0
    max_delay_s: float = 15.0
    jitter: float = 0.3

    def schedule(self, rng: Optional[random.Random] = None) -> "BackoffSchedule":
        """Pre-compute the jittered delays for one retried operation."""
        rng = rng or random.Random()
        if self.steps <= 0:
            return BackoffSchedule(())

        if self.steps == 1:
            factor = 1.0
        else:
            factor = (self.max_delay_s / self.min_delay_s) ** (1.0 / (self.steps - 1))

        durations = []
        for i in range(self.steps):
            base = min(self.min_delay_s * (factor**i), self.max_delay_s)
            durations.append(max(0.0, base * (1.0 + rng.uniform(-self.jitter, self.jitter))))
        return BackoffSchedule(tuple(durations))


@dataclass(frozen=True)
class BackoffSchedule:
    """Fixed sequence of retry delays; attempts past the end give up."""

    durations: Tuple[float, ...]

    def next(self, attempt_index: int) -> Decision:
        if 0 <= attempt_index < len(self.durations):
            return RetryAfter(self.durations[attempt_index])
        return GiveUp()


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: BackoffPolicy,
    *,
    description: str = "request",
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> T:
    """
    Run `operation` until it succeeds or the policy gives up.

    The decision only depends on how many attempts failed, not on what the
    error was. Once the schedule is exhausted the last error is re-raised as is.
    """
    schedule = policy.schedule(rng)
    attempt = 0
    while True:
        try:
            return await operation()
        except retry_on as e:
            decision = schedule.next(attempt)
            if isinstance(decision, GiveUp):
                log.warning("Giving up on %s after %s retries (%s)", description, attempt, type(e).__name__)
                raise
            log.debug(
                "Retrying %s in %.2fs (exception=%s, attempt=%s)",
                description,
                decision.duration_s,
                type(e).__name__,
                attempt + 1,
            )
            attempt += 1
            await sleep(decision.duration_s)


class RateLimiter:
    """Simple fixed-delay rate limiter."""

    def __init__(self, delay_ms: int, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.delay_s = max(0, delay_ms) / 1000.0
        self._sleep = sleep

    async def wait(self) -> None:
        """Sleep for the configured delay."""
        if self.delay_s > 0:
            await self._sleep(self.delay_s)
