"""
Per-resource rate limiting for outbound calls.

Token buckets refill continuously against time.monotonic(). Each resource key
(e.g. "github", "web_scraping") owns an independent table of buckets, one per
caller identifier, so exhausting one resource never affects another.

acquire() never raises on exhaustion: it returns a Throttled result carrying a
retry-after duration so call sites handle "not now" as ordinary control flow.

Usage:
    limiter = RateLimiterRegistry()

    outcome = limiter.acquire("github")
    if isinstance(outcome, Throttled):
        return []  # try next run
    response = await client.get(url)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Union

from .errors import ThrottledError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BucketConfig:
    """Capacity of `points` per `duration` seconds; `block_duration` after exhaustion."""
    points: int
    duration: float
    block_duration: float = 0.0


# Default resource table. Block durations keep a resource cold after it is
# exhausted so aggressive callers back off harder than the refill rate alone.
DEFAULT_BUCKETS: Dict[str, BucketConfig] = {
    "api": BucketConfig(points=100, duration=60, block_duration=60),
    "data_collection": BucketConfig(points=20, duration=60, block_duration=60),
    "web_scraping": BucketConfig(points=10, duration=60, block_duration=300),
    "ai_processing": BucketConfig(points=50, duration=60, block_duration=60),
    "product_hunt": BucketConfig(points=100, duration=3600, block_duration=60),
    "github": BucketConfig(points=5000, duration=3600, block_duration=60),
    "hacker_news": BucketConfig(points=100, duration=60, block_duration=60),
    "llm": BucketConfig(points=3000, duration=60, block_duration=60),
}


@dataclass(frozen=True)
class Acquired:
    """A unit was consumed; `remaining` whole units are left."""
    resource: str
    remaining: int


@dataclass(frozen=True)
class Throttled:
    """No capacity; try again after `retry_after` seconds."""
    resource: str
    retry_after: float

    def raise_for(self) -> None:
        raise ThrottledError(self.resource, self.retry_after)


AcquireResult = Union[Acquired, Throttled]


class TokenBucket:
    """Continuously refilling token bucket.

    Tokens are capped at capacity and only ever grow with elapsed monotonic
    time, so a bucket can under-count but never over-grant.
    """

    def __init__(self, config: BucketConfig, clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self._tokens = float(config.points)
        self._last_refill = clock()
        self._blocked_until = 0.0

    @property
    def rate(self) -> float:
        """Tokens added per second."""
        return self.config.points / self.config.duration

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.config.points), self._tokens + elapsed * self.rate)
        self._last_refill = now

    def try_consume(self, points: int = 1) -> float:
        """Consume points if available. Returns 0 on success, else seconds to wait."""
        now = self._clock()
        if now < self._blocked_until:
            return self._blocked_until - now

        self._refill(now)
        if self._tokens >= points:
            self._tokens -= points
            return 0.0

        wait = (points - self._tokens) / self.rate
        if self.config.block_duration > 0:
            self._blocked_until = now + max(wait, self.config.block_duration)
            wait = self._blocked_until - now
        return wait

    def remaining(self) -> int:
        now = self._clock()
        if now < self._blocked_until:
            return 0
        self._refill(now)
        return int(self._tokens)

    def penalize(self, points: int) -> None:
        self._refill(self._clock())
        self._tokens = max(0.0, self._tokens - points)

    def reward(self, points: int) -> None:
        self._refill(self._clock())
        self._tokens = min(float(self.config.points), self._tokens + points)


class RateLimiterRegistry:
    """
    Registry of token buckets keyed by (resource, identifier).

    Shared, in-memory, per-process state. Multiple processes each keep their
    own counts.
    """

    def __init__(
        self,
        buckets: Optional[Dict[str, BucketConfig]] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._configs: Dict[str, BucketConfig] = dict(DEFAULT_BUCKETS if buckets is None else buckets)
        self._buckets: Dict[tuple, TokenBucket] = {}
        self._clock = clock
        self._sleep = sleep

    def configure(self, resource: str, config: BucketConfig) -> None:
        """Register or replace a resource; existing buckets for it are dropped."""
        self._configs[resource] = config
        for key in [k for k in self._buckets if k[0] == resource]:
            del self._buckets[key]

    def _bucket(self, resource: str, identifier: str) -> TokenBucket:
        if resource not in self._configs:
            raise KeyError(f"Rate limiter '{resource}' not found")
        key = (resource, identifier)
        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = TokenBucket(self._configs[resource], clock=self._clock)
            self._buckets[key] = bucket
        return bucket

    def acquire(self, resource: str, identifier: str = "default", points: int = 1) -> AcquireResult:
        """Consume from the named bucket, or report how long to wait."""
        bucket = self._bucket(resource, identifier)
        wait = bucket.try_consume(points)
        if wait > 0:
            logger.debug(f"Rate limit hit for {resource}/{identifier}, retry in {wait:.1f}s")
            return Throttled(resource=resource, retry_after=wait)
        return Acquired(resource=resource, remaining=bucket.remaining())

    async def wait_for_availability(
        self,
        resource: str,
        identifier: str = "default",
        max_attempts: int = 5,
        max_wait: float = 30.0,
    ) -> AcquireResult:
        """
        Block (bounded) until a unit is available.

        Sleeps min(retry_after, max_wait) between attempts and returns the
        final Throttled result if every attempt was refused.
        """
        outcome: AcquireResult = self.acquire(resource, identifier)
        attempts = 1
        while isinstance(outcome, Throttled) and attempts < max_attempts:
            await self._sleep(min(outcome.retry_after, max_wait))
            outcome = self.acquire(resource, identifier)
            attempts += 1
        if isinstance(outcome, Throttled):
            logger.warning(f"Gave up waiting for {resource}/{identifier} after {attempts} attempts")
        return outcome

    def penalty(self, resource: str, identifier: str = "default", points: int = 1) -> None:
        """Remove extra units, e.g. after the remote side returned 429."""
        if resource in self._configs:
            self._bucket(resource, identifier).penalize(points)

    def reward(self, resource: str, identifier: str = "default", points: int = 1) -> None:
        if resource in self._configs:
            self._bucket(resource, identifier).reward(points)

    def remaining(self, resource: str, identifier: str = "default") -> int:
        if resource not in self._configs:
            return 0
        return self._bucket(resource, identifier).remaining()

    def stats(self) -> Dict[str, Dict[str, float]]:
        """Configured capacity per resource, for monitoring."""
        return {
            name: {
                "points": cfg.points,
                "duration": cfg.duration,
                "block_duration": cfg.block_duration,
            }
            for name, cfg in self._configs.items()
        }

    def reset(self) -> None:
        """Drop all bucket state (configs are kept)."""
        self._buckets.clear()


class AdaptiveDelay:
    """
    Self-tuning inter-request delay.

    Every `window` consecutive successes shrink the delay by 10%; each error
    grows it by 20%. The delay stays within [min_delay, max_delay].
    """

    def __init__(
        self,
        initial: float = 1.0,
        min_delay: float = 0.5,
        max_delay: float = 30.0,
        window: int = 5,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.delay = initial
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.window = window
        self._successes = 0
        self._sleep = sleep

    def record_success(self) -> None:
        self._successes += 1
        if self._successes >= self.window:
            self.delay = max(self.min_delay, self.delay * 0.9)
            self._successes = 0

    def record_error(self) -> None:
        self._successes = 0
        self.delay = min(self.max_delay, self.delay * 1.2)

    async def wait(self) -> None:
        await self._sleep(self.delay)
