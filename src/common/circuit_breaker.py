"""
Circuit breaker for sources that keep failing.

After `threshold` consecutive failed stage runs a source is disabled so the
scheduler stops spending time on it. It re-opens for a trial run once
`cooldown_seconds` have passed.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class SourceCircuitBreaker:
    """Track consecutive failures per source.

    Usage:
        breaker = SourceCircuitBreaker(threshold=3)

        if breaker.is_disabled("github"):
            return
        try:
            await run_collector()
            breaker.record_success("github")
        except Exception:
            breaker.record_error("github")
    """

    def __init__(
        self,
        threshold: int = 3,
        cooldown_seconds: float = 6 * 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._threshold = threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._error_counts: Dict[str, int] = {}
        self._opened_at: Dict[str, float] = {}

    def record_error(self, source: str) -> None:
        """Record an error for a source. May trigger circuit open."""
        self._error_counts[source] = self._error_counts.get(source, 0) + 1
        if self._error_counts[source] >= self._threshold and source not in self._opened_at:
            self._opened_at[source] = self._clock()
            logger.warning(
                f"CIRCUIT_OPEN: {source} disabled after "
                f"{self._threshold} consecutive errors"
            )

    def record_success(self, source: str) -> None:
        """Record a success for a source. Resets error count."""
        self._error_counts[source] = 0
        self._opened_at.pop(source, None)

    def is_disabled(self, source: str) -> bool:
        opened: Optional[float] = self._opened_at.get(source)
        if opened is None:
            return False
        if self._clock() - opened >= self._cooldown:
            # Half-open: allow one trial run, a failure re-opens immediately
            logger.info(f"CIRCUIT_HALF_OPEN: retrying {source}")
            del self._opened_at[source]
            self._error_counts[source] = self._threshold - 1
            return False
        return True

    def reset(self) -> None:
        if self._opened_at:
            logger.info(
                f"CIRCUIT_RESET: Re-enabling {len(self._opened_at)} sources: "
                f"{', '.join(self._opened_at)}"
            )
        self._error_counts.clear()
        self._opened_at.clear()

    def get_stats(self) -> Dict[str, Any]:
        """Get current circuit breaker stats for monitoring."""
        return {
            "disabled_sources": list(self._opened_at),
            "error_counts": dict(self._error_counts),
            "threshold": self._threshold,
        }
