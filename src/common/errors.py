"""
Error taxonomy and retry/timeout helpers shared by collectors, validator and stages.

Transient source errors are retried with exponential backoff and then skipped.
Data-quality errors discard a single item. Stage-fatal errors surface to the
JobRun wrapper which records them as failed runs.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PipelineError(Exception):
    """Base class for pipeline errors."""


class DataSourceError(PipelineError):
    """An external source failed (network, 5xx, malformed response)."""

    def __init__(self, source: str, message: str, status_code: Optional[int] = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"{source}: {message}" + (f" (HTTP {status_code})" if status_code else ""))


class DataQualityError(PipelineError):
    """A single item is unusable (missing field, invalid name)."""

    def __init__(self, field: str, value: Any, message: str = "invalid value"):
        self.field = field
        self.value = value
        super().__init__(f"{field}={value!r}: {message}")


class ThrottledError(PipelineError):
    """A rate-limited resource has no capacity left right now."""

    def __init__(self, resource: str, retry_after: float):
        self.resource = resource
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {resource}, retry after {retry_after:.1f}s")


class StageTimeoutError(PipelineError):
    """A stage exceeded its overall timeout."""


# Exceptions that warrant a retry at the call site
TRANSIENT_ERRORS = (
    asyncio.TimeoutError,
    TimeoutError,
    ConnectionError,
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
)


def is_transient(exc: BaseException) -> bool:
    """Return True for errors worth retrying (timeouts, connection drops, 5xx, 429)."""
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return status >= 500 or status == 429
    if isinstance(exc, DataSourceError):
        return exc.status_code is None or exc.status_code >= 500 or exc.status_code == 429
    return False


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 1.0,
    name: str = "operation",
) -> T:
    """
    Await fn() up to `attempts` times, backing off base_delay * 2 ** attempt.

    Non-transient errors are raised immediately. The last transient error is
    re-raised once attempts are exhausted.
    """
    last_error: Optional[BaseException] = None
    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if not is_transient(e):
                raise
            last_error = e
            if attempt < attempts - 1:
                wait = base_delay * (2 ** attempt)
                logger.warning(
                    f"{name} failed (attempt {attempt + 1}/{attempts}): "
                    f"{type(e).__name__}, retrying in {wait:.1f}s"
                )
                await asyncio.sleep(wait)
    assert last_error is not None
    raise last_error


async def with_timeout(coro: Awaitable[T], timeout: float, name: str) -> Optional[T]:
    """
    Await a coroutine with a timeout.

    Returns None on timeout so that one hanging call cannot stall a stage.
    Other exceptions propagate.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} timed out after {timeout}s")
        return None


async def fetch_with_timeout(coro: Awaitable[T], name: str, timeout: float = 30.0) -> Optional[T]:
    """
    Await a coroutine with timeout and swallow failures.

    Returns None on timeout or error; the error is logged.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{name} timed out after {timeout}s")
        return None
    except Exception as e:
        logger.error(f"{name} failed: {type(e).__name__}: {e}")
        return None
