"""
Common utilities and shared modules.
"""

from .http_client import (
    create_scraper_client,
    USER_AGENT_BOT,
    USER_AGENT_BROWSER,
)
from .errors import (
    PipelineError,
    DataSourceError,
    DataQualityError,
    ThrottledError,
    StageTimeoutError,
    is_transient,
    retry_async,
    with_timeout,
    fetch_with_timeout,
)
from .rate_limiter import (
    Acquired,
    AdaptiveDelay,
    BucketConfig,
    RateLimiterRegistry,
    Throttled,
)
from .circuit_breaker import SourceCircuitBreaker

__all__ = [
    # HTTP client utilities
    "create_scraper_client",
    "USER_AGENT_BOT",
    "USER_AGENT_BROWSER",
    # Errors
    "PipelineError",
    "DataSourceError",
    "DataQualityError",
    "ThrottledError",
    "StageTimeoutError",
    "is_transient",
    "retry_async",
    "with_timeout",
    "fetch_with_timeout",
    # Throttling
    "Acquired",
    "AdaptiveDelay",
    "BucketConfig",
    "RateLimiterRegistry",
    "Throttled",
    "SourceCircuitBreaker",
]
