"""Token-bucket rate limiting for async SQLAlchemy database handles."""

from sqlthrottle.config import DatabaseConfig, LimiterConfig, ThrottleConfig
from sqlthrottle.db import Connection, Database, PreparedStatement
from sqlthrottle.exceptions import (
    AdmissionDeniedError,
    AdmissionTimeoutError,
    ConfigurationError,
    DatabaseClosedError,
    SQLThrottleError,
)
from sqlthrottle.limiter import INF, TokenBucket
from sqlthrottle.ratelimited import RateLimitedDB, open_rate_limited, wrap

__version__ = "0.1.0"

__all__ = [
    "AdmissionDeniedError",
    "AdmissionTimeoutError",
    "ConfigurationError",
    "Connection",
    "Database",
    "DatabaseClosedError",
    "DatabaseConfig",
    "INF",
    "LimiterConfig",
    "PreparedStatement",
    "RateLimitedDB",
    "SQLThrottleError",
    "ThrottleConfig",
    "TokenBucket",
    "open_rate_limited",
    "wrap",
]
