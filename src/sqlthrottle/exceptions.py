"""sqlthrottle exceptions."""


class SQLThrottleError(Exception):
    """Base exception for sqlthrottle."""


class ConfigurationError(SQLThrottleError, ValueError):
    """Raised when a limiter is configured with an unusable rate or burst."""


class AdmissionDeniedError(SQLThrottleError):
    """Raised when an operation could not obtain a token from the limiter."""

    reason = "denied"

    def __init__(self, message: str, *, wait: float = 0.0, timeout: float | None = None):
        super().__init__(message)
        self.wait = wait
        self.timeout = timeout


class AdmissionTimeoutError(AdmissionDeniedError, TimeoutError):
    """Raised when the caller's deadline expires before a token is available."""

    reason = "timeout"


class DatabaseClosedError(SQLThrottleError):
    """Raised when operating on a closed database or prepared statement."""
