"""
Error taxonomy for the pricing subsystem.

Transient upstream failures are retried where they happen and only reach
callers once the retry budget is spent. Cache and storage errors never
leave the cache layer.
"""


class PriceServiceError(Exception):
    """Base exception for pricing errors."""

    retryable: bool = True

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class UpstreamError(PriceServiceError):
    """Upstream returned a non-2xx response."""

    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamUnavailableError(UpstreamError):
    """Upstream kept failing (429, 5xx or network) after all retries."""
    pass


class UpstreamTimeoutError(UpstreamError, TimeoutError):
    """A single call exceeded the wall-clock timeout."""
    pass


class NotFoundError(PriceServiceError):
    """A single-item lookup returned 404."""

    retryable = False


class RateLimitExceededError(PriceServiceError):
    """Local request budget exhausted after the bounded number of waits."""
    pass


class QueueFullError(PriceServiceError):
    """Too many distinct requests in flight."""
    pass


class CacheCorruptError(PriceServiceError):
    """A persisted cache record could not be parsed."""

    retryable = False


class StorageUnavailableError(PriceServiceError):
    """The key-value backend rejected a read or write (quota, I/O, connection)."""

    retryable = False
