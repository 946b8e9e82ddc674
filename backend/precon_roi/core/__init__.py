"""
Core module containing configuration and shared utilities.
"""
from precon_roi.core.config import settings
from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.exceptions import (
    PriceServiceError,
    UpstreamError,
    UpstreamUnavailableError,
    UpstreamTimeoutError,
    NotFoundError,
    RateLimitExceededError,
    QueueFullError,
    CacheCorruptError,
    StorageUnavailableError,
)

__all__ = [
    "settings",
    "RequestDeduplicator",
    "PriceServiceError",
    "UpstreamError",
    "UpstreamUnavailableError",
    "UpstreamTimeoutError",
    "NotFoundError",
    "RateLimitExceededError",
    "QueueFullError",
    "CacheCorruptError",
    "StorageUnavailableError",
]
