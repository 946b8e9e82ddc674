"""
Upstream card data clients.
"""
from precon_roi.services.ingestion.base import FetchConfig, RateLimitedFetcher
from precon_roi.services.ingestion.scryfall import BatchCardResult, ScryfallClient

__all__ = [
    "FetchConfig",
    "RateLimitedFetcher",
    "BatchCardResult",
    "ScryfallClient",
]
