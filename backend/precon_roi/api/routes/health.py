"""
Health check endpoints.
"""
from datetime import datetime, timezone

from fastapi import APIRouter

from precon_roi import __version__
from precon_roi.api.deps import PriceService

router = APIRouter()


@router.get("/health")
async def health_check(service: PriceService):
    """
    Health check endpoint.

    Reports whether the static snapshot and the price cache backend are
    usable. Neither is required: the API degrades to live pricing.
    """
    snapshot_ok = await service.snapshot.load() is not None

    return {
        "status": "healthy" if snapshot_ok else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "services": {
            "api": "ok",
            "snapshot": "ok" if snapshot_ok else "unavailable",
            "price_cache": "ok" if service.cache.available else "disabled",
            "condition_pricing": (
                "ok" if service.condition_pricer and service.condition_pricer.is_available()
                else "disabled"
            ),
        },
    }


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Precon ROI API",
        "version": __version__,
        "docs": "/docs",
    }
