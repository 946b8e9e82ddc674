"""
Price cache maintenance.
"""
from fastapi import APIRouter

from precon_roi.api.deps import PriceService

router = APIRouter()


@router.delete("")
async def clear_cache(service: PriceService):
    """Drop every cached deck summary and live card price."""
    removed = service.clear_cache()
    return {"removed": removed}
