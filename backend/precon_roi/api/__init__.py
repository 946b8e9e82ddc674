"""
API module for FastAPI routes.
"""
from fastapi import APIRouter

from precon_roi.api.routes import cache, cards, decks, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(decks.router, prefix="/decks", tags=["Decks"])
api_router.include_router(cards.router, prefix="/cards", tags=["Cards"])
api_router.include_router(cache.router, prefix="/cache", tags=["Cache"])

__all__ = ["api_router"]
