"""
API dependencies.
"""
from typing import Annotated

from fastapi import Depends, Request

from precon_roi.services.pricing.service import DeckPriceService


def get_price_service(request: Request) -> DeckPriceService:
    """The service built at startup by the application lifespan."""
    return request.app.state.price_service


PriceService = Annotated[DeckPriceService, Depends(get_price_service)]
