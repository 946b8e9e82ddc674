"""
Card lookup endpoints.
"""
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from precon_roi.api.deps import PriceService
from precon_roi.schemas.prices import (
    CardValueRequest,
    CardValueResponse,
    CollectionRequest,
    CollectionResponse,
    ConditionPricesResponse,
    DecklistImportRequest,
    DecklistImportResponse,
)
from precon_roi.services.pricing.selection import get_card_image
from precon_roi.services.pricing.valuation import card_value, top_value_cards, total_value

router = APIRouter()


@router.get("/search")
async def search_cards(
    service: PriceService,
    q: str = Query(..., max_length=200, description="Scryfall search query"),
    limit: int = Query(20, ge=1, le=175),
):
    """Search cards by name or Scryfall query syntax."""
    cards = await service.search_cards(q)
    return {
        "query": q,
        "total": len(cards),
        "cards": [
            {
                "id": card.get("id"),
                "name": card.get("name"),
                "set": card.get("set"),
                "prices": card.get("prices") or {},
                "image": get_card_image(card),
            }
            for card in cards[:limit]
        ],
    }


@router.get("/price")
async def get_card_price(service: PriceService, name: str = Query(..., min_length=1, max_length=200)):
    """Current price of a card's default printing."""
    price = await service.get_card_price(name)
    if price is None:
        raise HTTPException(status_code=404, detail=f"Card not found: {name}")
    return {"name": name, "price": price}


@router.post("/collection", response_model=CollectionResponse)
async def get_collection(request: CollectionRequest, service: PriceService):
    """Resolve a list of card names in batches."""
    result = await service.get_cards_by_names(request.names)
    return CollectionResponse(found=result.found, notFound=result.not_found)


@router.post("/value", response_model=CardValueResponse)
async def get_cards_value(request: CardValueRequest):
    """Total value and top cards of an ad-hoc card list."""
    top = top_value_cards(request.cards)
    return CardValueResponse(
        totalValue=round(total_value(request.cards), 2),
        topCards=[{**card, "value": card_value(card)} for card in top],
    )


@router.get("/conditions", response_model=ConditionPricesResponse)
async def get_condition_prices(
    service: PriceService,
    name: str = Query(..., min_length=1, max_length=200),
    set_code: Optional[str] = Query(None, alias="set"),
):
    """Per-condition prices (NM/LP/MP/HP/DMG) from JustTCG."""
    if service.condition_pricer is None or not service.condition_pricer.is_available():
        raise HTTPException(status_code=503, detail="Condition pricing is not configured")

    prices = await service.get_condition_prices(name, set_code)
    if prices is None:
        raise HTTPException(status_code=404, detail=f"No condition prices for: {name}")
    return prices


@router.post("/import", response_model=DecklistImportResponse)
async def import_decklist(request: DecklistImportRequest, service: PriceService):
    """
    Import a pasted decklist ("1 Sol Ring", "2x Forest", "Arcane Signet").

    Returns the resolved cards with prices; unknown names are reported,
    not rejected.
    """
    result = await service.import_decklist(request.text)
    if result.errors:
        raise HTTPException(status_code=422, detail=result.errors[0])
    return DecklistImportResponse(
        cards=result.cards,
        notFound=result.not_found,
        warnings=result.warnings,
        totalValue=result.total_value,
    )


@router.get("/sets/{set_code}")
async def get_set_prices(set_code: str, service: PriceService):
    """Snapshot prices of the precon cards printed in a set."""
    prices = await service.get_set_prices(set_code)
    if prices is None:
        raise HTTPException(status_code=404, detail=f"No snapshot prices for set: {set_code}")
    return {
        "set": set_code.lower(),
        "cards": [card.model_dump() for card in prices],
    }
