"""
Deck catalog and deck pricing endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Query

from precon_roi.api.deps import PriceService
from precon_roi.schemas.prices import DeckPriceResponse
from precon_roi.services.pricing.cache import is_timestamp_stale

router = APIRouter()


def _deck_dict(deck, cached=None, has_decklist: bool = False) -> dict:
    data = deck.model_dump(by_alias=True)
    data["hasDecklist"] = has_decklist
    if cached is not None:
        data["cachedValue"] = cached.total_value
        data["cachedAt"] = cached.fetched_at
        data["isStale"] = is_timestamp_stale(cached.fetched_at)
    return data


@router.get("")
async def list_decks(
    service: PriceService,
    year: Optional[int] = Query(None, description="Filter by release year"),
    set_code: Optional[str] = Query(None, alias="set", description="Filter by set code"),
):
    """
    List precon decks, newest first.

    Decks priced earlier in this deployment carry their cached value.
    """
    decks = service.catalog.all(year=year, set_code=set_code)
    return {
        "decks": [
            _deck_dict(
                deck,
                cached=service.cached_summary(deck.id),
                has_decklist=service.decklists.has_deck_list(deck.id),
            )
            for deck in sorted(decks, key=lambda d: d.year, reverse=True)
        ],
        "years": service.catalog.years(),
        "sets": service.catalog.sets(),
    }


@router.get("/{deck_id}")
async def get_deck(deck_id: str, service: PriceService):
    """Deck metadata and decklist."""
    deck = service.get_deck(deck_id)
    data = _deck_dict(
        deck,
        cached=service.cached_summary(deck_id),
        has_decklist=service.decklists.has_deck_list(deck_id),
    )
    data["cards"] = [
        entry.model_dump(by_alias=True) for entry in service.decklists.get_deck_cards(deck_id)
    ]
    return data


@router.get("/{deck_id}/prices", response_model=DeckPriceResponse, response_model_by_alias=True)
async def get_deck_prices(deck_id: str, service: PriceService):
    """
    Priced deck with ROI verdict.

    Served from the static snapshot when it covers the deck, otherwise
    priced live from Scryfall.
    """
    result = await service.get_deck_prices(deck_id)
    return service.summarize(result)
