"""
Pydantic schemas for the data files and API responses.
"""
from precon_roi.schemas.decks import DeckEntry, PreconDeck
from precon_roi.schemas.prices import (
    CardValueRequest,
    CardValueResponse,
    CollectionRequest,
    CollectionResponse,
    ConditionPricesResponse,
    DecklistImportRequest,
    DecklistImportResponse,
    DeckPriceResponse,
    LowestListingsData,
    PricedCardResponse,
    RoiResponse,
    StaticPricesData,
)

__all__ = [
    "DeckEntry",
    "PreconDeck",
    "CardValueRequest",
    "CardValueResponse",
    "CollectionRequest",
    "CollectionResponse",
    "ConditionPricesResponse",
    "DecklistImportRequest",
    "DecklistImportResponse",
    "DeckPriceResponse",
    "LowestListingsData",
    "PricedCardResponse",
    "RoiResponse",
    "StaticPricesData",
]
