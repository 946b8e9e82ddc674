"""
Price data schemas.

The static file models mirror the JSON written by the batch refresh and
read by the snapshot loaders; their aliases are the on-disk keys.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _FileModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# -----------------------------------------------------------------------------
# prices.json
# -----------------------------------------------------------------------------

class StaticCardEntry(_FileModel):
    """A card line inside a deck of the static snapshot."""
    name: str
    quantity: int = Field(ge=1)
    usd: Optional[str] = None
    is_commander: Optional[bool] = Field(default=None, alias="isCommander")
    tcgplayer_id: Optional[int] = Field(default=None, alias="tcgplayerId")
    cardmarket_id: Optional[int] = Field(default=None, alias="cardmarketId")
    usd_foil: Optional[str] = None
    is_foil_only: Optional[bool] = Field(default=None, alias="isFoilOnly")


class StaticDeckData(_FileModel):
    total_value: float = Field(alias="totalValue")
    card_count: int = Field(alias="cardCount")
    cards: list[StaticCardEntry] = Field(default_factory=list)


class StaticCardData(_FileModel):
    """Ungrouped per-set price entry."""
    name: str
    collector_number: str
    usd: Optional[str] = None


class StaticPricesData(_FileModel):
    updated_at: str = Field(alias="updatedAt")
    decks: dict[str, StaticDeckData] = Field(default_factory=dict)
    sets: Optional[dict[str, list[StaticCardData]]] = None


# -----------------------------------------------------------------------------
# lowest-listings.json
# -----------------------------------------------------------------------------

class LowestListing(_FileModel):
    name: str
    lowest_listing: float = Field(alias="lowestListing")
    tcgplayer_url: Optional[str] = Field(default=None, alias="tcgplayerUrl")


class LowestListingsData(_FileModel):
    updated_at: str = Field(alias="updatedAt")
    cards: dict[str, LowestListing] = Field(default_factory=dict)


# -----------------------------------------------------------------------------
# API responses
# -----------------------------------------------------------------------------

class PricedCardResponse(BaseModel):
    name: str
    quantity: int
    price: float
    total: float
    isCommander: bool = False
    foilPrice: Optional[float] = None
    isFoilOnly: bool = False
    tcgplayerId: Optional[int] = None
    cardmarketId: Optional[int] = None
    image: Optional[str] = None
    lowestListing: Optional[float] = None
    purchaseUrls: dict[str, str] = Field(default_factory=dict)


class RoiResponse(BaseModel):
    roi: float
    distroCost: float
    distroRoi: float
    verdict: str


class DeckPriceResponse(BaseModel):
    """Priced deck as returned by the API."""
    deckId: str
    source: str = Field(description="snapshot or live")
    totalValue: float
    cardCount: int
    missingCount: int = 0
    cards: list[PricedCardResponse]
    topCards: list[PricedCardResponse]
    updatedAt: Optional[str] = None
    updatedAgo: Optional[str] = None
    isStale: bool = False
    roiSummary: Optional[RoiResponse] = Field(default=None, alias="roi")

    model_config = ConfigDict(populate_by_name=True)


class CardValueRequest(BaseModel):
    """Ad-hoc card list; each entry may carry total, price/quantity or raw prices."""
    cards: list[dict] = Field(default_factory=list, max_length=500)


class CardValueResponse(BaseModel):
    totalValue: float
    topCards: list[dict]


class CollectionRequest(BaseModel):
    names: list[str] = Field(min_length=1, max_length=1000)


class CollectionResponse(BaseModel):
    found: list[dict]
    notFound: list[str]


class ConditionPricesResponse(BaseModel):
    name: str
    setCode: Optional[str] = None
    prices: dict[str, Optional[float]]
    marketPrice: Optional[float] = None
    lowPrice: Optional[float] = None
    cardPrice: dict[str, Optional[str]] = Field(default_factory=dict)


class DecklistImportRequest(BaseModel):
    text: str = Field(min_length=1, max_length=50000)


class DecklistImportResponse(BaseModel):
    cards: list[dict]
    notFound: list[str]
    warnings: list[str]
    totalValue: float
