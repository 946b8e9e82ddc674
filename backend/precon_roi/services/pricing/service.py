"""
Deck price service.

Ties the pricing pieces together: the static snapshot is tried first, live
Scryfall pricing is the fallback, and every live result is summarized into
the persistent price cache.
"""
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

import structlog

from precon_roi.core.config import Settings, settings
from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.exceptions import NotFoundError
from precon_roi.core.storage import create_store
from precon_roi.schemas.decks import PreconDeck
from precon_roi.schemas.prices import (
    ConditionPricesResponse,
    DeckPriceResponse,
    PricedCardResponse,
    RoiResponse,
    StaticCardData,
)
from precon_roi.services.decks.catalog import DeckCatalog, Decklists, load_catalog
from precon_roi.services.decks.parser import is_basic_land, parse_decklist_text
from precon_roi.services.ingestion.scryfall import BatchCardResult, ScryfallClient
from precon_roi.services.pricing.cache import (
    CachedPriceData,
    PriceCache,
    format_static_age,
    is_timestamp_stale,
    utcnow,
)
from precon_roi.services.pricing.condition_pricing import (
    ConditionPricer,
    JustTCGIdentifier,
    get_all_condition_prices,
    map_to_card_price,
)
from precon_roi.services.pricing.purchase_urls import get_purchase_urls
from precon_roi.services.pricing.selection import Printing, get_card_image, get_card_price
from precon_roi.services.pricing.snapshot import (
    LowestListingsLoader,
    StaticSnapshotLoader,
    create_source,
)
from precon_roi.services.pricing.valuation import (
    DeckPriceSnapshot,
    PricedCard,
    RoiSummary,
    price_deck,
    total_value,
)

logger = structlog.get_logger()

SOURCE_SNAPSHOT = "snapshot"
SOURCE_LIVE = "live"


@dataclass
class DeckPriceResult:
    deck: PreconDeck
    source: str
    prices: DeckPriceSnapshot
    updated_at: Optional[str] = None


@dataclass
class DecklistImport:
    """Pasted decklist resolved against the catalog."""
    cards: list[dict[str, Any]] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def total_value(self) -> float:
        return round(total_value(self.cards), 2)


class DeckSelection:
    """
    The deck a viewer currently has selected, and its committed result.

    Each ``select`` hands out a new token; a result is only committed while
    its token is still the latest, so a slow fetch for an earlier deck can
    never overwrite the result of a newer selection.
    """

    def __init__(self):
        self.deck_id: Optional[str] = None
        self.result: Optional[DeckPriceResult] = None
        self._token = 0

    def select(self, deck_id: str) -> int:
        self._token += 1
        self.deck_id = deck_id
        self.result = None
        return self._token

    def is_current(self, deck_id: str, token: int) -> bool:
        return token == self._token and deck_id == self.deck_id

    def commit(self, deck_id: str, token: int, result: DeckPriceResult) -> bool:
        if not self.is_current(deck_id, token):
            logger.debug(
                "Dropping superseded deck result",
                deck_id=deck_id,
                selected=self.deck_id,
            )
            return False
        self.result = result
        return True


class DeckPriceService:
    """Deck pricing, card lookups and ROI summaries."""

    def __init__(
        self,
        catalog: DeckCatalog,
        decklists: Decklists,
        scryfall: ScryfallClient,
        snapshot: StaticSnapshotLoader,
        cache: PriceCache,
        listings: Optional[LowestListingsLoader] = None,
        condition_pricer: Optional[ConditionPricer] = None,
        config: Settings = settings,
    ):
        self.catalog = catalog
        self.decklists = decklists
        self.scryfall = scryfall
        self.snapshot = snapshot
        self.cache = cache
        self.listings = listings
        self.condition_pricer = condition_pricer
        self.config = config

    def get_deck(self, deck_id: str) -> PreconDeck:
        deck = self.catalog.get(deck_id)
        if deck is None:
            raise NotFoundError(f"Unknown deck: {deck_id}")
        return deck

    async def get_deck_prices(self, deck_id: str) -> DeckPriceResult:
        """
        Price a deck.

        Raises:
            NotFoundError: Unknown deck, or no snapshot and no decklist.
        """
        deck = self.get_deck(deck_id)
        top_n = self.config.top_cards_count

        prices = await self.snapshot.get_deck_prices(deck_id, top_n=top_n)
        if prices is not None:
            result = DeckPriceResult(
                deck=deck,
                source=SOURCE_SNAPSHOT,
                prices=prices,
                updated_at=await self.snapshot.get_timestamp(),
            )
        else:
            entries = self.decklists.get_deck_cards(deck_id)
            if not entries:
                raise NotFoundError(f"No decklist for deck: {deck_id}")

            logger.info("Pricing deck live", deck_id=deck_id, cards=len(entries))
            lookup = await self.scryfall.fetch_cards_prices(entries)
            prices = price_deck(entries, None, lookup, top_n=top_n)
            self.cache.set(deck_id, CachedPriceData.from_deck(prices, top_n=top_n))
            result = DeckPriceResult(
                deck=deck,
                source=SOURCE_LIVE,
                prices=prices,
                updated_at=utcnow().isoformat(),
            )

        if self.listings is not None:
            prices.cards = await self.listings.merge_lowest_listings(prices.cards)
            prices.top_cards = await self.listings.merge_lowest_listings(prices.top_cards)
        return result

    async def select_deck(self, selection: DeckSelection, deck_id: str) -> bool:
        """Select a deck and fetch its prices; returns False if superseded meanwhile."""
        token = selection.select(deck_id)
        result = await self.get_deck_prices(deck_id)
        return selection.commit(deck_id, token, result)

    def roi(self, deck: PreconDeck, total: float) -> RoiSummary:
        return RoiSummary.compute(total, deck.msrp, self.config.default_distro_discount)

    def cached_summary(self, deck_id: str) -> Optional[CachedPriceData]:
        return self.cache.get(deck_id)

    def summarize(self, result: DeckPriceResult) -> DeckPriceResponse:
        """API view of a priced deck with ROI, verdict and data age."""
        total = float(result.prices.total_value)
        roi = self.roi(result.deck, total)

        if result.source == SOURCE_SNAPSHOT:
            updated_ago = format_static_age(result.updated_at)
            stale = is_timestamp_stale(result.updated_at, self.config.price_cache_stale_days)
        else:
            updated_ago = self.cache.format_age(result.deck.id) or "Just now"
            stale = False

        return DeckPriceResponse(
            deckId=result.deck.id,
            source=result.source,
            totalValue=total,
            cardCount=result.prices.card_count,
            missingCount=result.prices.missing_count,
            cards=[_card_response(card) for card in result.prices.cards],
            topCards=[_card_response(card) for card in result.prices.top_cards],
            updatedAt=result.updated_at,
            updatedAgo=updated_ago,
            isStale=stale,
            roi=RoiResponse(
                roi=roi.roi,
                distroCost=roi.distro_cost,
                distroRoi=roi.distro_roi,
                verdict=roi.verdict.value,
            ),
        )

    async def get_card_price(self, name: str) -> Optional[float]:
        """Display price of a card's default printing, or None if unknown."""
        card = await self.scryfall.get_card_by_name(name)
        if card is None:
            return None
        return get_card_price(Printing.from_scryfall(card))

    async def search_cards(self, query: str) -> list[dict[str, Any]]:
        return await self.scryfall.search_cards(query)

    async def get_cards_by_names(self, names: Sequence[str]) -> BatchCardResult:
        return await self.scryfall.get_cards_by_names(names)

    async def import_decklist(self, text: str) -> DecklistImport:
        """
        Parse a pasted decklist and resolve every card name.

        Quantities of repeated names are summed. Cards the catalog does not
        know are listed in ``not_found`` instead of failing the import.
        """
        parsed = parse_decklist_text(text)
        result = DecklistImport(warnings=list(parsed.warnings), errors=list(parsed.errors))
        if not parsed.success:
            return result

        quantities: dict[str, int] = {}
        for entry in parsed.entries:
            quantities[entry.name] = quantities.get(entry.name, 0) + entry.quantity

        lookup = await self.scryfall.get_cards_by_names(list(quantities))
        by_name = {card.get("name", "").lower(): card for card in lookup.found}
        result.not_found = list(lookup.not_found)

        for name, quantity in quantities.items():
            card = by_name.get(name.lower())
            if card is None:
                continue
            price = get_card_price(card)
            result.cards.append({
                "name": card.get("name", name),
                "quantity": quantity,
                "price": price,
                "total": round(price * quantity, 2),
                "set": card.get("set"),
                "isBasicLand": is_basic_land(card.get("name", name)),
                "image": get_card_image(card),
            })

        if result.not_found:
            result.warnings.append(f"{len(result.not_found)} card(s) not found")
        return result

    async def get_set_prices(self, set_code: str) -> Optional[list[StaticCardData]]:
        """Snapshot prices of every needed card in a set."""
        return await self.snapshot.get_set_prices(set_code.lower())

    async def get_condition_prices(
        self,
        name: str,
        set_code: Optional[str] = None,
    ) -> Optional[ConditionPricesResponse]:
        """Per-condition prices, or None when unavailable or unknown."""
        if self.condition_pricer is None or not self.condition_pricer.is_available():
            return None
        card = await self.condition_pricer.fetch_card(
            JustTCGIdentifier(name=name, set_code=set_code)
        )
        if card is None:
            return None
        return ConditionPricesResponse(
            name=card.name,
            setCode=card.set_code,
            prices=get_all_condition_prices(card),
            marketPrice=card.market_price,
            lowPrice=card.low_price,
            cardPrice=map_to_card_price(card),
        )

    def clear_cache(self) -> int:
        """Drop cached deck summaries and live lookups. Returns entries removed."""
        removed = self.cache.clear()
        self.scryfall.session_cache.clear()
        logger.info("Price caches cleared", removed=removed)
        return removed

    async def close(self) -> None:
        await self.scryfall.close()
        if self.condition_pricer is not None:
            await self.condition_pricer.close()


def _card_response(card: PricedCard) -> PricedCardResponse:
    data = card.to_dict()
    data["purchaseUrls"] = get_purchase_urls(card.name, card.tcgplayer_id, card.cardmarket_id)
    return PricedCardResponse(**data)


def build_price_service(config: Settings = settings) -> DeckPriceService:
    """Wire the service from settings."""
    catalog, decklists = load_catalog(config)
    deduplicator = RequestDeduplicator(
        warn_threshold=config.dedup_warn_threshold,
        hard_limit=config.dedup_hard_limit,
    )

    snapshot_source = create_source(config.snapshot_url, config.snapshot_path_computed)
    listings_source = create_source(
        config.lowest_listings_url, config.lowest_listings_path_computed
    )

    return DeckPriceService(
        catalog=catalog,
        decklists=decklists,
        scryfall=ScryfallClient(deduplicator=deduplicator, config=config),
        snapshot=StaticSnapshotLoader(snapshot_source, deduplicator),
        cache=PriceCache(
            create_store(config),
            prefix=config.price_cache_prefix,
            stale_days=config.price_cache_stale_days,
        ),
        listings=LowestListingsLoader(listings_source, deduplicator),
        condition_pricer=ConditionPricer(config=config),
        config=config,
    )
