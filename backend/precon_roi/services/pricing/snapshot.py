"""
Static price snapshot loaders.

The batch refresh ships a precomputed ``prices.json`` covering every known
deck. Reading it is preferred over live per-card lookups: one fetch instead
of hundreds of rate-limited API calls. Loaders memoize the first successful
load and return None on any failure so callers can fall back to live
pricing.
"""
import asyncio
import dataclasses
import json
from abc import ABC, abstractmethod
from decimal import Decimal
from pathlib import Path
from typing import Any, Generic, Optional, TypeVar

import httpx
import structlog
from pydantic import BaseModel

from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.exceptions import QueueFullError
from precon_roi.schemas.prices import (
    LowestListingsData,
    StaticCardData,
    StaticCardEntry,
    StaticPricesData,
)
from precon_roi.services.pricing.selection import parse_price
from precon_roi.services.pricing.valuation import (
    TOP_CARDS_COUNT,
    DeckPriceSnapshot,
    PricedCard,
)

logger = structlog.get_logger()

M = TypeVar("M", bound=BaseModel)

LOAD_ERRORS = (httpx.HTTPError, OSError, ValueError, asyncio.TimeoutError)


class JsonSource(ABC):
    """Where a static JSON document comes from."""

    @property
    @abstractmethod
    def location(self) -> str:
        pass

    @abstractmethod
    async def read(self) -> Any:
        """Fetch and decode the document."""
        pass


class HttpJsonSource(JsonSource):
    """Document served over HTTP (e.g. the site's ``/data/prices.json``)."""

    def __init__(
        self,
        url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout_seconds: float = 30.0,
    ):
        self.url = url
        self.client = client
        self.timeout_seconds = timeout_seconds

    @property
    def location(self) -> str:
        return self.url

    async def read(self) -> Any:
        if self.client is not None:
            response = await self.client.get(self.url, timeout=self.timeout_seconds)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            response = await client.get(self.url)
            response.raise_for_status()
            return response.json()


class FileJsonSource(JsonSource):
    """Document read from the local filesystem."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    @property
    def location(self) -> str:
        return str(self.path)

    async def read(self) -> Any:
        text = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        return json.loads(text)


def create_source(
    url: Optional[str],
    path: Optional[str | Path],
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[JsonSource]:
    """HTTP source when a URL is configured, else a file source, else None."""
    if url:
        return HttpJsonSource(url, client=client)
    if path:
        return FileJsonSource(path)
    return None


class MemoizedJsonLoader(Generic[M]):
    """
    Load a JSON document once and keep the parsed model.

    Concurrent first loads share one read through the deduplicator. A failed
    load is not memoized, so the next call tries again.
    """

    model: type[M]
    dedup_key: str = "static:document"

    def __init__(
        self,
        source: Optional[JsonSource],
        deduplicator: Optional[RequestDeduplicator] = None,
    ):
        self.source = source
        self.deduplicator = deduplicator or RequestDeduplicator()
        self._data: Optional[M] = None

    @property
    def loaded(self) -> bool:
        return self._data is not None

    def reset(self) -> None:
        """Drop the memoized document."""
        self._data = None

    async def load(self) -> Optional[M]:
        if self._data is not None:
            return self._data
        if self.source is None:
            return None

        try:
            return await self.deduplicator.run(self.dedup_key, self._load_once)
        except QueueFullError as e:
            logger.warning("Static data load rejected", key=self.dedup_key, error=str(e))
            return None

    async def _load_once(self) -> Optional[M]:
        if self._data is not None:
            return self._data

        try:
            raw = await self.source.read()
            data = self.model.model_validate(raw)
        except LOAD_ERRORS as e:
            logger.warning(
                "Failed to load static data",
                source=self.source.location,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

        self._data = data
        logger.info("Loaded static data", source=self.source.location, key=self.dedup_key)
        return data


def priced_card_from_entry(card: StaticCardEntry) -> PricedCard:
    price = parse_price(card.usd) or Decimal("0")
    return PricedCard(
        name=card.name,
        quantity=card.quantity,
        price=price,
        total=price * card.quantity,
        usd=card.usd,
        is_commander=bool(card.is_commander),
        foil_price=parse_price(card.usd_foil),
        is_foil_only=bool(card.is_foil_only),
        tcgplayer_id=card.tcgplayer_id,
        cardmarket_id=card.cardmarket_id,
    )


class StaticSnapshotLoader(MemoizedJsonLoader[StaticPricesData]):
    """
    Loader for the batch-generated ``prices.json``.

    Usage:
        loader = StaticSnapshotLoader(FileJsonSource("data/prices.json"))
        deck = await loader.get_deck_prices("blc-family-matters")
        updated_at = await loader.get_timestamp()
    """

    model = StaticPricesData
    dedup_key = "static:prices.json"

    async def get_deck_prices(
        self,
        deck_id: str,
        top_n: int = TOP_CARDS_COUNT,
    ) -> Optional[DeckPriceSnapshot]:
        """
        Deck prices sliced from the snapshot, or None if unavailable.

        The batch job writes cards already sorted by value, so the top cards
        are simply the first priced entries.
        """
        data = await self.load()
        if data is None or deck_id not in data.decks:
            return None

        deck = data.decks[deck_id]
        cards = [priced_card_from_entry(card) for card in deck.cards]
        return DeckPriceSnapshot(
            total_value=Decimal(str(deck.total_value)),
            card_count=deck.card_count,
            cards=cards,
            top_cards=[card for card in cards if card.usd][:top_n],
            missing_count=sum(1 for card in cards if not card.usd),
        )

    async def get_set_prices(self, set_code: str) -> Optional[list[StaticCardData]]:
        data = await self.load()
        if data is None or not data.sets or set_code not in data.sets:
            return None
        return list(data.sets[set_code])

    async def get_timestamp(self) -> Optional[str]:
        """Generation time of the snapshot."""
        data = await self.load()
        return data.updated_at if data is not None else None

    async def has_deck(self, deck_id: str) -> bool:
        data = await self.load()
        return data is not None and deck_id in data.decks


class LowestListingsLoader(MemoizedJsonLoader[LowestListingsData]):
    """Loader for ``lowest-listings.json`` (lowest marketplace listing per card)."""

    model = LowestListingsData
    dedup_key = "static:lowest-listings.json"

    async def get_lowest_listing(self, card_name: str) -> Optional[float]:
        data = await self.load()
        if data is None or card_name not in data.cards:
            return None
        return data.cards[card_name].lowest_listing

    async def merge_lowest_listings(self, cards: list[PricedCard]) -> list[PricedCard]:
        """Copies of ``cards`` annotated with their lowest listing, when known."""
        data = await self.load()
        if data is None:
            return cards

        merged = []
        for card in cards:
            listing = data.cards.get(card.name)
            merged.append(dataclasses.replace(
                card,
                lowest_listing=listing.lowest_listing if listing else None,
            ))
        return merged
