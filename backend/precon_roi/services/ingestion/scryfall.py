"""
Scryfall client for card data and live prices.

Scryfall is the primary catalog: card search, name lookups, the batch
collection endpoint used for live deck pricing, and the bulk data index
used by the nightly price refresh.
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence
from urllib.parse import urlencode

import structlog

from precon_roi.core.cache import LRUCache
from precon_roi.core.config import Settings, settings
from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.exceptions import NotFoundError
from precon_roi.core.rate_limit import WindowRateLimiter
from precon_roi.schemas.decks import DeckEntry
from precon_roi.services.ingestion.base import FetchConfig, RateLimitedFetcher
from precon_roi.services.pricing.selection import (
    PriceKey,
    PriceSelection,
    Printing,
    get_card_image,
    price_key,
    select_printing,
)

logger = structlog.get_logger()

ProgressCallback = Callable[[int, int], None]

MIN_QUERY_LENGTH = 2


@dataclass
class BatchCardResult:
    """Outcome of a name batch lookup."""
    found: list[dict[str, Any]] = field(default_factory=list)
    not_found: list[str] = field(default_factory=list)


def _session_key(name: str, set_code: Optional[str]) -> tuple[str, str]:
    return (name.lower(), (set_code or "").lower())


def _card_names(card: dict[str, Any]) -> list[str]:
    """Names a returned card can be matched by (full name and front face)."""
    names = [card.get("name", "")]
    if " // " in names[0]:
        names.append(names[0].split(" // ")[0])
    return [n.lower() for n in names if n]


class ScryfallClient:
    """
    Client for the Scryfall API.

    All GET requests are deduplicated by URL, so concurrent lookups of the
    same card or search share one round trip. Live price selections are
    kept in a bounded session cache keyed by (name, set).
    """

    def __init__(
        self,
        fetcher: Optional[RateLimitedFetcher] = None,
        deduplicator: Optional[RequestDeduplicator] = None,
        session_cache: Optional[LRUCache] = None,
        config: Settings = settings,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.config = config
        if fetcher is None:
            fetcher = RateLimitedFetcher(
                FetchConfig(
                    base_url=config.scryfall_base_url,
                    rate_limit_seconds=config.scryfall_rate_limit_ms / 1000,
                    max_retries=config.scryfall_max_retries,
                    backoff_factor=config.backoff_factor,
                    max_backoff_seconds=config.max_backoff_seconds,
                    timeout_seconds=config.request_timeout_seconds,
                    user_agent=config.user_agent,
                ),
                name="Scryfall",
                window_limiter=WindowRateLimiter(
                    config.scryfall_client_rate_limit,
                    window_seconds=config.scryfall_client_window_seconds,
                    max_wait_attempts=config.rate_limit_max_wait_attempts,
                    name="scryfall",
                    warn_margin=10,
                ),
            )
        self.fetcher = fetcher
        self.deduplicator = deduplicator or RequestDeduplicator(
            warn_threshold=config.dedup_warn_threshold,
            hard_limit=config.dedup_hard_limit,
        )
        self.session_cache: LRUCache[tuple[str, str], PriceSelection] = (
            session_cache if session_cache is not None
            else LRUCache(max_size=config.session_cache_max_entries)
        )
        self.batch_size = config.scryfall_collection_batch_size
        self._sleep = sleep

    async def _get(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        """Deduplicated, rate-limited GET."""
        key = f"{endpoint}?{urlencode(params)}" if params else endpoint
        return await self.deduplicator.run(
            key, lambda: self.fetcher.get_json(endpoint, params=params)
        )

    async def _collection(self, identifiers: list[dict[str, str]]) -> dict[str, Any]:
        """POST one batch to /cards/collection."""
        return await self.fetcher.post_json(
            "/cards/collection",
            {"identifiers": identifiers},
            max_retries=self.config.scryfall_collection_max_retries,
            retry_on_timeout=True,
        )

    async def search_cards(self, query: str) -> list[dict[str, Any]]:
        """Full-text card search. Returns [] for short queries or no matches."""
        if not query or len(query) < MIN_QUERY_LENGTH:
            return []
        try:
            data = await self._get("/cards/search", params={"q": query, "unique": "cards"})
        except NotFoundError:
            return []
        return data.get("data") or []

    async def get_card_by_name(self, name: str) -> Optional[dict[str, Any]]:
        """Fuzzy single-card lookup."""
        try:
            return await self._get("/cards/named", params={"fuzzy": name})
        except NotFoundError:
            return None

    async def get_cards_by_names(
        self,
        names: Sequence[str],
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchCardResult:
        """Resolve many names through the collection endpoint, 75 per call."""
        result = BatchCardResult()
        identifiers = [{"name": name} for name in names]

        for start in range(0, len(identifiers), self.batch_size):
            batch = identifiers[start:start + self.batch_size]
            data = await self._collection(batch)
            result.found.extend(data.get("data") or [])
            result.not_found.extend(
                nf.get("name", "") for nf in data.get("not_found") or []
            )

            if on_progress:
                on_progress(min(start + self.batch_size, len(names)), len(names))

            if start + self.batch_size < len(identifiers):
                await self._sleep(self.fetcher.config.rate_limit_seconds)

        return result

    async def load_set_cards(
        self,
        set_code: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> list[dict[str, Any]]:
        """Every card of a set, following pagination."""
        cards: list[dict[str, Any]] = []
        endpoint: Optional[str] = "/cards/search"
        params: Optional[dict[str, Any]] = {"q": f"set:{set_code.lower()}", "unique": "cards"}

        while endpoint:
            try:
                data = await self._get(endpoint, params=params)
            except NotFoundError:
                break
            cards.extend(data.get("data") or [])
            has_more = bool(data.get("has_more"))
            if on_progress:
                on_progress(len(cards), -1 if has_more else len(cards))

            # next_page is absolute and already carries the query
            endpoint = data.get("next_page") if has_more else None
            params = None

        return cards

    async def fetch_cards_prices(
        self,
        entries: Sequence[DeckEntry],
        on_progress: Optional[ProgressCallback] = None,
    ) -> dict[PriceKey, PriceSelection]:
        """
        Live price selections for deck entries.

        Entries carrying a set code are priced from that set; others from
        Scryfall's default printing. Results are keyed by
        ``(entry name, set code or "")``.
        """
        prices: dict[PriceKey, PriceSelection] = {}
        pending: dict[tuple[str, str], list[DeckEntry]] = {}

        for entry in entries:
            session_key = _session_key(entry.name, entry.set_code)
            cached = self.session_cache.get(session_key)
            if cached is not None:
                prices[price_key(entry.name, entry.set_code or "")] = cached
            else:
                pending.setdefault(session_key, []).append(entry)

        total = len(entries)
        cached_count = total - sum(
            1 for e in entries if _session_key(e.name, e.set_code) in pending
        )
        if not pending:
            if on_progress:
                on_progress(total, total)
            return prices

        identifiers = []
        for spellings in pending.values():
            entry = spellings[0]
            identifier = {"name": entry.name}
            if entry.set_code:
                identifier["set"] = entry.set_code.lower()
            identifiers.append(identifier)

        returned: list[dict[str, Any]] = []
        for start in range(0, len(identifiers), self.batch_size):
            batch = identifiers[start:start + self.batch_size]
            data = await self._collection(batch)
            returned.extend(data.get("data") or [])

            if on_progress:
                done = min(start + self.batch_size, len(identifiers))
                on_progress(min(cached_count + done, total), total)

            if start + self.batch_size < len(identifiers):
                await self._sleep(self.fetcher.config.rate_limit_seconds)

        candidates: dict[tuple[str, str], list[Printing]] = {}
        for card in returned:
            printing = Printing.from_scryfall(card)
            for name in _card_names(card):
                for set_code in (printing.set_code, ""):
                    key = (name, set_code)
                    if key in pending:
                        candidates.setdefault(key, []).append(printing)

        for key, spellings in pending.items():
            selection = select_printing(
                candidates.get(key, []),
                threshold=self.config.serialized_collector_threshold,
            )
            if selection is None:
                continue
            self.session_cache.set(key, selection)
            # Case variants of one name share a lookup but keep their own keys
            for entry in spellings:
                prices[price_key(entry.name, entry.set_code or "")] = selection

        missing = len(pending) - sum(1 for key in pending if key in self.session_cache)
        if missing:
            logger.info("Cards without live price", requested=len(pending), missing=missing)

        return prices

    async def get_bulk_data_uri(self, data_type: str = "default_cards") -> Optional[str]:
        """Download URI of a bulk data file."""
        try:
            data = await self._get(f"/bulk-data/{data_type.replace('_', '-')}")
        except NotFoundError:
            return None
        return data.get("download_uri")

    def get_card_image(self, card: dict[str, Any]) -> Optional[str]:
        return get_card_image(card)

    async def close(self) -> None:
        await self.fetcher.close()
