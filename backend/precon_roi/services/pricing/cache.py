"""
Persistent deck price cache.

Stores the last successfully fetched price summary per deck so repeat
visits can skip a live refetch, and answers staleness questions for the
"updated X ago" display.

Caching is best-effort: a missing backend, a full backend, or a corrupt
record all degrade to "no cache" and never raise.
"""
import json
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field

from precon_roi.core.exceptions import CacheCorruptError, StorageUnavailableError
from precon_roi.core.storage import KeyValueStore
from precon_roi.services.pricing.valuation import DeckPriceSnapshot

logger = structlog.get_logger()

CACHE_PREFIX = "deck-prices-"
STALE_DAYS = 7.0
MAX_TOP_CARDS = 5
SECONDS_PER_DAY = 24 * 60 * 60

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TopCard(BaseModel):
    name: str
    price: float


class CachedPriceData(BaseModel):
    """Cached price summary for one deck."""
    total_value: float = Field(alias="totalValue")
    top_cards: list[TopCard] = Field(default_factory=list, alias="topCards")
    card_count: int = Field(alias="cardCount", ge=0)
    fetched_at: Optional[str] = Field(default=None, alias="fetchedAt")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_deck(cls, snapshot: DeckPriceSnapshot, top_n: int = 5) -> "CachedPriceData":
        return cls(
            total_value=float(snapshot.total_value),
            top_cards=[
                TopCard(name=card.name, price=float(card.price))
                for card in snapshot.top_cards[:top_n]
            ],
            card_count=snapshot.card_count,
        )


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO timestamp (``Z`` suffix allowed) as an aware datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def elapsed_days(since: Optional[str], now: Optional[datetime] = None) -> Optional[float]:
    moment = parse_timestamp(since)
    if moment is None:
        return None
    now = now or utcnow()
    return (now - moment).total_seconds() / SECONDS_PER_DAY


def format_age_days(age: Optional[float]) -> Optional[str]:
    """Humanize an age in days: "Just now", "5h ago", "1 day ago", "3 days ago"."""
    if age is None:
        return None
    if age < 1:
        hours = int(age * 24)
        if hours < 1:
            return "Just now"
        return f"{hours}h ago"
    days = int(age)
    if days == 1:
        return "1 day ago"
    return f"{days} days ago"


def format_static_age(updated_at: Optional[str], now: Optional[datetime] = None) -> Optional[str]:
    """Humanized age of the static snapshot's ``updatedAt``."""
    return format_age_days(elapsed_days(updated_at, now))


def is_timestamp_stale(
    fetched_at: Optional[str],
    stale_days: float = STALE_DAYS,
    now: Optional[datetime] = None,
) -> bool:
    """A missing or unparsable timestamp counts as stale."""
    age = elapsed_days(fetched_at, now)
    return age is None or age > stale_days


class PriceCache:
    """
    Deck-scoped price cache on top of a key-value store.

    Usage:
        cache = PriceCache(MemoryStore())
        cache.set("blc-family-matters", {"totalValue": 81.2, "topCards": [], "cardCount": 100})
        cache.is_stale("blc-family-matters")  # False
        cache.format_age("blc-family-matters")  # "Just now"

    With ``store=None`` (no backend available) every operation is a no-op.
    """

    def __init__(
        self,
        store: Optional[KeyValueStore],
        prefix: str = CACHE_PREFIX,
        stale_days: float = STALE_DAYS,
        now: Clock = utcnow,
    ):
        self.store = store
        self.prefix = prefix
        self.stale_days = stale_days
        self._now = now

    @property
    def available(self) -> bool:
        return self.store is not None

    def _key(self, deck_id: str) -> str:
        return f"{self.prefix}{deck_id}"

    @staticmethod
    def _decode(raw: str) -> CachedPriceData:
        try:
            return CachedPriceData.model_validate(json.loads(raw))
        except ValueError as e:
            raise CacheCorruptError(str(e)) from e

    def get(self, deck_id: str) -> Optional[CachedPriceData]:
        """Cached summary for a deck, or None if absent, unreadable or corrupt."""
        if self.store is None:
            return None

        try:
            raw = self.store.get(self._key(deck_id))
        except StorageUnavailableError as e:
            logger.warning("Price cache read failed", deck_id=deck_id, error=str(e))
            return None

        if not raw:
            return None

        try:
            return self._decode(raw)
        except CacheCorruptError:
            logger.debug("Ignoring corrupt price cache entry", deck_id=deck_id)
            return None

    def set(
        self,
        deck_id: str,
        data: Union[CachedPriceData, Mapping[str, Any]],
    ) -> bool:
        """
        Store a summary stamped with the current time.

        Returns:
            True if written, False when there is no backend or it refused
            the write (e.g. quota exceeded).
        """
        if self.store is None:
            return False

        record = (
            data if isinstance(data, CachedPriceData)
            else CachedPriceData.model_validate(data)
        )
        record = record.model_copy(update={
            "top_cards": record.top_cards[:MAX_TOP_CARDS],
            "fetched_at": self._now().isoformat(),
        })

        try:
            self.store.set(
                self._key(deck_id),
                record.model_dump_json(by_alias=True),
            )
        except StorageUnavailableError as e:
            logger.debug("Price cache write failed", deck_id=deck_id, error=str(e))
            return False
        return True

    def age(self, deck_id: str) -> Optional[float]:
        """Days since the cached record was fetched, or None without a record."""
        cached = self.get(deck_id)
        if cached is None:
            return None
        return elapsed_days(cached.fetched_at, self._now())

    def is_stale(self, deck_id: str) -> bool:
        """True when the deck was never fetched or the record is too old."""
        age = self.age(deck_id)
        if age is None:
            return True
        return age > self.stale_days

    def format_age(self, deck_id: str) -> Optional[str]:
        return format_age_days(self.age(deck_id))

    def clear(self) -> int:
        """Remove every entry under this cache's prefix. Returns how many."""
        if self.store is None:
            return 0

        removed = 0
        try:
            for key in list(self.store.keys(self.prefix)):
                self.store.delete(key)
                removed += 1
        except StorageUnavailableError as e:
            logger.warning("Price cache clear failed", error=str(e), removed=removed)
        return removed
