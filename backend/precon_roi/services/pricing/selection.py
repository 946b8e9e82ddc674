"""
Printing selection: one canonical priced printing per (card name, set).

A bulk catalog holds every printing of every card. A precon deck must be
priced "as printed in that precon", so each card is resolved against the
deck's set code, and among that set's printings the mainstream one wins:

1. regular frame before showcase / extended art / borderless
2. non-promo before promo
3. lower collector number before higher (non-numeric sorts last)
4. printings with a real non-foil price before foil-only ones
5. cheaper before more expensive

Serialized/special collector numbers (letters, or a number above the
threshold) are ignored unless they are the only priced printings left.
"""
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Iterable, Mapping, Optional, Union

import structlog

logger = structlog.get_logger()

SERIALIZED_COLLECTOR_THRESHOLD = 900
NON_NUMERIC_COLLECTOR_SENTINEL = 10**9
SPECIAL_FRAME_EFFECTS = frozenset({"showcase", "extendedart"})
SPECIAL_BORDERS = frozenset({"borderless"})

CENT = Decimal("0.01")

_LETTERS = re.compile(r"[a-zA-Z]")
_LEADING_DIGITS = re.compile(r"^\d+")

PriceKey = tuple[str, str]


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse a price string into a positive Decimal, or None when unusable."""
    if value is None or value == "":
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def format_price(value: Decimal) -> str:
    """Render a price with exactly two decimals."""
    return str(value.quantize(CENT, rounding=ROUND_HALF_UP))


def price_key(name: str, set_code: str) -> PriceKey:
    return (name, set_code.lower())


def is_serialized_collector_number(
    collector_number: str,
    threshold: int = SERIALIZED_COLLECTOR_THRESHOLD,
) -> bool:
    """
    Heuristic for serialized / special chase printings.

    True when the collector number contains letters, or its leading number
    is above ``threshold``.
    """
    if _LETTERS.search(collector_number or ""):
        return True
    match = _LEADING_DIGITS.match(collector_number or "")
    return bool(match) and int(match.group()) > threshold


def collector_number_sort_value(collector_number: str) -> int:
    """Numeric sort value; anything that isn't a plain number sorts last."""
    if collector_number and collector_number.isdigit():
        return int(collector_number)
    return NON_NUMERIC_COLLECTOR_SENTINEL


def get_card_image(card: Mapping[str, Any]) -> Optional[str]:
    """Image URL of a Scryfall card, falling back to the front face."""
    image_uris = card.get("image_uris")
    if image_uris:
        return image_uris.get("normal") or image_uris.get("small")
    faces = card.get("card_faces") or []
    if faces and faces[0].get("image_uris"):
        face_uris = faces[0]["image_uris"]
        return face_uris.get("normal") or face_uris.get("small")
    return None


@dataclass(frozen=True)
class Printing:
    """One specific print of a card as read from the catalog."""
    name: str
    set_code: str
    collector_number: str
    promo: bool = False
    frame_effects: tuple[str, ...] = ()
    border_color: Optional[str] = None
    usd: Optional[str] = None
    usd_foil: Optional[str] = None
    tcgplayer_id: Optional[int] = None
    cardmarket_id: Optional[int] = None
    scryfall_id: Optional[str] = None
    image_url: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_scryfall(cls, card: Mapping[str, Any]) -> "Printing":
        """Build a printing from a Scryfall card object."""
        prices = card.get("prices") or {}
        return cls(
            name=card.get("name", ""),
            set_code=(card.get("set") or "").lower(),
            collector_number=str(card.get("collector_number") or ""),
            promo=card.get("promo") is True,
            frame_effects=tuple(card.get("frame_effects") or ()),
            border_color=card.get("border_color"),
            usd=prices.get("usd"),
            usd_foil=prices.get("usd_foil"),
            tcgplayer_id=card.get("tcgplayer_id"),
            cardmarket_id=card.get("cardmarket_id"),
            scryfall_id=card.get("id"),
            image_url=get_card_image(card),
        )

    @property
    def key(self) -> PriceKey:
        return price_key(self.name, self.set_code)

    @property
    def normal_price(self) -> Optional[Decimal]:
        return parse_price(self.usd)

    @property
    def foil_price(self) -> Optional[Decimal]:
        return parse_price(self.usd_foil)

    @property
    def has_normal_listing(self) -> bool:
        return self.usd is not None and self.usd != ""

    @property
    def resolved_price(self) -> Optional[Decimal]:
        """
        Normal price when a normal listing exists, else foil price.

        A listed but zero or unparseable normal price makes the printing
        unpriced; the foil price is only used when no normal listing exists.
        """
        if self.has_normal_listing:
            return self.normal_price
        return self.foil_price

    @property
    def is_priced(self) -> bool:
        return self.resolved_price is not None

    @property
    def is_foil_only(self) -> bool:
        return not self.has_normal_listing and self.foil_price is not None

    @property
    def has_special_frame(self) -> bool:
        if SPECIAL_FRAME_EFFECTS.intersection(self.frame_effects):
            return True
        return (self.border_color or "") in SPECIAL_BORDERS


@dataclass(frozen=True)
class PriceSelection:
    """The printing chosen to price a (name, set) pair."""
    name: str
    set_code: str
    collector_number: str
    usd: Optional[str]
    usd_foil: Optional[str] = None
    is_foil_only: bool = False
    tcgplayer_id: Optional[int] = None
    cardmarket_id: Optional[int] = None
    image_url: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_printing(cls, printing: Printing) -> "PriceSelection":
        resolved = printing.resolved_price
        foil = printing.foil_price
        usd = format_price(resolved) if resolved is not None else None
        usd_foil = format_price(foil) if foil is not None else None
        # Only show a foil price when it is actually a premium over the listed price
        if usd_foil == usd:
            usd_foil = None
        return cls(
            name=printing.name,
            set_code=printing.set_code,
            collector_number=printing.collector_number,
            usd=usd,
            usd_foil=usd_foil,
            is_foil_only=printing.is_foil_only,
            tcgplayer_id=printing.tcgplayer_id,
            cardmarket_id=printing.cardmarket_id,
            image_url=printing.image_url,
        )

    @property
    def price(self) -> Decimal:
        return Decimal(self.usd) if self.usd else Decimal("0")

    @property
    def foil_price(self) -> Optional[Decimal]:
        return Decimal(self.usd_foil) if self.usd_foil else None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "name": self.name,
            "set": self.set_code,
            "collector_number": self.collector_number,
            "usd": self.usd,
        }
        if self.usd_foil is not None:
            data["usd_foil"] = self.usd_foil
        if self.is_foil_only:
            data["isFoilOnly"] = True
        if self.tcgplayer_id is not None:
            data["tcgplayerId"] = self.tcgplayer_id
        if self.cardmarket_id is not None:
            data["cardmarketId"] = self.cardmarket_id
        return data


def selection_rank(printing: Printing) -> tuple:
    """
    Sort key for candidate printings; the smallest key wins.

    The trailing fields only break exact ties so the winner never depends
    on catalog order.
    """
    return (
        printing.has_special_frame,
        printing.promo,
        collector_number_sort_value(printing.collector_number),
        printing.is_foil_only,
        printing.resolved_price,
        printing.collector_number,
        printing.usd or "",
        printing.usd_foil or "",
        printing.tcgplayer_id or 0,
        printing.cardmarket_id or 0,
        printing.scryfall_id or "",
    )


def select_printing(
    candidates: Iterable[Printing],
    threshold: int = SERIALIZED_COLLECTOR_THRESHOLD,
) -> Optional[PriceSelection]:
    """
    Choose the canonical printing among candidates for one (name, set).

    Returns None only when no candidate carries a usable price.
    """
    priced = [p for p in candidates if p.is_priced]
    if not priced:
        return None

    regular = [p for p in priced if not is_serialized_collector_number(p.collector_number, threshold)]
    pool = regular or priced
    return PriceSelection.from_printing(min(pool, key=selection_rank))


class PriceLookup:
    """
    Streaming reducer from catalog printings to one selection per (name, set).

    Keeps only two printings per key while scanning (the best overall and
    the best non-serialized), so the catalog is read exactly once and never
    held in memory.

    Usage:
        lookup = PriceLookup(needed={"Sol Ring": {"blc", "dsc"}})
        for card in catalog:
            lookup.add(Printing.from_scryfall(card))
        prices = lookup.result()
        prices[("Sol Ring", "blc")].usd
    """

    def __init__(
        self,
        needed: Optional[Mapping[str, Iterable[str]]] = None,
        threshold: int = SERIALIZED_COLLECTOR_THRESHOLD,
    ):
        self.threshold = threshold
        self._needed = (
            {name: {s.lower() for s in sets} for name, sets in needed.items()}
            if needed is not None
            else None
        )
        self._best: dict[PriceKey, Printing] = {}
        self._best_regular: dict[PriceKey, Printing] = {}
        self.scanned = 0
        self.unpriced = 0
        self.serialized_seen = 0

    def wants(self, printing: Printing) -> bool:
        if self._needed is None:
            return True
        sets = self._needed.get(printing.name)
        return sets is not None and printing.set_code.lower() in sets

    def add(self, printing: Printing) -> bool:
        """Offer a printing. Returns True when it was considered."""
        self.scanned += 1
        if not self.wants(printing):
            return False
        if not printing.is_priced:
            self.unpriced += 1
            return False

        key = printing.key
        rank = selection_rank(printing)

        current = self._best.get(key)
        if current is None or rank < selection_rank(current):
            self._best[key] = printing

        if is_serialized_collector_number(printing.collector_number, self.threshold):
            self.serialized_seen += 1
        else:
            current = self._best_regular.get(key)
            if current is None or rank < selection_rank(current):
                self._best_regular[key] = printing
        return True

    def extend(self, printings: Iterable[Printing]) -> "PriceLookup":
        for printing in printings:
            self.add(printing)
        return self

    def result(self) -> dict[PriceKey, PriceSelection]:
        """One selection per key, falling back to serialized printings."""
        selections = {}
        for key, best in self._best.items():
            winner = self._best_regular.get(key, best)
            selections[key] = PriceSelection.from_printing(winner)
        return selections


def build_price_lookup(
    printings: Iterable[Printing],
    needed: Optional[Mapping[str, Iterable[str]]] = None,
    threshold: int = SERIALIZED_COLLECTOR_THRESHOLD,
) -> dict[PriceKey, PriceSelection]:
    """Scan the catalog once and select a printing for every needed (name, set)."""
    lookup = PriceLookup(needed=needed, threshold=threshold).extend(printings)
    selections = lookup.result()
    logger.info(
        "Built set-aware price lookup",
        scanned=lookup.scanned,
        matched=len(selections),
        unpriced=lookup.unpriced,
        serialized_seen=lookup.serialized_seen,
    )
    return selections


def get_card_price(card: Union[Printing, Mapping[str, Any]]) -> float:
    """Display price of a single printing: normal, else foil, else 0."""
    if isinstance(card, Printing):
        price = card.resolved_price
        return float(price) if price is not None else 0.0

    prices = card.get("prices") or {}
    for value in (prices.get("usd"), prices.get("usd_foil")):
        price = parse_price(value)
        if price is not None:
            return float(price)
    return 0.0
