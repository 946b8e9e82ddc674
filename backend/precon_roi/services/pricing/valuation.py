"""
Deck valuation: price aggregation and ROI metrics.

Money is summed as Decimal and rounded once, at the deck total, so the
result does not depend on per-line rounding.
"""
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from numbers import Number
from typing import Any, Iterable, Mapping, Optional, Sequence, TypeVar

import structlog

from precon_roi.schemas.decks import DeckEntry
from precon_roi.services.pricing.selection import (
    CENT,
    PriceKey,
    PriceSelection,
    format_price,
    parse_price,
    price_key,
)

logger = structlog.get_logger()

DEFAULT_DISTRO_DISCOUNT = 0.40
TOP_CARDS_COUNT = 5
VERDICT_THRESHOLD = 15.0

T = TypeVar("T")


class Verdict(str, Enum):
    """Buy recommendation derived from ROI."""
    BUY = "BUY"          # profitable at retail and at distributor cost
    DISTRO = "DISTRO"    # profitable only at distributor cost
    HOLD = "HOLD"
    PASS = "PASS"


@dataclass
class PricedCard:
    """A deck entry with its resolved price."""
    name: str
    quantity: int
    price: Decimal
    total: Decimal
    usd: Optional[str] = None
    is_commander: bool = False
    foil_price: Optional[Decimal] = None
    is_foil_only: bool = False
    tcgplayer_id: Optional[int] = None
    cardmarket_id: Optional[int] = None
    image_url: Optional[str] = None
    lowest_listing: Optional[float] = None

    @property
    def has_price(self) -> bool:
        return self.usd is not None

    def to_snapshot_dict(self) -> dict[str, Any]:
        """Card entry in the persisted snapshot format."""
        data: dict[str, Any] = {
            "name": self.name,
            "quantity": self.quantity,
            "usd": self.usd,
        }
        if self.is_commander:
            data["isCommander"] = True
        if self.tcgplayer_id is not None:
            data["tcgplayerId"] = self.tcgplayer_id
        if self.cardmarket_id is not None:
            data["cardmarketId"] = self.cardmarket_id
        if self.foil_price is not None:
            data["usd_foil"] = format_price(self.foil_price)
        if self.is_foil_only:
            data["isFoilOnly"] = True
        return data

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "quantity": self.quantity,
            "price": float(self.price),
            "total": float(self.total),
            "isCommander": self.is_commander,
            "foilPrice": float(self.foil_price) if self.foil_price is not None else None,
            "isFoilOnly": self.is_foil_only,
            "tcgplayerId": self.tcgplayer_id,
            "cardmarketId": self.cardmarket_id,
            "image": self.image_url,
            "lowestListing": self.lowest_listing,
        }


@dataclass
class DeckPriceSnapshot:
    """Priced deck. Regenerated wholesale, never patched."""
    total_value: Decimal
    card_count: int
    cards: list[PricedCard] = field(default_factory=list)
    top_cards: list[PricedCard] = field(default_factory=list)
    missing_count: int = 0

    def to_snapshot_dict(self) -> dict[str, Any]:
        return {
            "totalValue": float(self.total_value),
            "cardCount": self.card_count,
            "cards": [card.to_snapshot_dict() for card in self.cards],
        }


def round_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def priced_card_from_selection(
    entry: DeckEntry,
    selection: Optional[PriceSelection],
) -> PricedCard:
    """Line item for one entry; unresolved prices count as zero."""
    price = selection.price if selection is not None else Decimal("0")
    return PricedCard(
        name=entry.name,
        quantity=entry.quantity,
        price=price,
        total=price * entry.quantity,
        usd=selection.usd if selection is not None else None,
        is_commander=entry.is_commander,
        foil_price=selection.foil_price if selection is not None else None,
        is_foil_only=selection.is_foil_only if selection is not None else False,
        tcgplayer_id=selection.tcgplayer_id if selection is not None else None,
        cardmarket_id=selection.cardmarket_id if selection is not None else None,
        image_url=selection.image_url if selection is not None else None,
    )


def price_deck(
    entries: Sequence[DeckEntry],
    set_code: Optional[str],
    lookup: Mapping[PriceKey, PriceSelection],
    top_n: int = TOP_CARDS_COUNT,
) -> DeckPriceSnapshot:
    """
    Price a decklist against resolved (name, set) selections.

    Args:
        entries: Deck entries in decklist order.
        set_code: The deck's product set. Entries carrying their own
            ``set_code`` use it when this is None.
        lookup: Selections keyed by ``(name, set_code)``.
        top_n: Size of the top-cards summary.

    Returns:
        Snapshot with cards sorted by descending line total. The sort is
        stable, so equal totals keep decklist order.
    """
    cards: list[PricedCard] = []
    missing = 0
    total = Decimal("0")

    for entry in entries:
        code = set_code or entry.set_code or ""
        selection = lookup.get(price_key(entry.name, code))
        if selection is None or selection.usd is None:
            missing += 1
            selection = None

        card = priced_card_from_selection(entry, selection)
        total += card.total
        cards.append(card)

    cards.sort(key=lambda c: c.total, reverse=True)

    if missing:
        logger.debug("Cards without price data", set_code=set_code, missing=missing)

    return DeckPriceSnapshot(
        total_value=round_money(total),
        card_count=sum(entry.quantity for entry in entries),
        cards=cards,
        top_cards=cards[:top_n],
        missing_count=missing,
    )


def _field(card: Any, name: str) -> Any:
    if isinstance(card, Mapping):
        return card.get(name)
    return getattr(card, name, None)


def _is_number(value: Any) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def card_value(card: Any) -> float:
    """
    Value of one card in an ad-hoc list.

    Checked in order: ``total``; ``price * quantity`` (quantity defaults to 1);
    the raw ``prices`` structure (``usd`` else ``usd_foil``); 0.
    """
    total = _field(card, "total")
    if _is_number(total):
        return float(total)

    price = _field(card, "price")
    if _is_number(price):
        quantity = _field(card, "quantity")
        return float(price) * (quantity if _is_number(quantity) else 1)

    prices = _field(card, "prices")
    if not isinstance(prices, Mapping):
        prices = {}
    for raw in (prices.get("usd"), prices.get("usd_foil")):
        parsed = parse_price(raw)
        if parsed is not None:
            return float(parsed)
    return 0.0


def total_value(cards: Iterable[Any]) -> float:
    """Sum of ``card_value`` over a list of cards."""
    return sum((card_value(card) for card in cards), 0.0)


def sort_cards_by_value(cards: Iterable[T]) -> list[T]:
    return sorted(cards, key=card_value, reverse=True)


def top_value_cards(cards: Iterable[T], count: int = TOP_CARDS_COUNT) -> list[T]:
    return sort_cards_by_value(cards)[:count]


def calculate_roi(current_value: float, msrp: float) -> float:
    """Percent return of the card value over retail price."""
    if not msrp or msrp <= 0:
        return 0.0
    return (current_value - msrp) / msrp * 100


def get_distro_cost(msrp: float, discount: Optional[float] = None) -> float:
    """Distributor cost: MSRP less the distributor discount (40% by default)."""
    if discount is None:
        discount = DEFAULT_DISTRO_DISCOUNT
    return msrp * (1 - discount)


def calculate_distro_roi(current_value: float, distro_cost: float) -> float:
    """Percent return of the card value over distributor cost."""
    if not distro_cost or distro_cost <= 0:
        return 0.0
    return (current_value - distro_cost) / distro_cost * 100


def get_roi_verdict(distro_roi: float, roi: Optional[float] = None) -> Verdict:
    """Classify a deck from its distributor ROI and, when given, retail ROI."""
    if distro_roi > VERDICT_THRESHOLD:
        if roi is None or roi > 0:
            return Verdict.BUY
        return Verdict.DISTRO
    if distro_roi >= 0:
        return Verdict.HOLD
    return Verdict.PASS


@dataclass(frozen=True)
class RoiSummary:
    """ROI figures for a deck value against its MSRP."""
    total_value: float
    msrp: float
    roi: float
    distro_cost: float
    distro_roi: float
    verdict: Verdict

    @classmethod
    def compute(
        cls,
        total: float,
        msrp: float,
        discount: Optional[float] = None,
    ) -> "RoiSummary":
        roi = calculate_roi(total, msrp)
        distro_cost = get_distro_cost(msrp, discount)
        distro_roi = calculate_distro_roi(total, distro_cost)
        return cls(
            total_value=total,
            msrp=msrp,
            roi=roi,
            distro_cost=distro_cost,
            distro_roi=distro_roi,
            verdict=get_roi_verdict(distro_roi, roi),
        )


def format_currency(value: float) -> str:
    """US dollar display, e.g. ``$1,234.50`` or ``-$3.00``."""
    amount = round_money(Decimal(str(value)))
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def format_percentage(value: float) -> str:
    """Signed percentage with one decimal, e.g. ``+20.0%``."""
    sign = "+" if value >= 0 else ""
    return f"{sign}{value:.1f}%"
