"""Pricing services: printing selection, valuation, caching and snapshots."""
from .cache import PriceCache
from .selection import PriceSelection, Printing, select_printing
from .snapshot import StaticSnapshotLoader
from .valuation import RoiSummary, Verdict, price_deck

__all__ = [
    "PriceCache",
    "PriceSelection",
    "Printing",
    "select_printing",
    "StaticSnapshotLoader",
    "RoiSummary",
    "Verdict",
    "price_deck",
]
