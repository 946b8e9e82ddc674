"""
Precon catalog and decklists.

Both live as JSON data files shared by the API and the batch refresh:
``precons.json`` (a list of products) and ``decklists.json`` (deck id ->
list of ``{"name", "quantity", "isCommander"?}`` entries).
"""
import json
from pathlib import Path
from typing import Iterable, Optional

import structlog
from pydantic import TypeAdapter

from precon_roi.core.config import Settings, settings
from precon_roi.schemas.decks import DeckEntry, PreconDeck

logger = structlog.get_logger()

_precons_adapter = TypeAdapter(list[PreconDeck])
_decklists_adapter = TypeAdapter(dict[str, list[DeckEntry]])


def _read_json(path: Path):
    with open(path, encoding="utf-8") as f:
        return json.load(f)


class DeckCatalog:
    """Read-only index of precon products."""

    def __init__(self, decks: Iterable[PreconDeck]):
        self._decks = list(decks)
        self._by_id = {deck.id: deck for deck in self._decks}

    @classmethod
    def from_file(cls, path: str | Path) -> "DeckCatalog":
        decks = _precons_adapter.validate_python(_read_json(Path(path)))
        logger.debug("Loaded precon catalog", path=str(path), decks=len(decks))
        return cls(decks)

    def __len__(self) -> int:
        return len(self._decks)

    def __contains__(self, deck_id: str) -> bool:
        return deck_id in self._by_id

    def get(self, deck_id: str) -> Optional[PreconDeck]:
        return self._by_id.get(deck_id)

    def all(self, year: Optional[int] = None, set_code: Optional[str] = None) -> list[PreconDeck]:
        decks = self._decks
        if year is not None:
            decks = [d for d in decks if d.year == year]
        if set_code is not None:
            decks = [d for d in decks if d.set_code == set_code.lower()]
        return list(decks)

    def years(self) -> list[int]:
        """Release years, newest first."""
        return sorted({deck.year for deck in self._decks}, reverse=True)

    def sets(self) -> list[str]:
        """Distinct set codes in catalog order."""
        return list(dict.fromkeys(deck.set_code for deck in self._decks))

    def set_code_map(self) -> dict[str, str]:
        """Deck id -> set code."""
        return {deck.id: deck.set_code for deck in self._decks}


class Decklists:
    """Decklists keyed by deck id, resolved against the catalog."""

    def __init__(self, lists: dict[str, list[DeckEntry]], catalog: DeckCatalog):
        self._lists = lists
        self.catalog = catalog

    @classmethod
    def from_file(cls, path: str | Path, catalog: DeckCatalog) -> "Decklists":
        lists = _decklists_adapter.validate_python(_read_json(Path(path)))
        unknown = [deck_id for deck_id in lists if deck_id not in catalog]
        if unknown:
            logger.warning("Decklists without catalog entry", deck_ids=unknown)
        return cls(lists, catalog)

    def deck_ids(self) -> list[str]:
        return [deck_id for deck_id, cards in self._lists.items() if cards]

    def has_deck_list(self, deck_id: str) -> bool:
        return bool(self._lists.get(deck_id))

    def get_deck_cards(self, deck_id: str) -> list[DeckEntry]:
        """
        Entries of a deck carrying the deck's set code.

        Exactly one entry is marked commander: the flagged one if the list
        flags any, otherwise the first.
        """
        cards = self._lists.get(deck_id) or []
        if not cards:
            return []

        deck = self.catalog.get(deck_id)
        set_code = deck.set_code if deck is not None else None
        has_flag = any(card.is_commander for card in cards)

        entries = []
        for index, card in enumerate(cards):
            is_commander = card.is_commander if has_flag else index == 0
            entries.append(card.model_copy(update={
                "set_code": set_code or card.set_code,
                "is_commander": is_commander,
            }))
        return entries

    def needed_card_sets(self) -> dict[str, set[str]]:
        """Card name -> set codes it must be priced in, across every deck."""
        needed: dict[str, set[str]] = {}
        for deck_id in self.deck_ids():
            for entry in self.get_deck_cards(deck_id):
                if entry.set_code:
                    needed.setdefault(entry.name, set()).add(entry.set_code.lower())
        return needed


def load_catalog(config: Settings = settings) -> tuple[DeckCatalog, Decklists]:
    catalog = DeckCatalog.from_file(config.precons_path)
    return catalog, Decklists.from_file(config.decklists_path, catalog)
