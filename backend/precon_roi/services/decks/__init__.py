"""Precon catalog, decklists and decklist text parsing."""
from .catalog import DeckCatalog, Decklists, load_catalog
from .parser import is_basic_land, parse_decklist_text

__all__ = ["DeckCatalog", "Decklists", "load_catalog", "is_basic_land", "parse_decklist_text"]
