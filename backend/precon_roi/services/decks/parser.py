"""Plain-text decklist parsing ("1 Sol Ring", "2x Forest", "Arcane Signet")."""
import re
from dataclasses import dataclass, field

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

logger = structlog.get_logger()

MAX_CARDS = 150
MAX_QUANTITY_PER_CARD = 10
MAX_CARD_NAME_LENGTH = 200

BASIC_LAND_NAMES = frozenset({"Plains", "Island", "Swamp", "Mountain", "Forest", "Wastes"})

_LINE = re.compile(r"^(?:(\d+)\s*[xX]?\s+)?(.+)$")
_DANGEROUS = re.compile(r"[<>{}\[\]\\]")


def is_basic_land(card_name: str) -> bool:
    return card_name in BASIC_LAND_NAMES


def sanitize_card_name(name: str) -> str:
    return re.sub(r"\s+", " ", _DANGEROUS.sub("", name)).strip()


class ParsedEntry(BaseModel):
    name: str = Field(min_length=1, max_length=MAX_CARD_NAME_LENGTH)
    quantity: int = Field(ge=1, le=MAX_QUANTITY_PER_CARD)

    @field_validator("name", mode="after")
    @classmethod
    def clean_name(cls, v: str) -> str:
        cleaned = sanitize_card_name(v)
        if not cleaned:
            raise ValueError("Card name cannot be empty after sanitization")
        return cleaned


@dataclass
class ParsedDecklist:
    entries: list[ParsedEntry] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors


def _clamp(quantity: int) -> int:
    return min(max(quantity, 1), MAX_QUANTITY_PER_CARD)


def parse_decklist_text(text: str) -> ParsedDecklist:
    """
    Parse one card per line.

    Out-of-range quantities are clamped with a warning, invalid names are
    skipped with a warning, and lists beyond ``MAX_CARDS`` entries are
    truncated. A list with no valid entry is an error.
    """
    result = ParsedDecklist()
    lines = [line.strip() for line in text.splitlines() if line.strip()]

    for line_num, line in enumerate(lines, start=1):
        match = _LINE.match(line)
        if not match:
            result.warnings.append(f'Line {line_num}: Could not parse "{line[:30]}..."')
            continue

        quantity = int(match.group(1)) if match.group(1) else 1
        # "0 Sol Ring" reads as quantity 1, like a missing count
        quantity = quantity or 1
        name = match.group(2).strip()

        if quantity != _clamp(quantity):
            quantity = _clamp(quantity)
            result.warnings.append(f"Line {line_num}: Quantity clamped to {quantity}")

        try:
            entry = ParsedEntry(name=name, quantity=quantity)
        except ValidationError:
            result.warnings.append(f"Line {line_num}: Skipped invalid card name")
            continue
        result.entries.append(entry)

    if not result.entries:
        result.errors.append("No valid cards found in decklist")
        return result

    if len(result.entries) > MAX_CARDS:
        result.warnings.append(
            f"Decklist truncated from {len(result.entries)} to {MAX_CARDS} cards"
        )
        result.entries = result.entries[:MAX_CARDS]

    if result.warnings:
        logger.debug("Decklist parsed with warnings", warnings=len(result.warnings))
    return result
