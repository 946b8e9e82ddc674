"""
Deck catalog and decklist schemas.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

ManaColor = Literal["W", "U", "B", "R", "G", "C"]


class PreconDeck(BaseModel):
    """A Commander precon product."""
    id: str
    name: str
    set: str
    year: int
    msrp: float = Field(ge=0)
    set_code: str = Field(alias="setCode")
    colors: list[ManaColor] = Field(default_factory=list)
    edhrec: Optional[str] = None
    is_custom: bool = Field(default=False, alias="isCustom")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class DeckEntry(BaseModel):
    """One line of a decklist."""
    name: str = Field(min_length=1)
    quantity: PositiveInt = 1
    is_commander: bool = Field(default=False, alias="isCommander")
    set_code: Optional[str] = Field(default=None, alias="setCode")

    model_config = ConfigDict(populate_by_name=True, frozen=True)
