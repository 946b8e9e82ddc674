"""Marketplace links for a card."""
import re
from typing import Optional
from urllib.parse import quote

TCGPLAYER_PRODUCT_URL = "https://www.tcgplayer.com/product/{id}"
TCGPLAYER_SEARCH_URL = "https://www.tcgplayer.com/search/magic/product?q={q}"
CARDMARKET_PRODUCT_URL = "https://www.cardmarket.com/en/Magic/Products/Singles/{id}"
CARDMARKET_SEARCH_URL = "https://www.cardmarket.com/en/Magic/Cards?searchString={q}"

MAX_NAME_LENGTH = 200
_UNSAFE_NAME = re.compile(r"<|>|javascript:", re.IGNORECASE)


def is_valid_card_name(name: str) -> bool:
    if not name or len(name) > MAX_NAME_LENGTH:
        return False
    return not _UNSAFE_NAME.search(name)


def get_tcgplayer_url(card_name: str, tcgplayer_id: Optional[int] = None) -> Optional[str]:
    """Direct product link when the id is known, else a search link."""
    if tcgplayer_id:
        return TCGPLAYER_PRODUCT_URL.format(id=tcgplayer_id)
    if not is_valid_card_name(card_name):
        return None
    return TCGPLAYER_SEARCH_URL.format(q=quote(card_name, safe=""))


def get_cardmarket_url(card_name: str, cardmarket_id: Optional[int] = None) -> Optional[str]:
    if cardmarket_id:
        return CARDMARKET_PRODUCT_URL.format(id=cardmarket_id)
    if not is_valid_card_name(card_name):
        return None
    # Cardmarket search wants '+' between words and no quotes or commas
    search = re.sub(r"\s+", "+", card_name.replace("'", "").replace(",", ""))
    return CARDMARKET_SEARCH_URL.format(q=quote(search, safe=""))


def get_purchase_urls(
    card_name: str,
    tcgplayer_id: Optional[int] = None,
    cardmarket_id: Optional[int] = None,
) -> dict[str, str]:
    urls = {
        "tcgplayer": get_tcgplayer_url(card_name, tcgplayer_id),
        "cardmarket": get_cardmarket_url(card_name, cardmarket_id),
    }
    return {market: url for market, url in urls.items() if url}
