"""Condition-based pricing from JustTCG (NM / LP / MP / HP / DMG)."""
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field

from precon_roi.core.config import Settings, settings
from precon_roi.core.exceptions import NotFoundError
from precon_roi.core.rate_limit import WindowRateLimiter
from precon_roi.services.ingestion.base import FetchConfig, RateLimitedFetcher

logger = structlog.get_logger()


class CardCondition(str, Enum):
    NM = "NM"
    LP = "LP"
    MP = "MP"
    HP = "HP"
    DMG = "DMG"


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ConditionPrice(_ApiModel):
    condition: CardCondition
    price: Optional[float] = None
    quantity: Optional[int] = None


class PriceTrend(_ApiModel):
    change_24h: Optional[float] = Field(default=None, alias="change24h")
    change_7d: Optional[float] = Field(default=None, alias="change7d")
    change_30d: Optional[float] = Field(default=None, alias="change30d")


class JustTCGCard(_ApiModel):
    name: str
    tcgplayer_id: Optional[int] = Field(default=None, alias="tcgplayerId")
    scryfall_id: Optional[str] = Field(default=None, alias="scryfallId")
    set_code: Optional[str] = Field(default=None, alias="setCode")
    set_name: Optional[str] = Field(default=None, alias="setName")
    prices: list[ConditionPrice] = Field(default_factory=list)
    market_price: Optional[float] = Field(default=None, alias="marketPrice")
    low_price: Optional[float] = Field(default=None, alias="lowPrice")
    trends: Optional[PriceTrend] = None
    last_updated: Optional[str] = Field(default=None, alias="lastUpdated")


class JustTCGIdentifier(_ApiModel):
    tcgplayer_id: Optional[int] = Field(default=None, alias="tcgplayerId")
    scryfall_id: Optional[str] = Field(default=None, alias="scryfallId")
    mtgjson_id: Optional[str] = Field(default=None, alias="mtgjsonId")
    name: Optional[str] = None
    set_code: Optional[str] = Field(default=None, alias="setCode")

    def to_params(self) -> dict[str, str]:
        return {
            key: str(value)
            for key, value in self.model_dump(by_alias=True, exclude_none=True).items()
        }


class JustTCGError(_ApiModel):
    identifier: str
    message: str


class JustTCGResponse(_ApiModel):
    success: bool = True
    data: list[JustTCGCard] = Field(default_factory=list)
    errors: list[JustTCGError] = Field(default_factory=list)


def get_price_by_condition(
    card: JustTCGCard,
    condition: CardCondition = CardCondition.NM,
) -> Optional[float]:
    for entry in card.prices:
        if entry.condition == condition:
            return entry.price
    return None


def get_near_mint_price(card: JustTCGCard) -> Optional[float]:
    """NM price, falling back to the market price."""
    price = get_price_by_condition(card, CardCondition.NM)
    return price if price is not None else card.market_price


def get_all_condition_prices(card: JustTCGCard) -> dict[str, Optional[float]]:
    return {
        condition.value: get_price_by_condition(card, condition)
        for condition in CardCondition
    }


def _fixed(value: Optional[float]) -> Optional[str]:
    return f"{value:.2f}" if value is not None else None


def map_to_card_price(card: JustTCGCard) -> dict[str, Optional[str]]:
    """Condition prices in the two-decimal string format used for card prices."""
    nm_price = get_near_mint_price(card)
    return {
        "usd": _fixed(nm_price),
        "usd_nm": _fixed(nm_price),
        "usd_lp": _fixed(get_price_by_condition(card, CardCondition.LP)),
        "marketPrice": _fixed(card.market_price),
        "lowPrice": _fixed(card.low_price),
    }


class ConditionPricer:
    """
    JustTCG client for per-condition prices.

    The free tier allows 10 requests per minute; the window limiter waits
    for the next window at most ``rate_limit_max_wait_attempts`` times.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        fetcher: Optional[RateLimitedFetcher] = None,
        config: Settings = settings,
    ):
        self.api_key = api_key if api_key is not None else config.justtcg_api_key
        if fetcher is None:
            fetcher = RateLimitedFetcher(
                FetchConfig(
                    base_url=config.justtcg_base_url,
                    rate_limit_seconds=0,
                    max_retries=config.justtcg_max_retries,
                    backoff_factor=config.backoff_factor,
                    max_backoff_seconds=config.max_backoff_seconds,
                    timeout_seconds=config.request_timeout_seconds,
                    user_agent=config.user_agent,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                ),
                name="JustTCG",
                window_limiter=WindowRateLimiter(
                    config.justtcg_rate_limit,
                    window_seconds=config.justtcg_window_seconds,
                    max_wait_attempts=config.rate_limit_max_wait_attempts,
                    name="justtcg",
                ),
            )
        self.fetcher = fetcher

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> None:
        if not self.api_key:
            raise ValueError("JustTCG API key not configured")

    async def fetch_card(self, identifier: JustTCGIdentifier) -> Optional[JustTCGCard]:
        """Single card lookup; None when JustTCG does not know the card."""
        self._require_key()
        try:
            data = await self.fetcher.get_json("/v1/card", params=identifier.to_params())
        except NotFoundError:
            return None

        card = data.get("data") if isinstance(data, dict) else None
        if not card:
            return None
        return JustTCGCard.model_validate(card)

    async def fetch_cards(
        self,
        identifiers: list[JustTCGIdentifier],
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> JustTCGResponse:
        """Batch lookup in a single request."""
        self._require_key()
        body = {
            "identifiers": [
                identifier.model_dump(by_alias=True, exclude_none=True)
                for identifier in identifiers
            ]
        }
        data = await self.fetcher.post_json("/v1/cards", body)
        response = JustTCGResponse.model_validate(data)

        if response.errors:
            logger.info(
                "JustTCG batch partially resolved",
                requested=len(identifiers),
                errors=len(response.errors),
            )
        if on_progress:
            on_progress(len(response.data), len(identifiers))
        return response

    async def close(self) -> None:
        await self.fetcher.close()
