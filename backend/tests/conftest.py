"""
Pytest configuration and fixtures.

Provides fixtures for:
- Recording sleep / controllable clock for rate limit tests
- Scryfall card payloads and a mock-transport fetcher
- A fully wired DeckPriceService over in-memory collaborators
- HTTP client against the FastAPI app with the service overridden
"""
import json
from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Optional

import httpx
import pytest
import pytest_asyncio

from precon_roi.core.cache import LRUCache
from precon_roi.core.config import Settings
from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.storage import MemoryStore
from precon_roi.schemas.decks import DeckEntry, PreconDeck
from precon_roi.services.decks.catalog import DeckCatalog, Decklists
from precon_roi.services.ingestion.base import FetchConfig, RateLimitedFetcher
from precon_roi.services.ingestion.scryfall import ScryfallClient
from precon_roi.services.pricing.cache import PriceCache
from precon_roi.services.pricing.service import DeckPriceService
from precon_roi.services.pricing.snapshot import FileJsonSource, StaticSnapshotLoader


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in that records delays and advances a clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeper(clock) -> RecordingSleep:
    return RecordingSleep(clock)


def scryfall_card(
    name: str,
    set_code: str = "blc",
    collector_number: str = "1",
    usd: Optional[str] = "1.00",
    usd_foil: Optional[str] = None,
    promo: bool = False,
    frame_effects: Optional[list[str]] = None,
    border_color: str = "black",
    tcgplayer_id: Optional[int] = None,
    cardmarket_id: Optional[int] = None,
) -> dict[str, Any]:
    """Minimal Scryfall card object."""
    card: dict[str, Any] = {
        "object": "card",
        "id": f"{set_code}-{collector_number}-{name}",
        "name": name,
        "set": set_code,
        "collector_number": collector_number,
        "promo": promo,
        "frame_effects": frame_effects or [],
        "border_color": border_color,
        "prices": {"usd": usd, "usd_foil": usd_foil},
        "image_uris": {"normal": f"https://img.example/{set_code}/{collector_number}.jpg"},
    }
    if tcgplayer_id is not None:
        card["tcgplayer_id"] = tcgplayer_id
    if cardmarket_id is not None:
        card["cardmarket_id"] = cardmarket_id
    return card


@pytest.fixture
def make_card() -> Callable[..., dict[str, Any]]:
    return scryfall_card


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from the environment and the packaged data."""
    return Settings(
        _env_file=None,
        data_dir=str(tmp_path),
        price_cache_backend="memory",
        justtcg_api_key="",
    )


def make_fetcher(
    handler: Callable[[httpx.Request], httpx.Response],
    sleep: Optional[RecordingSleep] = None,
    **config: Any,
) -> RateLimitedFetcher:
    """Fetcher whose HTTP traffic goes to ``handler``."""
    base_url = config.pop("base_url", "https://api.scryfall.com")
    config.setdefault("rate_limit_seconds", 0)
    client = httpx.AsyncClient(base_url=base_url, transport=httpx.MockTransport(handler))
    return RateLimitedFetcher(
        FetchConfig(base_url=base_url, **config),
        name="Test",
        client=client,
        sleep=sleep or RecordingSleep(),
    )


@pytest.fixture
def precon_decks() -> list[PreconDeck]:
    return [
        PreconDeck(
            id="blc-family-matters",
            name="Family Matters",
            set="Bloomburrow",
            year=2024,
            msrp=47.99,
            setCode="blc",
            colors=["W", "R"],
        ),
        PreconDeck(
            id="otc-quick-draw",
            name="Quick Draw",
            set="Outlaws of Thunder Junction",
            year=2024,
            msrp=47.99,
            setCode="otc",
            colors=["U", "R"],
        ),
        PreconDeck(
            id="40k-tyranid-swarm",
            name="Tyranid Swarm",
            set="Warhammer 40,000",
            year=2022,
            msrp=59.99,
            setCode="40k",
            colors=["R", "G"],
        ),
    ]


@pytest.fixture
def catalog(precon_decks) -> DeckCatalog:
    return DeckCatalog(precon_decks)


@pytest.fixture
def decklists(catalog) -> Decklists:
    return Decklists(
        {
            "blc-family-matters": [
                DeckEntry(name="Zinnia, Valley's Voice", quantity=1, is_commander=True),
                DeckEntry(name="Sol Ring", quantity=1),
                DeckEntry(name="Plains", quantity=10),
            ],
            "otc-quick-draw": [
                DeckEntry(name="Stella Lee, Wild Card", quantity=1),
                DeckEntry(name="Sol Ring", quantity=1),
            ],
        },
        catalog,
    )


@pytest.fixture
def snapshot_document() -> dict[str, Any]:
    """prices.json covering one deck."""
    return {
        "updatedAt": "2024-09-01T00:00:00Z",
        "decks": {
            "otc-quick-draw": {
                "totalValue": 12.5,
                "cardCount": 2,
                "cards": [
                    {"name": "Stella Lee, Wild Card", "quantity": 1, "usd": "10.00",
                     "isCommander": True, "tcgplayerId": 111},
                    {"name": "Sol Ring", "quantity": 1, "usd": "2.50"},
                ],
            }
        },
    }


@pytest.fixture
def snapshot_file(tmp_path, snapshot_document) -> Path:
    path = tmp_path / "prices.json"
    path.write_text(json.dumps(snapshot_document), encoding="utf-8")
    return path


@pytest.fixture
def collection_handler(make_card):
    """Scryfall mock answering /cards/collection from a fixed card pool."""
    pool = [
        make_card("Zinnia, Valley's Voice", "blc", "1", usd="3.00"),
        make_card("Zinnia, Valley's Voice", "blc", "90", usd="9.00", border_color="borderless"),
        make_card("Sol Ring", "blc", "293", usd="1.50", tcgplayer_id=555),
        make_card("Plains", "blc", "300", usd="0.10"),
    ]
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/cards/collection":
            body = json.loads(request.content)
            requests.append(body)
            found, not_found = [], []
            for ident in body["identifiers"]:
                matches = [
                    c for c in pool
                    if c["name"].lower() == ident["name"].lower()
                    and ("set" not in ident or c["set"] == ident["set"])
                ]
                if matches:
                    found.extend(matches)
                else:
                    not_found.append(ident)
            return httpx.Response(200, json={"data": found, "not_found": not_found})
        return httpx.Response(404, json={"object": "error"})

    handler.requests = requests
    return handler


@pytest.fixture
def scryfall_client(collection_handler, test_settings) -> ScryfallClient:
    return ScryfallClient(
        fetcher=make_fetcher(collection_handler),
        deduplicator=RequestDeduplicator(),
        session_cache=LRUCache(max_size=100),
        config=test_settings,
        sleep=RecordingSleep(),
    )


@pytest.fixture
def price_service(
    catalog, decklists, scryfall_client, snapshot_file, test_settings
) -> DeckPriceService:
    return DeckPriceService(
        catalog=catalog,
        decklists=decklists,
        scryfall=scryfall_client,
        snapshot=StaticSnapshotLoader(FileJsonSource(snapshot_file)),
        cache=PriceCache(MemoryStore()),
        config=test_settings,
    )


@pytest_asyncio.fixture(scope="function")
async def client(price_service) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client against the app with the price service overridden."""
    from precon_roi.api.deps import get_price_service
    from precon_roi.main import app

    app.dependency_overrides[get_price_service] = lambda: price_service

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
