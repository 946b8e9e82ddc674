"""
Tests for the static snapshot loaders.
"""
import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.services.pricing.snapshot import (
    FileJsonSource,
    HttpJsonSource,
    JsonSource,
    LowestListingsLoader,
    StaticSnapshotLoader,
    create_source,
)
from precon_roi.services.pricing.valuation import PricedCard


class CountingSource(JsonSource):
    """In-memory source that counts reads and can fail or block."""

    def __init__(self, document=None, error=None):
        self.document = document
        self.error = error
        self.reads = 0
        self.release = asyncio.Event()
        self.release.set()

    @property
    def location(self) -> str:
        return "memory://prices.json"

    async def read(self):
        self.reads += 1
        await self.release.wait()
        if self.error is not None:
            raise self.error
        return self.document


class TestStaticSnapshotLoader:
    """prices.json access."""

    @pytest.mark.asyncio
    async def test_deck_prices_from_file(self, snapshot_file):
        loader = StaticSnapshotLoader(FileJsonSource(snapshot_file))
        deck = await loader.get_deck_prices("otc-quick-draw")

        assert deck.total_value == Decimal("12.5")
        assert deck.card_count == 2
        assert [c.name for c in deck.top_cards] == ["Stella Lee, Wild Card", "Sol Ring"]
        assert deck.cards[0].is_commander is True
        assert deck.cards[0].tcgplayer_id == 111
        assert deck.missing_count == 0

    @pytest.mark.asyncio
    async def test_unknown_deck(self, snapshot_file):
        loader = StaticSnapshotLoader(FileJsonSource(snapshot_file))
        assert await loader.get_deck_prices("blc-family-matters") is None
        assert await loader.has_deck("blc-family-matters") is False
        assert await loader.has_deck("otc-quick-draw") is True

    @pytest.mark.asyncio
    async def test_top_cards_skip_unpriced(self, snapshot_document):
        snapshot_document["decks"]["otc-quick-draw"]["cards"].insert(
            0, {"name": "Mystery Card", "quantity": 1, "usd": None}
        )
        loader = StaticSnapshotLoader(CountingSource(snapshot_document))
        deck = await loader.get_deck_prices("otc-quick-draw", top_n=1)

        assert [c.name for c in deck.top_cards] == ["Stella Lee, Wild Card"]
        assert deck.missing_count == 1

    @pytest.mark.asyncio
    async def test_timestamp_and_sets(self, snapshot_document):
        snapshot_document["sets"] = {
            "otc": [{"name": "Sol Ring", "collector_number": "267", "usd": "2.50"}]
        }
        loader = StaticSnapshotLoader(CountingSource(snapshot_document))

        assert await loader.get_timestamp() == "2024-09-01T00:00:00Z"
        sets = await loader.get_set_prices("otc")
        assert sets[0].collector_number == "267"
        assert await loader.get_set_prices("blc") is None

    @pytest.mark.asyncio
    async def test_memoized_after_first_success(self, snapshot_document):
        source = CountingSource(snapshot_document)
        loader = StaticSnapshotLoader(source)

        await loader.get_deck_prices("otc-quick-draw")
        await loader.get_timestamp()
        assert source.reads == 1
        assert loader.loaded

        loader.reset()
        await loader.get_timestamp()
        assert source.reads == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_loads_share_one_read(self, snapshot_document):
        source = CountingSource(snapshot_document)
        source.release.clear()
        loader = StaticSnapshotLoader(source, RequestDeduplicator())

        tasks = [asyncio.create_task(loader.get_timestamp()) for _ in range(4)]
        await asyncio.sleep(0)
        source.release.set()

        assert await asyncio.gather(*tasks) == ["2024-09-01T00:00:00Z"] * 4
        assert source.reads == 1

    @pytest.mark.asyncio
    async def test_failure_returns_none_and_is_not_memoized(self, snapshot_document):
        source = CountingSource(error=OSError("disk gone"))
        loader = StaticSnapshotLoader(source)

        assert await loader.get_deck_prices("otc-quick-draw") is None
        assert not loader.loaded

        source.error = None
        source.document = snapshot_document
        assert await loader.get_deck_prices("otc-quick-draw") is not None
        assert source.reads == 2

    @pytest.mark.asyncio
    async def test_invalid_document_returns_none(self):
        loader = StaticSnapshotLoader(CountingSource({"decks": "nope"}))
        assert await loader.get_timestamp() is None

    @pytest.mark.asyncio
    async def test_missing_file_returns_none(self, tmp_path):
        loader = StaticSnapshotLoader(FileJsonSource(tmp_path / "absent.json"))
        assert await loader.get_deck_prices("otc-quick-draw") is None

    @pytest.mark.asyncio
    async def test_no_source(self):
        assert await StaticSnapshotLoader(None).get_timestamp() is None


class TestHttpSource:
    @pytest.mark.asyncio
    async def test_reads_over_http(self, snapshot_document):
        def handler(request):
            assert request.url.path == "/data/prices.json"
            return httpx.Response(200, json=snapshot_document)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        loader = StaticSnapshotLoader(HttpJsonSource("https://site.example/data/prices.json", client=client))

        assert await loader.has_deck("otc-quick-draw") is True
        await client.aclose()

    @pytest.mark.asyncio
    async def test_http_error_returns_none(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        loader = StaticSnapshotLoader(HttpJsonSource("https://site.example/data/prices.json", client=client))

        assert await loader.get_timestamp() is None
        await client.aclose()

    def test_create_source(self, tmp_path):
        assert isinstance(create_source("https://x/prices.json", tmp_path / "p.json"), HttpJsonSource)
        assert isinstance(create_source(None, tmp_path / "p.json"), FileJsonSource)
        assert create_source(None, None) is None


class TestLowestListingsLoader:
    @pytest.fixture
    def listings_file(self, tmp_path):
        path = tmp_path / "lowest-listings.json"
        path.write_text(json.dumps({
            "updatedAt": "2024-09-01T00:00:00Z",
            "cards": {"Sol Ring": {"name": "Sol Ring", "lowestListing": 1.05}},
        }), encoding="utf-8")
        return path

    @pytest.mark.asyncio
    async def test_lookup(self, listings_file):
        loader = LowestListingsLoader(FileJsonSource(listings_file))
        assert await loader.get_lowest_listing("Sol Ring") == 1.05
        assert await loader.get_lowest_listing("Plains") is None

    @pytest.mark.asyncio
    async def test_merge_annotates_copies(self, listings_file):
        loader = LowestListingsLoader(FileJsonSource(listings_file))
        cards = [
            PricedCard(name="Sol Ring", quantity=1, price=Decimal("1.50"), total=Decimal("1.50"), usd="1.50"),
            PricedCard(name="Plains", quantity=10, price=Decimal("0.10"), total=Decimal("1.00"), usd="0.10"),
        ]

        merged = await loader.merge_lowest_listings(cards)

        assert [c.lowest_listing for c in merged] == [1.05, None]
        assert cards[0].lowest_listing is None

    @pytest.mark.asyncio
    async def test_merge_without_data_returns_input(self, tmp_path):
        loader = LowestListingsLoader(FileJsonSource(tmp_path / "absent.json"))
        cards = [PricedCard(name="Sol Ring", quantity=1, price=Decimal("1"), total=Decimal("1"))]
        assert await loader.merge_lowest_listings(cards) is cards
