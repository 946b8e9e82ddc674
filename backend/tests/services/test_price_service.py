"""
Tests for the deck price service.
"""
import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from conftest import RecordingSleep, make_fetcher
from precon_roi.core.cache import LRUCache
from precon_roi.core.dedup import RequestDeduplicator
from precon_roi.core.exceptions import NotFoundError
from precon_roi.core.storage import MemoryStore
from precon_roi.services.ingestion.scryfall import ScryfallClient
from precon_roi.services.pricing.cache import PriceCache
from precon_roi.services.pricing.condition_pricing import ConditionPricer
from precon_roi.services.pricing.service import (
    SOURCE_LIVE,
    SOURCE_SNAPSHOT,
    DeckPriceService,
    DeckSelection,
    build_price_service,
)
from precon_roi.services.pricing.snapshot import (
    FileJsonSource,
    LowestListingsLoader,
    StaticSnapshotLoader,
)


def service_with(price_service, **overrides):
    """Copy of the fixture service with some collaborators replaced."""
    params = {
        "catalog": price_service.catalog,
        "decklists": price_service.decklists,
        "scryfall": price_service.scryfall,
        "snapshot": price_service.snapshot,
        "cache": price_service.cache,
        "config": price_service.config,
    }
    params.update(overrides)
    return DeckPriceService(**params)


class TestGetDeckPrices:
    """Snapshot first, live pricing as fallback."""

    @pytest.mark.asyncio
    async def test_snapshot_used_when_it_covers_deck(self, price_service, collection_handler):
        result = await price_service.get_deck_prices("otc-quick-draw")

        assert result.source == SOURCE_SNAPSHOT
        assert result.prices.total_value == Decimal("12.5")
        assert result.updated_at == "2024-09-01T00:00:00Z"
        assert collection_handler.requests == []
        assert price_service.cached_summary("otc-quick-draw") is None

    @pytest.mark.asyncio
    async def test_live_pricing_when_snapshot_lacks_deck(self, price_service):
        result = await price_service.get_deck_prices("blc-family-matters")

        assert result.source == SOURCE_LIVE
        # Zinnia 3.00 + Sol Ring 1.50 + 10 x Plains 0.10
        assert result.prices.total_value == Decimal("5.50")
        assert result.prices.card_count == 12
        assert result.prices.cards[0].name == "Zinnia, Valley's Voice"
        assert result.prices.cards[0].is_commander is True

    @pytest.mark.asyncio
    async def test_live_result_written_to_cache(self, price_service):
        await price_service.get_deck_prices("blc-family-matters")

        cached = price_service.cached_summary("blc-family-matters")
        assert cached.total_value == 5.5
        assert cached.card_count == 12
        assert [c.name for c in cached.top_cards][:2] == ["Zinnia, Valley's Voice", "Sol Ring"]
        assert price_service.cache.is_stale("blc-family-matters") is False

    @pytest.mark.asyncio
    async def test_live_pricing_without_snapshot_file(self, price_service, tmp_path):
        service = service_with(
            price_service,
            snapshot=StaticSnapshotLoader(FileJsonSource(tmp_path / "missing.json")),
        )
        result = await service.get_deck_prices("otc-quick-draw")
        assert result.source == SOURCE_LIVE

    @pytest.mark.asyncio
    async def test_unknown_deck(self, price_service):
        with pytest.raises(NotFoundError):
            await price_service.get_deck_prices("no-such-deck")

    @pytest.mark.asyncio
    async def test_deck_without_snapshot_or_decklist(self, price_service):
        with pytest.raises(NotFoundError, match="No decklist"):
            await price_service.get_deck_prices("40k-tyranid-swarm")

    @pytest.mark.asyncio
    async def test_lowest_listings_merged(self, price_service, tmp_path):
        path = tmp_path / "lowest-listings.json"
        path.write_text(json.dumps({
            "updatedAt": "2024-09-01T00:00:00Z",
            "cards": {"Sol Ring": {"name": "Sol Ring", "lowestListing": 1.99}},
        }), encoding="utf-8")
        service = service_with(price_service, listings=LowestListingsLoader(FileJsonSource(path)))

        result = await service.get_deck_prices("otc-quick-draw")

        sol_ring = next(c for c in result.prices.cards if c.name == "Sol Ring")
        assert sol_ring.lowest_listing == 1.99
        assert result.prices.top_cards[1].lowest_listing == 1.99


class TestSummarize:
    """API view with ROI and data age."""

    @pytest.mark.asyncio
    async def test_live_summary(self, price_service):
        summary = price_service.summarize(await price_service.get_deck_prices("blc-family-matters"))

        assert summary.source == "live"
        assert summary.totalValue == 5.5
        assert summary.updatedAgo == "Just now"
        assert summary.isStale is False
        assert summary.roiSummary.verdict == "PASS"
        assert summary.roiSummary.distroCost == pytest.approx(28.794)

        sol_ring = next(c for c in summary.cards if c.name == "Sol Ring")
        assert sol_ring.tcgplayerId == 555
        assert sol_ring.purchaseUrls["tcgplayer"] == "https://www.tcgplayer.com/product/555"
        assert "searchString" in sol_ring.purchaseUrls["cardmarket"]

    @pytest.mark.asyncio
    async def test_snapshot_summary_reports_static_age(self, price_service):
        summary = price_service.summarize(await price_service.get_deck_prices("otc-quick-draw"))

        assert summary.source == "snapshot"
        assert summary.updatedAt == "2024-09-01T00:00:00Z"
        assert summary.updatedAgo.endswith("days ago")
        assert summary.isStale is True
        assert [c.name for c in summary.topCards] == ["Stella Lee, Wild Card", "Sol Ring"]

    def test_roi_uses_configured_discount(self, price_service, catalog):
        price_service.config.default_distro_discount = 0.5
        roi = price_service.roi(catalog.get("otc-quick-draw"), 30.0)
        assert roi.distro_cost == pytest.approx(23.995)
        # Profitable only at distributor cost
        assert roi.verdict.value == "DISTRO"


class TestDeckSelection:
    """A superseded fetch never commits."""

    def test_only_latest_token_commits(self):
        selection = DeckSelection()
        first = selection.select("a")
        second = selection.select("b")

        assert selection.commit("a", first, object()) is False
        assert selection.result is None
        assert selection.commit("b", second, "result-b") is True
        assert selection.result == "result-b"

    @pytest.mark.asyncio
    async def test_slow_earlier_fetch_dropped(self, price_service):
        selection = DeckSelection()

        slow = asyncio.create_task(price_service.select_deck(selection, "blc-family-matters"))
        await asyncio.sleep(0)
        committed = await price_service.select_deck(selection, "otc-quick-draw")

        assert committed is True
        assert await slow is False
        assert selection.deck_id == "otc-quick-draw"
        assert selection.result.deck.id == "otc-quick-draw"


class TestCardLookups:
    """Single card, search, import and condition prices."""

    @pytest.mark.asyncio
    async def test_card_price_unknown(self, price_service):
        assert await price_service.get_card_price("Not A Card") is None

    @pytest.mark.asyncio
    async def test_card_price_found(self, price_service, make_card, test_settings):
        def handler(request):
            return httpx.Response(200, json=make_card("Sol Ring", usd=None, usd_foil="4.00"))

        scryfall = ScryfallClient(
            fetcher=make_fetcher(handler),
            deduplicator=RequestDeduplicator(),
            session_cache=LRUCache(),
            config=test_settings,
            sleep=RecordingSleep(),
        )
        service = service_with(price_service, scryfall=scryfall)
        assert await service.get_card_price("sol ring") == 4.0

    @pytest.mark.asyncio
    async def test_import_decklist(self, price_service):
        result = await price_service.import_decklist("1 Sol Ring\n2 Plains\n3x Plains\nNot A Card")

        assert [(c["name"], c["quantity"]) for c in result.cards] == [("Sol Ring", 1), ("Plains", 5)]
        plains = result.cards[1]
        assert plains["isBasicLand"] is True
        assert plains["total"] == 0.5
        assert result.not_found == ["Not A Card"]
        assert result.warnings == ["1 card(s) not found"]
        assert result.total_value == 2.0

    @pytest.mark.asyncio
    async def test_import_empty_decklist(self, price_service, collection_handler):
        result = await price_service.import_decklist("   \n")
        assert result.errors == ["No valid cards found in decklist"]
        assert collection_handler.requests == []

    @pytest.mark.asyncio
    async def test_condition_prices_unavailable_without_pricer(self, price_service):
        assert await price_service.get_condition_prices("Sol Ring") is None

    @pytest.mark.asyncio
    async def test_condition_prices(self, price_service, test_settings):
        def handler(request):
            return httpx.Response(200, json={"data": {
                "name": "Sol Ring",
                "setCode": "blc",
                "prices": [{"condition": "NM", "price": 1.5}, {"condition": "LP", "price": 1.25}],
                "marketPrice": 1.4,
            }})

        pricer = ConditionPricer(
            api_key="test-key",
            fetcher=make_fetcher(handler, base_url="https://api.justtcg.com"),
            config=test_settings,
        )
        service = service_with(price_service, condition_pricer=pricer)

        prices = await service.get_condition_prices("Sol Ring", "blc")

        assert prices.setCode == "blc"
        assert prices.prices["LP"] == 1.25
        assert prices.prices["DMG"] is None
        assert prices.cardPrice["usd_nm"] == "1.50"

    @pytest.mark.asyncio
    async def test_set_prices_absent_from_snapshot(self, price_service):
        assert await price_service.get_set_prices("OTC") is None


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_clear_cache_drops_summaries_and_session(self, price_service):
        await price_service.get_deck_prices("blc-family-matters")
        assert len(price_service.scryfall.session_cache) > 0

        assert price_service.clear_cache() == 1
        assert price_service.cached_summary("blc-family-matters") is None
        assert len(price_service.scryfall.session_cache) == 0

    @pytest.mark.asyncio
    async def test_cache_failures_do_not_break_pricing(self, price_service):
        service = service_with(price_service, cache=PriceCache(MemoryStore(quota_bytes=1)))
        result = await service.get_deck_prices("blc-family-matters")
        assert result.prices.total_value == Decimal("5.50")
        assert service.cached_summary("blc-family-matters") is None

    def test_build_price_service_from_settings(self, test_settings, snapshot_file):
        (snapshot_file.parent / "precons.json").write_text("[]", encoding="utf-8")
        (snapshot_file.parent / "decklists.json").write_text("{}", encoding="utf-8")

        service = build_price_service(test_settings)

        assert len(service.catalog) == 0
        assert service.snapshot.source.location == str(snapshot_file)
        assert service.cache.available is True
        assert service.condition_pricer.is_available() is False
        # Snapshot and lowest listings share one deduplicator with Scryfall
        assert service.snapshot.deduplicator is service.scryfall.deduplicator
