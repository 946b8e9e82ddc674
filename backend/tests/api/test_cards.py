"""
Tests for card API endpoints.
"""
import pytest
from httpx import AsyncClient

from precon_roi.services.pricing.condition_pricing import ConditionPricer


@pytest.mark.asyncio
async def test_search_short_query_is_empty(client: AsyncClient):
    """Single-character queries never reach Scryfall."""
    response = await client.get("/api/cards/search", params={"q": "s"})
    assert response.status_code == 200
    data = response.json()
    assert data["cards"] == []
    assert data["total"] == 0


@pytest.mark.asyncio
async def test_search_no_matches(client: AsyncClient):
    """Scryfall 404 on search means no results."""
    response = await client.get("/api/cards/search", params={"q": "zzzz"})
    assert response.status_code == 200
    assert response.json()["cards"] == []


@pytest.mark.asyncio
async def test_card_price_not_found(client: AsyncClient):
    response = await client.get("/api/cards/price", params={"name": "Not A Card"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_collection(client: AsyncClient):
    response = await client.post("/api/cards/collection", json={"names": ["Sol Ring", "Not A Card"]})
    assert response.status_code == 200
    data = response.json()
    assert [c["name"] for c in data["found"]] == ["Sol Ring"]
    assert data["notFound"] == ["Not A Card"]


@pytest.mark.asyncio
async def test_collection_requires_names(client: AsyncClient):
    response = await client.post("/api/cards/collection", json={"names": []})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_value_of_ad_hoc_list(client: AsyncClient):
    cards = [
        {"name": "Sol Ring", "price": 1.5, "quantity": 2},
        {"name": "Plains", "prices": {"usd": "0.10"}},
        {"name": "Zinnia", "total": 9.0},
    ]
    response = await client.post("/api/cards/value", json={"cards": cards})
    assert response.status_code == 200
    data = response.json()

    assert data["totalValue"] == 12.1
    assert [c["name"] for c in data["topCards"]] == ["Zinnia", "Sol Ring", "Plains"]
    assert data["topCards"][1]["value"] == 3.0


@pytest.mark.asyncio
async def test_import_decklist(client: AsyncClient):
    response = await client.post("/api/cards/import", json={"text": "1 Sol Ring\n10 Plains\nNot A Card"})
    assert response.status_code == 200
    data = response.json()

    assert [c["name"] for c in data["cards"]] == ["Sol Ring", "Plains"]
    assert data["notFound"] == ["Not A Card"]
    assert data["totalValue"] == 2.5


@pytest.mark.asyncio
async def test_import_without_cards_is_422(client: AsyncClient):
    response = await client.post("/api/cards/import", json={"text": "\n \n"})
    assert response.status_code == 422
    assert response.json()["detail"] == "No valid cards found in decklist"


@pytest.mark.asyncio
async def test_condition_prices_not_configured(client: AsyncClient):
    response = await client.get("/api/cards/conditions", params={"name": "Sol Ring"})
    assert response.status_code == 503


@pytest.mark.asyncio
async def test_condition_prices_unknown_card(client: AsyncClient, price_service, test_settings):
    async def no_card(identifier):
        return None

    pricer = ConditionPricer(api_key="test-key", config=test_settings)
    pricer.fetch_card = no_card
    price_service.condition_pricer = pricer

    response = await client.get("/api/cards/conditions", params={"name": "Nope", "set": "blc"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_set_prices_missing(client: AsyncClient):
    response = await client.get("/api/cards/sets/otc")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_set_prices(client: AsyncClient, price_service, snapshot_document, tmp_path):
    import json

    from precon_roi.services.pricing.snapshot import FileJsonSource, StaticSnapshotLoader

    snapshot_document["sets"] = {"otc": [{"name": "Sol Ring", "collector_number": "267", "usd": "2.50"}]}
    path = tmp_path / "with-sets.json"
    path.write_text(json.dumps(snapshot_document), encoding="utf-8")
    price_service.snapshot = StaticSnapshotLoader(FileJsonSource(path))

    response = await client.get("/api/cards/sets/OTC")
    assert response.status_code == 200
    assert response.json() == {
        "set": "otc",
        "cards": [{"name": "Sol Ring", "collector_number": "267", "usd": "2.50"}],
    }


@pytest.mark.asyncio
async def test_clear_cache(client: AsyncClient):
    await client.get("/api/decks/blc-family-matters/prices")

    response = await client.delete("/api/cache")
    assert response.status_code == 200
    assert response.json() == {"removed": 1}

    response = await client.delete("/api/cache")
    assert response.json() == {"removed": 0}
