"""Steam ストア / SteamSpy アダプタの写像と「データなし」扱いを検証する。"""

from __future__ import annotations

import httpx
import pytest

from game_catalog_sync.core.ingest.models import GameRecord, SourceName
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.infra.http.errors import HTTPStatusError
from game_catalog_sync.infra.http.retry import RetryExecutor, RetryPolicy
from game_catalog_sync.infra.sources.steam import (
    SteamSpyAdapter,
    SteamStoreAdapter,
    compute_review_score,
    extract_steam_appid,
    resolve_steam_appid,
)
from game_catalog_sync.shared.types import GameID

STORE_URL = "https://store.example.com/api/appdetails"
SPY_URL = "https://spy.example.com/api.php"


def _http(handler, source: str) -> CatalogHttpClient:
    return CatalogHttpClient(
        source=source,
        retry_executor=RetryExecutor(
            policy=RetryPolicy(max_attempts=2, base_delay=0.0), sleeper=lambda _: None
        ),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _app_details(**overrides) -> dict:
    data = {
        "type": "game",
        "name": "Portal 2",
        "is_free": False,
        "price_overview": {"currency": "USD", "initial": 999, "final": 499},
        "platforms": {"windows": True, "mac": True, "linux": False},
        "genres": [{"id": "1", "description": "Action"}, {"id": "2", "description": "Puzzle"}],
        "categories": [{"id": 2, "description": "Single-player"}],
        "screenshots": [{"id": 0, "path_full": "https://cdn.example.com/ss0.jpg"}],
        "short_description": "  Think with portals.  ",
        "detailed_description": "<p>Long text</p>",
        "header_image": "https://cdn.example.com/header.jpg",
    }
    data.update(overrides)
    return data


def _store_adapter(payload_or_status) -> SteamStoreAdapter:
    def handler(request: httpx.Request) -> httpx.Response:
        if isinstance(payload_or_status, int):
            return httpx.Response(payload_or_status)
        return httpx.Response(200, json=payload_or_status)

    return SteamStoreAdapter(_http(handler, "steam_store"), base_url=STORE_URL)


def test_store_maps_nested_structures() -> None:
    adapter = _store_adapter({"620": {"success": True, "data": _app_details()}})

    record = adapter.fetch_detail(620)

    assert record is not None
    assert record.source is SourceName.STEAM_STORE
    assert record.fields["price_usd"] == 4.99
    assert record.fields["platforms"] == ["PC", "Mac"]
    assert record.fields["genres"] == ["Action", "Puzzle"]
    assert record.fields["categories"] == ["Single-player"]
    assert record.fields["screenshots"] == ["https://cdn.example.com/ss0.jpg"]
    assert record.fields["short_description"] == "Think with portals."
    assert record.fields["steam_appid"] == 620
    assert "title" not in record.fields


def test_store_price_is_zero_for_free_titles() -> None:
    details = _app_details(is_free=True)
    del details["price_overview"]
    adapter = _store_adapter({"570": {"success": True, "data": details}})

    record = adapter.fetch_detail(570)

    assert record is not None
    assert record.fields["price_usd"] == 0.0


def test_store_price_is_absent_without_overview_or_free_flag() -> None:
    details = _app_details()
    del details["price_overview"]
    adapter = _store_adapter({"10": {"success": True, "data": details}})

    record = adapter.fetch_detail(10)

    assert record is not None
    assert "price_usd" not in record.fields


@pytest.mark.parametrize(
    "payload",
    [
        {"620": {"success": False}},
        {"999": {"success": True, "data": {}}},
        {"620": {"success": True, "data": _app_details(type="dlc")}},
        [],
    ],
)
def test_store_returns_none_when_no_data(payload) -> None:
    assert _store_adapter(payload).fetch_detail(620) is None


def test_store_treats_404_as_no_data() -> None:
    assert _store_adapter(404).fetch_detail(620) is None


def test_store_propagates_exhausted_server_errors() -> None:
    with pytest.raises(HTTPStatusError):
        _store_adapter(503).fetch_detail(620)


def test_store_sends_country_and_app_id() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"620": {"success": False}})

    adapter = SteamStoreAdapter(
        _http(handler, "steam_store"), base_url=STORE_URL, country_code="jp"
    )
    adapter.fetch_detail(620)

    assert seen[0].params["appids"] == "620"
    assert seen[0].params["cc"] == "jp"
    assert "key" not in seen[0].params


def _spy_adapter(payload) -> SteamSpyAdapter:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["request"] == "appdetails"
        return httpx.Response(200, json=payload)

    return SteamSpyAdapter(_http(handler, "steamspy"), base_url=SPY_URL)


def test_spy_computes_review_score_and_price() -> None:
    record = _spy_adapter(
        {"appid": 620, "positive": 900, "negative": 100, "price": "19.99"}
    ).fetch_detail(620)

    assert record is not None
    assert record.fields == {
        "steam_score": 90,
        "steam_review_count": 1000,
        "price_usd": 19.99,
    }


def test_spy_ignores_mismatched_app() -> None:
    assert _spy_adapter({"appid": 1, "positive": 5, "negative": 5}).fetch_detail(620) is None


def test_spy_without_reviews_or_price_is_no_data() -> None:
    payload = {"appid": 620, "positive": 0, "negative": 0, "price": "0"}
    assert _spy_adapter(payload).fetch_detail(620) is None


def test_compute_review_score_handles_missing_values() -> None:
    assert compute_review_score(None, None) is None
    assert compute_review_score("3", 1) == (75.0, 4)


def test_compute_review_score_keeps_fraction() -> None:
    score, total = compute_review_score(2, 1)

    assert score == pytest.approx(200 / 3)
    assert total == 3


def test_extract_and_resolve_steam_appid() -> None:
    assert extract_steam_appid("https://store.steampowered.com/app/570/Dota_2/") == 570
    assert extract_steam_appid("https://example.com/game") is None
    assert extract_steam_appid(None) is None

    linked = GameRecord(id=GameID(1), steam_appid=620)
    via_link = GameRecord(
        id=GameID(2), store_links={"steam": "https://store.steampowered.com/app/400/"}
    )
    unlinked = GameRecord(id=GameID(3))

    assert resolve_steam_appid(linked) == 620
    assert resolve_steam_appid(via_link) == 400
    assert resolve_steam_appid(unlinked) is None
