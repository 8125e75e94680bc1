"""PaginatedFetcher の継続条件と上限を検証する。"""

from __future__ import annotations

import httpx
import pytest

from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.infra.http.pagination import PaginatedFetcher, build_page_url
from game_catalog_sync.infra.http.retry import RetryExecutor, RetryPolicy


def _http(handler) -> CatalogHttpClient:
    return CatalogHttpClient(
        source="paged",
        retry_executor=RetryExecutor(policy=RetryPolicy(max_attempts=1), sleeper=lambda _: None),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def test_stops_when_page_is_short_and_has_no_next() -> None:
    pages = {
        "1": {"results": [1, 2], "next": "https://api.example.com/items?page=2"},
        "2": {"results": [3], "next": None},
    }
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        requested.append(page)
        return httpx.Response(200, json=pages[page])

    fetcher = PaginatedFetcher(_http(handler), page_size=2, max_pages=10)

    items = fetcher.fetch_all("https://api.example.com/items")

    assert items == [1, 2, 3]
    assert requested == ["1", "2"]


def test_full_page_without_next_requests_one_more_page() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = request.url.params["page"]
        requested.append(page)
        results = [1, 2] if page == "1" else []
        return httpx.Response(200, json={"results": results})

    fetcher = PaginatedFetcher(_http(handler), page_size=2, max_pages=10)

    assert fetcher.fetch_all("https://api.example.com/items") == [1, 2]
    assert requested == ["1", "2"]


def test_max_pages_bounds_endless_next_links() -> None:
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.params["page"])
        return httpx.Response(200, json={"results": ["x"], "next": "more"})

    fetcher = PaginatedFetcher(_http(handler), page_size=40, max_pages=3)

    items = fetcher.fetch_all("https://api.example.com/items")

    assert requested == ["1", "2", "3"]
    assert items == ["x", "x", "x"]


def test_custom_transform_and_extra_params() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(200, json={"data": {"rows": ["a"]}})

    fetcher = PaginatedFetcher(_http(handler), page_size=5, max_pages=2)

    items = fetcher.fetch_all(
        "https://api.example.com/items",
        transform=lambda payload: payload["data"]["rows"],
        params={"key": "secret"},
    )

    assert items == ["a"]
    assert seen[0].params["key"] == "secret"
    assert seen[0].params["page_size"] == "5"


def test_build_page_url_keeps_existing_query() -> None:
    url = build_page_url("https://api.example.com/items?ordering=-updated", page=3, page_size=20)

    parsed = httpx.URL(url)
    assert parsed.params["ordering"] == "-updated"
    assert parsed.params["page"] == "3"
    assert parsed.params["page_size"] == "20"


def test_invalid_bounds_are_rejected() -> None:
    http = _http(lambda request: httpx.Response(200, json={}))
    with pytest.raises(ValueError):
        PaginatedFetcher(http, max_pages=0)
    with pytest.raises(ValueError):
        PaginatedFetcher(http, page_size=0)
