"""OpenCritic のタイトル照合とスコア選択の検証。"""

from __future__ import annotations

import httpx
import pytest

from game_catalog_sync.core.ingest.models import GameRecord
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.infra.http.retry import RetryExecutor, RetryPolicy
from game_catalog_sync.infra.sources.opencritic import (
    OpenCriticAdapter,
    normalize_title,
    select_best_match,
    title_similarity,
)
from game_catalog_sync.shared.types import GameID

BASE_URL = "https://critic.example.com/api"


def _adapter(handler, **kwargs) -> OpenCriticAdapter:
    http = CatalogHttpClient(
        source="opencritic",
        retry_executor=RetryExecutor(policy=RetryPolicy(max_attempts=1)),
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    return OpenCriticAdapter(http, base_url=BASE_URL, **kwargs)


def test_normalize_title_strips_punctuation_and_spaces() -> None:
    assert normalize_title("  Portal 2: Director's   Cut! ") == "portal 2 directors cut"


@pytest.mark.parametrize(
    ("left", "right", "expected"),
    [
        ("Hades", "HADES", 1.0),
        ("Hades", "Hades II", 0.8),
        ("Final Fantasy VII Remake", "Final Fantasy VII Rebirth", 0.75),
        ("Celeste", "Hollow Knight", 0.0),
        ("", "Hades", 0.0),
    ],
)
def test_title_similarity(left: str, right: str, expected: float) -> None:
    assert title_similarity(left, right) == pytest.approx(expected)


def test_select_best_match_prefers_highest_similarity() -> None:
    results = [
        {"id": 1, "name": "Hades II"},
        {"id": 2, "name": "Hades"},
        {"id": 3, "name": "Hollow Knight"},
    ]

    match = select_best_match("Hades", results)

    assert match is not None
    assert match.opencritic_id == 2
    assert match.confidence == 1.0
    assert match.to_dict() == {"opencritic_id": 2, "name": "Hades", "confidence": 1.0}


def test_select_best_match_only_considers_top_five() -> None:
    results = [{"id": index, "name": f"Unrelated {index}"} for index in range(5)]
    results.append({"id": 99, "name": "Hades"})

    assert select_best_match("Hades", results) is None


def test_select_best_match_skips_malformed_entries() -> None:
    results = ["oops", {"id": None, "name": "Hades"}, {"id": 7, "name": "Hades"}]

    match = select_best_match("Hades", results)

    assert match is not None
    assert match.opencritic_id == 7


def test_resolve_key_uses_cached_id_without_searching() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("search should not be called")

    adapter = _adapter(handler)
    record = GameRecord(id=GameID(1), title="Hades", opencritic_id=42)

    assert adapter.resolve_key(record) == 42


def test_resolve_key_searches_by_title_and_sends_credentials() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": 10, "name": "Celeste"}])

    adapter = _adapter(handler, api_key="secret")

    assert adapter.resolve_key(GameRecord(id=GameID(1), title="Celeste")) == 10
    assert seen[0].url.path == "/api/game/search"
    assert seen[0].url.params["criteria"] == "Celeste"
    assert seen[0].headers["Authorization"] == "Bearer secret"


def test_resolve_key_rejects_low_confidence_match() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=[{"id": 5, "name": "Final Fantasy VII Rebirth"}])

    record = GameRecord(id=GameID(1), title="Final Fantasy VII Remake")

    assert _adapter(handler).resolve_key(record) is None
    assert _adapter(handler, min_confidence=0.7).resolve_key(record) == 5


def test_resolve_key_without_title_is_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("search should not be called")

    assert _adapter(handler).resolve_key(GameRecord(id=GameID(1))) is None


def _detail(payload) -> dict:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/game/42"
        return httpx.Response(200, json=payload)

    record = _adapter(handler).fetch_detail(42)
    return dict(record.fields) if record is not None else {}


def test_fetch_detail_prefers_top_critic_score() -> None:
    fields = _detail(
        {"topCriticScore": 92.6, "numTopCriticReviews": 80, "averageScore": 88, "numReviews": 150}
    )

    assert fields == {"opencritic_id": 42, "critic_score": 92.6, "critic_review_count": 80}


def test_fetch_detail_falls_back_to_average_score() -> None:
    fields = _detail({"topCriticScore": -1, "averageScore": 71.2, "numReviews": 12})

    assert fields == {"opencritic_id": 42, "critic_score": 71.2, "critic_review_count": 12}


def test_fetch_detail_without_any_score_is_no_data() -> None:
    assert _detail({"topCriticScore": -1, "averageScore": -1, "numReviews": 0}) == {}


def test_fetch_detail_treats_404_as_no_data() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    assert _adapter(handler).fetch_detail(42) is None
