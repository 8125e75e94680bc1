"""IngestionRunner の認可・設定エラー・エンドツーエンド実行の検証。"""

from __future__ import annotations

from collections.abc import Sequence

import httpx
import pytest

from game_catalog_sync.core.ingest.jobs import RunConfig
from game_catalog_sync.core.ingest.models import GameRecord, RunState
from game_catalog_sync.core.ingest.runner import IngestionRunner, authorize
from game_catalog_sync.infra.embeddings.base import EmbeddingJob, EmbeddingVector
from game_catalog_sync.infra.http.retry import RetryPolicy
from game_catalog_sync.shared.config import AppSettings
from game_catalog_sync.shared.exceptions import AuthorizationError, ConfigurationError
from game_catalog_sync.shared.types import GameID

TOKEN = "sync-secret"


def _settings(**overrides) -> AppSettings:
    overrides.setdefault("service", {"token": TOKEN})
    return AppSettings(_env_file=None, **overrides)


def _config(**overrides) -> RunConfig:
    return RunConfig(retry_policy=RetryPolicy(max_attempts=1), **overrides)


def steam_handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "store.steampowered.com":
        app_id = request.url.params["appids"]
        return httpx.Response(
            200,
            json={
                app_id: {
                    "success": True,
                    "data": {
                        "type": "game",
                        "name": "ignored",
                        "is_free": app_id == "570",
                        "platforms": {"windows": True, "linux": True},
                        "genres": [{"description": "Action"}],
                    },
                }
            },
        )
    return httpx.Response(
        200, json={"appid": int(request.url.params["appid"]), "positive": 95, "negative": 5}
    )


class FakeEmbeddingService:
    provider_name = "fake"

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:
        return EmbeddingVector(job_id=job.job_id, values=(1.0, 0.0), model="fake")

    def embed_many(self, jobs: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        return [self.embed(job) for job in jobs]


class FakeVectorStore:
    def __init__(self) -> None:
        self.ids: list[int] = []

    def upsert_vector(self, record_id, vector, text, *, model=None, updated_at=None) -> None:
        self.ids.append(record_id)


class FakeExternalIndex:
    def __init__(self) -> None:
        self.ids: list[str] = []
        self.closed = False

    def upsert(self, vector_id, values, metadata) -> None:
        self.ids.append(vector_id)

    def close(self) -> None:
        self.closed = True


def _seed_steam_games(game_store) -> None:
    game_store.seed(
        [
            GameRecord(id=GameID(1), title="Portal 2", steam_appid=620),
            GameRecord(
                id=GameID(2),
                title="Dota 2",
                store_links={"steam": "https://store.steampowered.com/app/570/"},
            ),
        ]
    )


def test_authorize_accepts_matching_bearer_token() -> None:
    authorize(f"Bearer {TOKEN}", _settings())


@pytest.mark.parametrize("header", [None, "", TOKEN, "Bearer wrong", "Basic c3luYw=="])
def test_authorize_rejects_bad_credentials(header) -> None:
    with pytest.raises(AuthorizationError):
        authorize(header, _settings())


def test_authorize_rejects_when_token_is_not_configured() -> None:
    with pytest.raises(AuthorizationError):
        authorize(f"Bearer {TOKEN}", _settings(service={}))


def test_unauthorized_run_does_nothing(game_store, checkpoint_store) -> None:
    _seed_steam_games(game_store)
    runner = IngestionRunner(
        settings=_settings(), game_store=game_store, checkpoint_store=checkpoint_store
    )

    summary = runner.run("steam", authorization="Bearer nope")

    assert summary.state is RunState.ABORTED
    assert summary.error == "Unauthorized"
    assert game_store.criteria == []
    assert checkpoint_store.writes == []


@pytest.mark.parametrize(
    ("job_name", "message"),
    [("rawg", "RAWG API key is required"), ("itch", "Unknown ingestion job: itch")],
)
def test_setup_errors_abort_without_checkpoint(
    game_store, checkpoint_store, job_name, message
) -> None:
    runner = IngestionRunner(
        settings=_settings(), game_store=game_store, checkpoint_store=checkpoint_store
    )

    summary = runner.run(job_name, authorization=f"Bearer {TOKEN}", config=_config())

    assert summary.state is RunState.ABORTED
    assert message in (summary.error or "")
    assert checkpoint_store.writes == []


def test_steam_run_updates_records_and_checkpoints(game_store, checkpoint_store) -> None:
    _seed_steam_games(game_store)
    runner = IngestionRunner(
        settings=_settings(),
        game_store=game_store,
        checkpoint_store=checkpoint_store,
        transport=httpx.MockTransport(steam_handler),
        sleeper=lambda _: None,
    )

    summary = runner.run("steam", authorization=f"Bearer {TOKEN}", config=_config())

    assert summary.succeeded
    assert summary.processed == 2
    assert summary.updated == 2
    portal = game_store.records[GameID(1)]
    assert portal.title == "Portal 2"
    assert portal.platforms == ("PC", "Linux")
    assert portal.steam_score == 95
    assert portal.steam_review_count == 100
    assert portal.price_usd is None
    dota = game_store.records[GameID(2)]
    assert dota.steam_appid == 570
    assert dota.price_usd == 0.0
    assert checkpoint_store.read("steam").processed == 2


def test_reindex_writes_vectors_when_text_changes(game_store, checkpoint_store) -> None:
    _seed_steam_games(game_store)
    vector_store = FakeVectorStore()
    external_index = FakeExternalIndex()
    runner = IngestionRunner(
        settings=_settings(),
        game_store=game_store,
        checkpoint_store=checkpoint_store,
        vector_store=vector_store,
        embedding_service_factory=lambda settings: FakeEmbeddingService(),
        external_index_factory=lambda settings, retry_executor: external_index,
        transport=httpx.MockTransport(steam_handler),
        sleeper=lambda _: None,
    )

    summary = runner.run("steam", authorization=f"Bearer {TOKEN}", config=_config())

    assert summary.reindexed == 2
    assert sorted(vector_store.ids) == [1, 2]
    assert sorted(external_index.ids) == ["game-1", "game-2"]
    assert external_index.closed


def test_missing_embedding_credentials_disable_reindex(game_store, checkpoint_store) -> None:
    _seed_steam_games(game_store)
    vector_store = FakeVectorStore()

    def no_embeddings(settings):
        raise ConfigurationError("Gemini API key is missing")

    runner = IngestionRunner(
        settings=_settings(),
        game_store=game_store,
        checkpoint_store=checkpoint_store,
        vector_store=vector_store,
        embedding_service_factory=no_embeddings,
        transport=httpx.MockTransport(steam_handler),
        sleeper=lambda _: None,
    )

    summary = runner.run("steam", authorization=f"Bearer {TOKEN}", config=_config())

    assert summary.succeeded
    assert summary.updated == 2
    assert summary.reindexed == 0
    assert vector_store.ids == []


def test_unknown_embedding_provider_aborts_run(game_store, checkpoint_store, monkeypatch) -> None:
    _seed_steam_games(game_store)
    monkeypatch.setenv("EMBEDDING_PROVIDER", "openai")
    runner = IngestionRunner(
        settings=_settings(),
        game_store=game_store,
        checkpoint_store=checkpoint_store,
        vector_store=FakeVectorStore(),
        transport=httpx.MockTransport(steam_handler),
        sleeper=lambda _: None,
    )

    summary = runner.run("steam", authorization=f"Bearer {TOKEN}", config=_config())

    assert summary.state is RunState.ABORTED
    assert "'openai' is not registered" in (summary.error or "")
    assert game_store.criteria == []
    assert checkpoint_store.writes == []
