"""ソースごとのジョブ定義 (steam / opencritic / rawg) を組み立てる。"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import timedelta
from enum import StrEnum

import httpx

from game_catalog_sync.core.ingest.errors import UnknownJobError
from game_catalog_sync.core.ingest.models import CandidateCriteria, GameRecord
from game_catalog_sync.core.ingest.orchestrator import IngestionJob, JobSource
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.infra.http.pagination import PaginatedFetcher
from game_catalog_sync.infra.http.rate_limit import RateLimiterRegistry
from game_catalog_sync.infra.http.retry import RetryExecutor, RetryPolicy
from game_catalog_sync.infra.sources.opencritic import OpenCriticAdapter
from game_catalog_sync.infra.sources.rawg import RawgAdapter
from game_catalog_sync.infra.sources.steam import (
    SteamSpyAdapter,
    SteamStoreAdapter,
    resolve_steam_appid,
)
from game_catalog_sync.shared.config import AppSettings, CatalogSourceSettings
from game_catalog_sync.shared.exceptions import ConfigurationError

__all__ = [
    "DEFAULT_BATCH_LIMITS",
    "BuiltJob",
    "JobName",
    "RunConfig",
    "build_job",
]


class JobName(StrEnum):
    STEAM = "steam"
    OPENCRITIC = "opencritic"
    RAWG = "rawg"


DEFAULT_BATCH_LIMITS: dict[JobName, int] = {
    JobName.STEAM: 500,
    JobName.OPENCRITIC: 200,
    JobName.RAWG: 500,
}


@dataclass(slots=True, frozen=True)
class RunConfig:
    """1 回の実行に適用するパラメータ。CLI 引数で設定値を上書きできる。"""

    batch_size: int | None = None
    max_workers: int = 1
    max_pages: int = 3
    progress_interval: int = 50
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    reindex: bool = True
    opencritic_min_confidence: float = 0.8
    opencritic_refresh_days: int = 30

    @classmethod
    def from_settings(cls, settings: AppSettings) -> RunConfig:
        ingestion = settings.ingestion
        return cls(
            batch_size=ingestion.batch_size,
            max_workers=ingestion.max_workers,
            max_pages=ingestion.max_pages,
            progress_interval=ingestion.progress_interval,
            retry_policy=RetryPolicy(
                max_attempts=ingestion.retry.max_attempts,
                base_delay=ingestion.retry.base_delay_seconds,
                max_delay=ingestion.retry.max_delay_seconds,
            ),
            opencritic_min_confidence=ingestion.opencritic_min_confidence,
            opencritic_refresh_days=ingestion.opencritic_refresh_days,
        )

    def with_overrides(self, **overrides: object) -> RunConfig:
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values)

    def batch_limit_for(self, job: JobName) -> int:
        return self.batch_size or DEFAULT_BATCH_LIMITS[job]


@dataclass(slots=True)
class BuiltJob:
    """組み立て済みジョブと、実行後に閉じる HTTP クライアント。"""

    job: IngestionJob
    clients: list[CatalogHttpClient] = field(default_factory=list)

    def close(self) -> None:
        for client in self.clients:
            client.close()


@dataclass(slots=True)
class _JobContext:
    settings: AppSettings
    config: RunConfig
    limiters: RateLimiterRegistry
    cancel_event: threading.Event
    transport: httpx.BaseTransport | None
    sleeper: Callable[[float], None]
    clients: list[CatalogHttpClient] = field(default_factory=list)

    def client_for(self, source: str, source_settings: CatalogSourceSettings) -> CatalogHttpClient:
        limiter = self.limiters.get(
            source,
            rate_per_second=source_settings.rate_per_second,
            burst=source_settings.burst,
        )
        executor = RetryExecutor(
            policy=self.config.retry_policy,
            sleeper=self.sleeper,
            should_continue=lambda: not self.cancel_event.is_set(),
        )
        http_client = (
            httpx.Client(transport=self.transport, timeout=source_settings.timeout_seconds)
            if self.transport is not None
            else None
        )
        client = CatalogHttpClient(
            source=source,
            rate_limiter=limiter,
            retry_executor=executor,
            timeout=source_settings.timeout_seconds,
            http_client=http_client,
        )
        self.clients.append(client)
        return client


def _secret(source_settings: CatalogSourceSettings) -> str | None:
    if source_settings.api_key is None:
        return None
    return source_settings.api_key.get_secret_value() or None


def _build_steam(context: _JobContext) -> IngestionJob:
    settings = context.settings
    store = SteamStoreAdapter(
        context.client_for("steam_store", settings.steam),
        base_url=str(settings.steam.base_url),
        country_code=settings.steam.country_code,
        api_key=_secret(settings.steam),
    )
    spy = SteamSpyAdapter(
        context.client_for("steamspy", settings.steamspy),
        base_url=str(settings.steamspy.base_url),
    )
    return IngestionJob(
        name=JobName.STEAM.value,
        criteria=CandidateCriteria(linked_by=("steam_appid", "store_links.steam")),
        batch_limit=context.config.batch_limit_for(JobName.STEAM),
        sources=(JobSource(store, required=True), JobSource(spy)),
        key_resolver=resolve_steam_appid,
    )


def _build_opencritic(context: _JobContext) -> IngestionJob:
    settings = context.settings
    adapter = OpenCriticAdapter(
        context.client_for("opencritic", settings.opencritic),
        base_url=str(settings.opencritic.base_url),
        api_key=_secret(settings.opencritic),
        min_confidence=context.config.opencritic_min_confidence,
    )

    def resolve(record: GameRecord) -> int | None:
        return adapter.resolve_key(record)

    return IngestionJob(
        name=JobName.OPENCRITIC.value,
        criteria=CandidateCriteria(
            require_title=True,
            refresh_field="critic_score",
            refresh_after=timedelta(days=context.config.opencritic_refresh_days),
        ),
        batch_limit=context.config.batch_limit_for(JobName.OPENCRITIC),
        sources=(JobSource(adapter, required=True),),
        key_resolver=resolve,
    )


def _build_rawg(context: _JobContext) -> IngestionJob:
    settings = context.settings
    api_key = _secret(settings.rawg)
    if api_key is None:
        raise ConfigurationError("RAWG API key is required for the rawg job")
    client = context.client_for("rawg", settings.rawg)
    screenshots = PaginatedFetcher(
        client,
        page_size=settings.rawg.page_size,
        max_pages=context.config.max_pages,
    )
    adapter = RawgAdapter(
        client,
        api_key=api_key,
        base_url=str(settings.rawg.base_url),
        screenshots=screenshots,
    )
    return IngestionJob(
        name=JobName.RAWG.value,
        criteria=CandidateCriteria(linked_by=("rawg_id",)),
        batch_limit=context.config.batch_limit_for(JobName.RAWG),
        sources=(JobSource(adapter, required=True),),
        key_resolver=lambda record: record.rawg_id,
    )


_BUILDERS: dict[JobName, Callable[[_JobContext], IngestionJob]] = {
    JobName.STEAM: _build_steam,
    JobName.OPENCRITIC: _build_opencritic,
    JobName.RAWG: _build_rawg,
}


def build_job(
    name: str,
    *,
    settings: AppSettings,
    config: RunConfig,
    cancel_event: threading.Event,
    limiters: RateLimiterRegistry | None = None,
    transport: httpx.BaseTransport | None = None,
    sleeper: Callable[[float], None] = time.sleep,
) -> BuiltJob:
    """ジョブ名から実行可能なジョブを組み立てる。

    ``transport`` を渡すと全ソースの HTTP 呼び出しがそのトランスポートを経由する
    (テストで ``httpx.MockTransport`` を差し込む用途)。

    Raises:
        UnknownJobError: 未知のジョブ名。
        ConfigurationError: 必須の資格情報が無い。
    """

    try:
        job_name = JobName(name)
    except ValueError as exc:
        raise UnknownJobError(f"Unknown ingestion job: {name}") from exc

    context = _JobContext(
        settings=settings,
        config=config,
        limiters=limiters or RateLimiterRegistry(),
        cancel_event=cancel_event,
        transport=transport,
        sleeper=sleeper,
    )
    try:
        job = _BUILDERS[job_name](context)
    except Exception:
        for client in context.clients:
            client.close()
        raise
    return BuiltJob(job=job, clients=context.clients)
