"""認可・ジョブ組み立て・オーケストレータ実行をまとめたエントリポイント。"""

from __future__ import annotations

import hmac
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from uuid import uuid4

import httpx
import structlog

from game_catalog_sync.core.ingest.errors import UnknownJobError
from game_catalog_sync.core.ingest.jobs import BuiltJob, RunConfig, build_job
from game_catalog_sync.core.ingest.models import RunState, RunSummary
from game_catalog_sync.core.ingest.orchestrator import IngestionOrchestrator
from game_catalog_sync.core.ingest.ports import (
    CheckpointStoreProtocol,
    ExternalVectorIndexProtocol,
    GameStoreProtocol,
    VectorStoreProtocol,
)
from game_catalog_sync.core.ingest.reindexer import Reindexer
from game_catalog_sync.infra.embeddings import get_default_embedding_service
from game_catalog_sync.infra.embeddings.base import (
    EmbeddingServiceProtocol,
    UnknownEmbeddingServiceError,
)
from game_catalog_sync.infra.http.rate_limit import RateLimiterRegistry
from game_catalog_sync.infra.http.retry import RetryExecutor
from game_catalog_sync.infra.vector_service.pinecone import PineconeVectorClient
from game_catalog_sync.shared.config import AppSettings
from game_catalog_sync.shared.exceptions import (
    AuthorizationError,
    BaseAppError,
    ConfigurationError,
    Result,
)
from game_catalog_sync.shared.logging import bind_run_context, clear_run_context

__all__ = ["IngestionRunner", "authorize"]

BEARER_PREFIX = "Bearer "

EmbeddingServiceFactory = Callable[[AppSettings], EmbeddingServiceProtocol]
ExternalIndexFactory = Callable[[AppSettings, RetryExecutor], ExternalVectorIndexProtocol | None]


def authorize(authorization: str | None, settings: AppSettings) -> None:
    """``Authorization: Bearer <token>`` を設定済みのサービス資格情報と照合する。

    Raises:
        AuthorizationError: 資格情報が無い・一致しない、またはサーバ側に未設定。
    """

    configured = settings.service.token
    if configured is None or not configured.get_secret_value():
        raise AuthorizationError("Service credential is not configured")
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        raise AuthorizationError("Missing bearer credential")
    presented = authorization[len(BEARER_PREFIX) :].strip()
    expected = configured.get_secret_value()
    if not hmac.compare_digest(presented.encode(), expected.encode()):
        raise AuthorizationError("Invalid bearer credential")


@dataclass(slots=True)
class _PreparedRun:
    built: BuiltJob
    orchestrator: IngestionOrchestrator
    closers: list[Callable[[], None]]

    def close(self) -> None:
        self.built.close()
        for closer in self.closers:
            closer()


def _default_external_index(
    settings: AppSettings, retry_executor: RetryExecutor
) -> ExternalVectorIndexProtocol | None:
    if not settings.vector_service.enabled:
        return None
    return PineconeVectorClient.from_settings(settings, retry_executor=retry_executor)


class IngestionRunner:
    """外部から起動される同期ジョブ 1 回分を実行する。

    認可や設定に問題がある場合は何も処理せず ABORTED の結果を返し、
    チェックポイントも書かない。
    """

    def __init__(
        self,
        *,
        settings: AppSettings,
        game_store: GameStoreProtocol,
        checkpoint_store: CheckpointStoreProtocol,
        vector_store: VectorStoreProtocol | None = None,
        embedding_service_factory: EmbeddingServiceFactory | None = None,
        external_index_factory: ExternalIndexFactory | None = None,
        transport: httpx.BaseTransport | None = None,
        sleeper: Callable[[float], None] = time.sleep,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._settings = settings
        self._game_store = game_store
        self._checkpoint_store = checkpoint_store
        self._vector_store = vector_store
        self._embedding_service_factory = (
            embedding_service_factory or get_default_embedding_service
        )
        self._external_index_factory = external_index_factory or _default_external_index
        self._transport = transport
        self._sleeper = sleeper
        self._logger = logger or structlog.get_logger(__name__)

    def run(
        self,
        job_name: str,
        *,
        authorization: str | None,
        config: RunConfig | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RunSummary:
        try:
            authorize(authorization, self._settings)
        except AuthorizationError as exc:
            self._logger.warning("ingestion_unauthorized", job=job_name, reason=str(exc))
            return self._aborted(job_name, "Unauthorized")

        cancel = cancel_event or threading.Event()
        run_config = config or RunConfig.from_settings(self._settings)
        prepared = self._prepare(job_name, run_config, cancel)
        if prepared.is_err:
            error = prepared.unwrap_err()
            self._logger.error("ingestion_setup_failed", job=job_name, error=str(error))
            return self._aborted(job_name, str(error))

        run = prepared.unwrap()
        bind_run_context(run_id=uuid4().hex[:12], job=job_name)
        try:
            return run.orchestrator.run(cancel_event=cancel)
        finally:
            run.close()
            clear_run_context()

    def _prepare(
        self,
        job_name: str,
        config: RunConfig,
        cancel: threading.Event,
    ) -> Result[_PreparedRun, BaseAppError]:
        try:
            built = build_job(
                job_name,
                settings=self._settings,
                config=config,
                cancel_event=cancel,
                limiters=RateLimiterRegistry(sleeper=self._sleeper),
                transport=self._transport,
                sleeper=self._sleeper,
            )
        except (ConfigurationError, UnknownJobError) as exc:
            return Result.err(exc)

        closers: list[Callable[[], None]] = []
        try:
            reindexer = self._build_reindexer(config, cancel, closers)
        except ConfigurationError as exc:
            built.close()
            return Result.err(exc)

        orchestrator = IngestionOrchestrator(
            built.job,
            game_store=self._game_store,
            checkpoint_store=self._checkpoint_store,
            reindexer=reindexer,
            max_workers=config.max_workers,
            progress_interval=config.progress_interval,
        )
        return Result.ok(_PreparedRun(built=built, orchestrator=orchestrator, closers=closers))

    def _build_reindexer(
        self,
        config: RunConfig,
        cancel: threading.Event,
        closers: list[Callable[[], None]],
    ) -> Reindexer | None:
        if not config.reindex or self._vector_store is None:
            return None
        try:
            embedding_service = self._embedding_service_factory(self._settings)
        except UnknownEmbeddingServiceError:
            raise
        except ConfigurationError as exc:
            # 埋め込みの資格情報が無い場合は再インデックスだけを省略する
            self._logger.warning("reindex_disabled", reason=str(exc))
            return None

        retry_executor = RetryExecutor(
            policy=config.retry_policy,
            sleeper=self._sleeper,
            should_continue=lambda: not cancel.is_set(),
        )
        external_index = self._external_index_factory(self._settings, retry_executor)
        close = getattr(external_index, "close", None)
        if callable(close):
            closers.append(close)
        return Reindexer(
            embedding_service=embedding_service,
            vector_store=self._vector_store,
            external_index=external_index,
        )

    @staticmethod
    def _aborted(job_name: str, message: str) -> RunSummary:
        return RunSummary(source=job_name, state=RunState.ABORTED, error=message)
