"""Gemini の埋め込み API で検索用テキストをベクトル化する。

ゲームの ``searchable_text`` を再インデックスする際に使う。呼び出しは
レート制限と再試行を経由し、最終的に失敗したジョブは ``FailedEmbeddingQueue``
に残して呼び出し元へ例外を返す。
"""

from __future__ import annotations

from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import google.generativeai as genai
import grpc
from google.api_core import exceptions as google_exceptions

from game_catalog_sync.infra.http.rate_limit import TokenBucketRateLimiter
from game_catalog_sync.infra.http.retry import RetryExecutor, RetryPolicy
from game_catalog_sync.shared.config import AppSettings, get_settings
from game_catalog_sync.shared.exceptions import ConfigurationError
from game_catalog_sync.shared.logging import get_logger

from . import register_embedding_service
from .base import (
    EmbeddingJob,
    EmbeddingServiceError,
    EmbeddingServiceProtocol,
    EmbeddingVector,
    FailedEmbeddingQueue,
    normalize_vectors,
)

__all__ = [
    "GeminiEmbeddingConfig",
    "GeminiEmbeddingService",
    "RETRIABLE_EMBEDDING_STATUSES",
]

MODEL_PREFIX = "models/"

RETRIABLE_EMBEDDING_STATUSES = frozenset({429, 500, 502, 503, 504})

# HTTP ステータスを持たない gRPC 由来の例外向け
_GRPC_FALLBACK_STATUS: dict[grpc.StatusCode, int] = {
    grpc.StatusCode.RESOURCE_EXHAUSTED: 429,
    grpc.StatusCode.UNAVAILABLE: 503,
    grpc.StatusCode.DEADLINE_EXCEEDED: 504,
    grpc.StatusCode.INTERNAL: 500,
    grpc.StatusCode.UNKNOWN: 500,
    grpc.StatusCode.INVALID_ARGUMENT: 400,
    grpc.StatusCode.UNAUTHENTICATED: 401,
    grpc.StatusCode.PERMISSION_DENIED: 403,
}

Payload = dict[str, object]


class EmbeddingClientProtocol(Protocol):
    def embed(self, contents: Sequence[str]) -> Payload:  # pragma: no cover - protocol
        ...


@dataclass(slots=True)
class GeminiEmbeddingConfig:
    api_key: str
    model: str
    rate_limit_per_minute: int = 60
    max_batch_size: int = 32
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiEmbeddingConfig:
        """``gemini`` 設定と同期ジョブの再試行設定から組み立てる。

        Raises:
            ConfigurationError: API キーが未設定。
        """

        resolved = settings or get_settings()
        secret = resolved.gemini.api_key
        api_key = secret.get_secret_value() if secret is not None else ""
        if not api_key:
            raise ConfigurationError("Gemini API key is missing")
        retry = resolved.ingestion.retry
        return cls(
            api_key=api_key,
            model=resolved.gemini.model,
            rate_limit_per_minute=resolved.gemini.rate_limit_per_minute,
            retry_policy=RetryPolicy(
                max_attempts=retry.max_attempts,
                base_delay=retry.base_delay_seconds,
                max_delay=retry.max_delay_seconds,
            ),
        )

    @property
    def resolved_model(self) -> str:
        """SDK が要求する ``models/`` 付きのモデル名。"""

        return MODEL_PREFIX + self.model.removeprefix(MODEL_PREFIX)


class GeminiEmbeddingService(EmbeddingServiceProtocol):
    provider_name = "gemini"

    def __init__(
        self,
        config: GeminiEmbeddingConfig,
        *,
        embedding_client: EmbeddingClientProtocol | None = None,
        rate_limiter: TokenBucketRateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        failure_queue: FailedEmbeddingQueue | None = None,
    ) -> None:
        self.config = config
        self._client = embedding_client or _SdkEmbeddingClient(config)
        self._rate_limiter = rate_limiter or TokenBucketRateLimiter(
            rate_per_second=config.rate_limit_per_minute / 60.0,
            burst=1,
            name=self.provider_name,
        )
        self._retry_executor = retry_executor or RetryExecutor(policy=config.retry_policy)
        self._failure_queue = failure_queue if failure_queue is not None else FailedEmbeddingQueue()
        self._logger = get_logger(__name__, provider=self.provider_name)

    @classmethod
    def from_settings(cls, settings: AppSettings | None = None) -> GeminiEmbeddingService:
        return cls(config=GeminiEmbeddingConfig.from_settings(settings))

    @property
    def failures(self) -> FailedEmbeddingQueue:
        return self._failure_queue

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:
        return self.embed_many([job])[0]

    def embed_many(self, jobs: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        """``max_batch_size`` ごとに API を呼ぶ。途中のバッチが失敗したら以降は処理しない。"""

        vectors: list[EmbeddingVector] = []
        for batch in self._batches(jobs):
            try:
                vectors.extend(self._embed_batch(batch))
            except Exception as exc:
                self._record_failure(batch, exc)
                raise
        return vectors

    def _batches(self, jobs: Sequence[EmbeddingJob]) -> Iterator[Sequence[EmbeddingJob]]:
        size = max(1, self.config.max_batch_size)
        for start in range(0, len(jobs), size):
            yield jobs[start : start + size]

    def _embed_batch(self, batch: Sequence[EmbeddingJob]) -> list[EmbeddingVector]:
        contents = [job.content for job in batch]

        def call() -> Payload:
            try:
                return self._client.embed(contents)
            except google_exceptions.GoogleAPIError as exc:
                raise EmbeddingServiceError(str(exc), status_code=_status_of(exc)) from exc

        self._rate_limiter.acquire()
        payload = self._retry_executor.run(
            call,
            is_retryable=_is_retryable_embedding_error,
            description="gemini_embed",
        )
        return [
            EmbeddingVector(job_id=job.job_id, values=values, model=self.config.model)
            for job, values in zip(batch, _values_from(payload, len(batch)), strict=True)
        ]

    def _record_failure(self, batch: Sequence[EmbeddingJob], error: Exception) -> None:
        for job in batch:
            self._failure_queue.push(job, error)
        self._logger.error(
            "embedding_failed",
            job_ids=[job.job_id for job in batch],
            error=str(error),
        )


class _SdkEmbeddingClient:
    """google-generativeai を遅延初期化して呼ぶ。"""

    def __init__(self, config: GeminiEmbeddingConfig) -> None:
        self._config = config
        self._configured = False

    def embed(self, contents: Sequence[str]) -> Payload:
        if not self._configured:
            genai.configure(api_key=self._config.api_key)
            self._configured = True
        content: str | list[str] = contents[0] if len(contents) == 1 else list(contents)
        return genai.embed_content(model=self._config.resolved_model, content=content)


def _values_from(payload: Payload, expected: int) -> list[tuple[float, ...]]:
    # 単一入力なら [float, ...]、複数入力なら [[float, ...], ...] が返る
    embedding = payload.get("embedding")
    if not isinstance(embedding, list):
        raise EmbeddingServiceError("Gemini response payload is invalid")
    if expected == 1 and not (embedding and isinstance(embedding[0], list)):
        return [normalize_vectors(embedding)]
    if len(embedding) != expected:
        raise EmbeddingServiceError("Gemini response count mismatch")
    if not all(isinstance(values, list) for values in embedding):
        raise EmbeddingServiceError("Gemini response did not include embedding values")
    return [normalize_vectors(values) for values in embedding]


def _status_of(exc: google_exceptions.GoogleAPIError) -> int | None:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return int(code)
    grpc_code = getattr(exc, "grpc_status_code", None)
    if grpc_code is not None:
        return _GRPC_FALLBACK_STATUS.get(grpc_code)
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def _is_retryable_embedding_error(error: Exception) -> bool:
    if isinstance(error, EmbeddingServiceError):
        return error.status_code in RETRIABLE_EMBEDDING_STATUSES
    return isinstance(error, ConnectionError | TimeoutError)


register_embedding_service(
    GeminiEmbeddingService.provider_name,
    GeminiEmbeddingService.from_settings,
)
