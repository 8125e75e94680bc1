"""埋め込みサービスの抽象レイヤー。"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from uuid import uuid4

from game_catalog_sync.shared.exceptions import ConfigurationError, ExternalServiceError
from game_catalog_sync.shared.types import ValueObject, utc_now

__all__ = [
    "EmbeddingJob",
    "EmbeddingVector",
    "EmbeddingServiceProtocol",
    "EmbeddingServiceError",
    "UnknownEmbeddingServiceError",
    "FailedEmbeddingRecord",
    "FailedEmbeddingQueue",
    "normalize_vectors",
]


class EmbeddingServiceError(ExternalServiceError):
    """埋め込み処理における例外。"""

    default_message = "Embedding service failed"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnknownEmbeddingServiceError(ConfigurationError):
    """登録されていないプロバイダ名が指定された。"""

    default_message = "Embedding service is not registered"


@dataclass(slots=True)
class EmbeddingJob(ValueObject):
    """テキストをベクトル化するジョブ。"""

    content: str
    job_id: str = field(default_factory=lambda: str(uuid4()))
    metadata: Mapping[str, Any] | None = None


@dataclass(slots=True)
class EmbeddingVector(ValueObject):
    """正規化済みの埋め込み結果。"""

    job_id: str
    values: tuple[float, ...]
    model: str
    created_at: datetime = field(default_factory=utc_now)

    @property
    def dimension(self) -> int:
        return len(self.values)


class EmbeddingServiceProtocol(Protocol):
    """埋め込みサービスが満たすべきインターフェース。"""

    provider_name: str

    def embed(self, job: EmbeddingJob) -> EmbeddingVector:  # pragma: no cover - protocol
        """単一ジョブを処理する。"""

    def embed_many(  # pragma: no cover - protocol
        self,
        jobs: Sequence[EmbeddingJob],
    ) -> list[EmbeddingVector]:
        """バッチ処理を行う。"""


@dataclass(slots=True)
class FailedEmbeddingRecord(ValueObject):
    """失敗ジョブとエラーを保持する DTO。"""

    job: EmbeddingJob
    error_message: str
    failed_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class FailedEmbeddingQueue:
    """直近の失敗ジョブを上限付きで保持する。"""

    max_size: int = 100
    _items: deque[FailedEmbeddingRecord] = field(default_factory=deque)

    def push(self, job: EmbeddingJob, error: Exception | str) -> None:
        record = FailedEmbeddingRecord(job=job, error_message=str(error))
        self._items.append(record)
        while len(self._items) > self.max_size:
            self._items.popleft()

    def drain(self) -> Iterable[FailedEmbeddingRecord]:
        while self._items:
            yield self._items.popleft()

    def __len__(self) -> int:
        return len(self._items)


def normalize_vectors(values: Iterable[float]) -> tuple[float, ...]:
    """埋め込みベクトルを tuple に正規化する。"""

    return tuple(float(v) for v in values)
