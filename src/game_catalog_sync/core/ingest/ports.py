"""同期処理が依存するストレージ・外部サービスのインターフェース。"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol

from game_catalog_sync.core.ingest.models import (
    CandidateCriteria,
    Checkpoint,
    GameRecord,
    GameUpdate,
    SourceName,
    SourceRecord,
)
from game_catalog_sync.shared.types import ExternalKey, GameID

__all__ = [
    "SourceAdapterProtocol",
    "GameStoreProtocol",
    "VectorStoreProtocol",
    "CheckpointStoreProtocol",
    "ExternalVectorIndexProtocol",
]


class SourceAdapterProtocol(Protocol):
    """外部カタログ 1 ソース分の取得口。データが無い場合は ``None`` を返す。"""

    source: SourceName

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        ...


class GameStoreProtocol(Protocol):
    def select_stale_candidates(
        self, criteria: CandidateCriteria, *, limit: int
    ) -> list[GameRecord]:
        ...

    def apply_update(self, game_id: GameID, update: GameUpdate) -> GameRecord:
        ...


class VectorStoreProtocol(Protocol):
    def upsert_vector(
        self,
        record_id: GameID,
        vector: Sequence[float],
        text: str,
        *,
        model: str | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        ...


class CheckpointStoreProtocol(Protocol):
    def write(self, checkpoint: Checkpoint) -> None:
        ...

    def read(self, source: str) -> Checkpoint | None:
        ...


class ExternalVectorIndexProtocol(Protocol):
    def upsert(
        self, vector_id: str, values: Sequence[float], metadata: Mapping[str, Any]
    ) -> None:
        ...
