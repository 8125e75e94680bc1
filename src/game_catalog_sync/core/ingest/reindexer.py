"""検索用テキストが変わったレコードの埋め込みを作り直す。"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

import structlog

from game_catalog_sync.core.ingest.models import GameRecord
from game_catalog_sync.core.ingest.ports import ExternalVectorIndexProtocol, VectorStoreProtocol
from game_catalog_sync.core.ingest.reconciler import searchable_text
from game_catalog_sync.infra.embeddings.base import EmbeddingJob, EmbeddingServiceProtocol
from game_catalog_sync.infra.vector_service.pinecone import vector_id_for

__all__ = ["ReindexOutcome", "Reindexer", "vector_metadata"]


class ReindexOutcome(StrEnum):
    INDEXED = "indexed"
    SKIPPED_BLANK = "skipped_blank"
    FAILED = "failed"


def vector_metadata(record: GameRecord) -> dict[str, Any]:
    return {
        "title": record.title,
        "genres": list(record.genres),
        "platforms": list(record.platforms),
        "rating": record.rating,
    }


class Reindexer:
    """埋め込みを生成して主ベクトルストアと (設定時のみ) 外部インデックスへ書き込む。

    失敗はログに残して呼び出し元へは伝播させない。レコード本体の更新は既に
    確定しており、埋め込みの失敗で巻き戻すことはしない。
    """

    def __init__(
        self,
        *,
        embedding_service: EmbeddingServiceProtocol,
        vector_store: VectorStoreProtocol,
        external_index: ExternalVectorIndexProtocol | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._embedding_service = embedding_service
        self._vector_store = vector_store
        self._external_index = external_index
        self._logger = logger or structlog.get_logger(__name__)

    def reindex(self, record: GameRecord) -> ReindexOutcome:
        text = searchable_text(record)
        if not text:
            self._logger.info("reindex_skipped_blank", game_id=record.id)
            return ReindexOutcome.SKIPPED_BLANK

        try:
            vector = self._embedding_service.embed(
                EmbeddingJob(content=text, metadata={"game_id": record.id})
            )
            self._vector_store.upsert_vector(
                record.id,
                vector.values,
                text,
                model=vector.model,
                updated_at=record.updated_at,
            )
        except Exception as exc:  # noqa: BLE001 - 埋め込みの失敗はレコード処理を止めない
            self._logger.error("reindex_failed", game_id=record.id, error=str(exc))
            return ReindexOutcome.FAILED

        if self._external_index is not None:
            try:
                self._external_index.upsert(
                    vector_id_for(record.id),
                    vector.values,
                    vector_metadata(record),
                )
            except Exception as exc:  # noqa: BLE001 - 外部インデックスは補助的な書き込み先
                self._logger.warning(
                    "external_index_upsert_failed", game_id=record.id, error=str(exc)
                )

        self._logger.debug("reindexed", game_id=record.id, dimension=len(vector.values))
        return ReindexOutcome.INDEXED
