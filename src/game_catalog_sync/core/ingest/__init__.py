"""カタログ同期のドメインモデルとサービス。

ジョブ定義 (jobs) と実行エントリ (runner) は外部ソースのアダプタに依存するため
ここでは再エクスポートしない。
"""

from game_catalog_sync.core.ingest.models import (
    CandidateCriteria,
    Checkpoint,
    GameRecord,
    GameUpdate,
    RunState,
    RunSummary,
    SourceName,
    SourceRecord,
)
from game_catalog_sync.core.ingest.orchestrator import (
    IngestionJob,
    IngestionOrchestrator,
    JobSource,
)
from game_catalog_sync.core.ingest.reconciler import Reconciler, searchable_text
from game_catalog_sync.core.ingest.reindexer import ReindexOutcome, Reindexer

__all__ = [
    "CandidateCriteria",
    "Checkpoint",
    "GameRecord",
    "GameUpdate",
    "IngestionJob",
    "IngestionOrchestrator",
    "JobSource",
    "Reconciler",
    "ReindexOutcome",
    "Reindexer",
    "RunState",
    "RunSummary",
    "SourceName",
    "SourceRecord",
    "searchable_text",
]
