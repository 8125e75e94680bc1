"""カタログ同期で利用するドメイン例外。"""

from __future__ import annotations

from game_catalog_sync.shared.exceptions import DomainError

__all__ = [
    "IngestionError",
    "CandidateSelectionError",
    "RecordNotFoundError",
    "PersistenceError",
    "CheckpointWriteError",
    "UnknownJobError",
]


class IngestionError(DomainError):
    default_message = "Catalog ingestion failed"


class CandidateSelectionError(IngestionError):
    default_message = "Failed to select candidates"


class RecordNotFoundError(IngestionError):
    default_message = "Game record not found"

    def __init__(self, game_id: int) -> None:
        super().__init__(f"Game record not found: {game_id}")
        self.game_id = game_id


class PersistenceError(IngestionError):
    default_message = "Failed to persist game update"


class CheckpointWriteError(IngestionError):
    default_message = "Failed to write checkpoint"


class UnknownJobError(IngestionError):
    default_message = "Unknown ingestion job"
