"""DB 向けインフラ。"""

from .models import Base, Game, GameVector, SyncCheckpoint
from .repositories import (
    SQLAlchemyCheckpointStore,
    SQLAlchemyGameRepository,
    SQLAlchemyVectorRepository,
    StoredVector,
    game_rows_from_mappings,
)
from .session import DatabaseError, DatabaseSessionManager

__all__ = [
    "Base",
    "DatabaseError",
    "DatabaseSessionManager",
    "Game",
    "GameVector",
    "SQLAlchemyCheckpointStore",
    "SQLAlchemyGameRepository",
    "SQLAlchemyVectorRepository",
    "StoredVector",
    "SyncCheckpoint",
    "game_rows_from_mappings",
]
