"""ゲームカタログ向けのリポジトリ実装。"""

from __future__ import annotations

from array import array
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import ColumnElement, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from game_catalog_sync.core.ingest.errors import (
    CandidateSelectionError,
    CheckpointWriteError,
    PersistenceError,
    RecordNotFoundError,
)
from game_catalog_sync.core.ingest.models import (
    PATCHABLE_FIELDS,
    CandidateCriteria,
    Checkpoint,
    GameRecord,
    GameUpdate,
)
from game_catalog_sync.core.ingest.ports import (
    CheckpointStoreProtocol,
    GameStoreProtocol,
    VectorStoreProtocol,
)
from game_catalog_sync.infra.db.models import Game, GameVector, SyncCheckpoint
from game_catalog_sync.shared.types import GameID, ValueObject, as_utc, utc_now

__all__ = [
    "SQLAlchemyGameRepository",
    "SQLAlchemyVectorRepository",
    "SQLAlchemyCheckpointStore",
    "StoredVector",
    "game_rows_from_mappings",
    "to_db_datetime",
]

SessionFactory = Callable[[], Session]

_TUPLE_COLUMNS = ("genres", "platforms", "categories", "screenshots")


def to_db_datetime(value: datetime) -> datetime:
    """SQLite へ保存するため UTC の naive datetime に揃える。"""

    return as_utc(value).astimezone(UTC).replace(tzinfo=None)


def _from_db_datetime(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def _to_record(row: Game) -> GameRecord:
    values: dict[str, Any] = {name: getattr(row, name) for name in PATCHABLE_FIELDS}
    for name in _TUPLE_COLUMNS:
        values[name] = tuple(values[name] or ())
    values["store_links"] = dict(values["store_links"] or {})
    return GameRecord(id=GameID(row.id), updated_at=_from_db_datetime(row.updated_at), **values)


def _to_column(name: str, value: Any) -> Any:
    if name in _TUPLE_COLUMNS:
        return list(value)
    if name == "store_links":
        return dict(value)
    return value


def _linked_condition(name: str) -> ColumnElement[bool]:
    if name.startswith("store_links."):
        key = name.split(".", 1)[1]
        return func.json_extract(Game.store_links, f"$.{key}").is_not(None)
    return getattr(Game, name).is_not(None)


class SQLAlchemyGameRepository(GameStoreProtocol):
    """games テーブルの読み取りと部分更新を担う。"""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def select_stale_candidates(
        self, criteria: CandidateCriteria, *, limit: int
    ) -> list[GameRecord]:
        """条件に合うレコードを更新日時の古い順に最大 ``limit`` 件返す。"""

        if limit < 1:
            return []
        conditions: list[ColumnElement[bool]] = []
        if criteria.linked_by:
            conditions.append(or_(*(_linked_condition(name) for name in criteria.linked_by)))
        if criteria.require_title:
            conditions.append(and_(Game.title.is_not(None), Game.title != ""))
        if criteria.refresh_field is not None:
            stale = getattr(Game, criteria.refresh_field).is_(None)
            if criteria.refresh_after is not None:
                threshold = to_db_datetime(self._clock() - criteria.refresh_after)
                stale = or_(stale, Game.updated_at < threshold)
            conditions.append(stale)

        stmt = select(Game).order_by(Game.updated_at.asc(), Game.id.asc()).limit(limit)
        if conditions:
            stmt = stmt.where(*conditions)
        try:
            with self._session_factory() as session:
                rows = session.scalars(stmt).all()
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise CandidateSelectionError(f"Failed to select candidates: {exc}") from exc

    def get(self, game_id: GameID) -> GameRecord | None:
        with self._session_factory() as session:
            row = session.get(Game, game_id)
            return _to_record(row) if row is not None else None

    def apply_update(self, game_id: GameID, update: GameUpdate) -> GameRecord:
        """既存レコードにだけ差分を書き込む。``None`` の値は既存値を保持する。"""

        try:
            with self._session_factory() as session, session.begin():
                row = session.get(Game, game_id)
                if row is None:
                    raise RecordNotFoundError(game_id)
                for name, value in update.changes.items():
                    if value is None or name not in PATCHABLE_FIELDS:
                        continue
                    setattr(row, name, _to_column(name, value))
                row.updated_at = to_db_datetime(update.updated_at)
                session.flush()
                return _to_record(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to update game {game_id}: {exc}") from exc


@dataclass(slots=True)
class StoredVector(ValueObject):
    """保存済みベクトルの読み出し結果。"""

    game_id: int
    values: tuple[float, ...]
    content: str
    model: str | None
    updated_at: datetime | None

    @property
    def dimension(self) -> int:
        return len(self.values)


def _pack(vector: Sequence[float]) -> bytes:
    return array("f", (float(value) for value in vector)).tobytes()


def _unpack(blob: bytes) -> tuple[float, ...]:
    values = array("f")
    values.frombytes(blob)
    return tuple(values)


class SQLAlchemyVectorRepository(VectorStoreProtocol):
    """game_vectors テーブルへ 1 ゲーム 1 行で upsert する。"""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    def upsert_vector(
        self,
        record_id: GameID,
        vector: Sequence[float],
        text: str,
        *,
        model: str | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        if not vector:
            raise ValueError("vector must not be empty")
        timestamp = to_db_datetime(updated_at or self._clock())
        try:
            with self._session_factory() as session, session.begin():
                row = session.scalar(select(GameVector).where(GameVector.game_id == record_id))
                if row is None:
                    row = GameVector(game_id=record_id)
                    session.add(row)
                row.dimension = len(vector)
                row.embedding = _pack(vector)
                row.content = text
                row.model = model
                row.updated_at = timestamp
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to store vector for game {record_id}: {exc}") from exc

    def get_vector(self, record_id: GameID) -> StoredVector | None:
        with self._session_factory() as session:
            row = session.scalar(select(GameVector).where(GameVector.game_id == record_id))
            if row is None:
                return None
            return StoredVector(
                game_id=row.game_id,
                values=_unpack(row.embedding),
                content=row.content,
                model=row.model,
                updated_at=_from_db_datetime(row.updated_at),
            )


class SQLAlchemyCheckpointStore(CheckpointStoreProtocol):
    """ソースごとに 1 行のチェックポイントを上書き保存する。"""

    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def write(self, checkpoint: Checkpoint) -> None:
        try:
            with self._session_factory() as session, session.begin():
                row = session.get(SyncCheckpoint, checkpoint.source)
                if row is None:
                    row = SyncCheckpoint(source=checkpoint.source)
                    session.add(row)
                row.last_run = to_db_datetime(checkpoint.last_run)
                row.processed = checkpoint.processed
                row.errors = checkpoint.errors
                row.last_error = checkpoint.last_error
        except SQLAlchemyError as exc:
            raise CheckpointWriteError(
                f"Failed to write checkpoint for {checkpoint.source}: {exc}"
            ) from exc

    def read(self, source: str) -> Checkpoint | None:
        with self._session_factory() as session:
            row = session.get(SyncCheckpoint, source)
            return self._to_checkpoint(row) if row is not None else None

    def list_all(self) -> list[Checkpoint]:
        with self._session_factory() as session:
            rows = session.scalars(select(SyncCheckpoint).order_by(SyncCheckpoint.source)).all()
            return [self._to_checkpoint(row) for row in rows]

    @staticmethod
    def _to_checkpoint(row: SyncCheckpoint) -> Checkpoint:
        return Checkpoint(
            source=row.source,
            last_run=as_utc(row.last_run),
            processed=row.processed,
            errors=row.errors,
            last_error=row.last_error,
        )


def game_rows_from_mappings(rows: Sequence[Mapping[str, Any]]) -> list[Game]:
    """テストやシード投入向けに dict から Game 行を作る。"""

    games: list[Game] = []
    for payload in rows:
        values = dict(payload)
        updated_at = values.pop("updated_at", None)
        game = Game(**values)
        if updated_at is not None:
            game.updated_at = to_db_datetime(updated_at)
        games.append(game)
    return games
