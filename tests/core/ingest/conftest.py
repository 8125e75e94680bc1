"""ingest テスト共通のインメモリ実装。"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace

import pytest

from game_catalog_sync.core.ingest.errors import RecordNotFoundError
from game_catalog_sync.core.ingest.models import (
    CandidateCriteria,
    Checkpoint,
    GameRecord,
    GameUpdate,
    SourceName,
    SourceRecord,
)
from game_catalog_sync.shared.types import ExternalKey, GameID


class InMemoryGameStore:
    def __init__(self) -> None:
        self.records: dict[GameID, GameRecord] = {}
        self.updates: list[GameUpdate] = []
        self.criteria: list[CandidateCriteria] = []
        self.select_error: Exception | None = None
        self._lock = threading.Lock()

    def seed(self, records: list[GameRecord]) -> None:
        self.records.update({record.id: record for record in records})

    def select_stale_candidates(
        self, criteria: CandidateCriteria, *, limit: int
    ) -> list[GameRecord]:
        self.criteria.append(criteria)
        if self.select_error is not None:
            raise self.select_error
        return sorted(self.records.values(), key=lambda record: record.id)[:limit]

    def apply_update(self, game_id: GameID, update: GameUpdate) -> GameRecord:
        with self._lock:
            current = self.records.get(game_id)
            if current is None:
                raise RecordNotFoundError(game_id)
            stored = current.apply(update)
            self.records[game_id] = stored
            self.updates.append(update)
            return stored


class InMemoryCheckpointStore:
    def __init__(self) -> None:
        self.fail = False
        self.writes: list[Checkpoint] = []

    def write(self, checkpoint: Checkpoint) -> None:
        if self.fail:
            raise OSError("disk full")
        self.writes.append(checkpoint)

    def read(self, source: str) -> Checkpoint | None:
        matching = [item for item in self.writes if item.source == source]
        return matching[-1] if matching else None


class ScriptedAdapter:
    """キーごとの応答を関数で決めるアダプタ。"""

    def __init__(
        self,
        source: SourceName,
        respond: Callable[[ExternalKey], dict | None],
    ) -> None:
        self.source = source
        self._respond = respond
        self.calls: list[ExternalKey] = []
        self._lock = threading.Lock()

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        with self._lock:
            self.calls.append(key)
        fields = self._respond(key)
        if fields is None:
            return None
        return SourceRecord(source=self.source, key=key, fields=fields)


def make_games(count: int, **fields) -> list[GameRecord]:
    base = GameRecord(id=GameID(0), **fields)
    return [replace(base, id=GameID(index), title=f"Game {index}") for index in range(1, count + 1)]


@pytest.fixture()
def game_store() -> InMemoryGameStore:
    return InMemoryGameStore()


@pytest.fixture()
def checkpoint_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture()
def adapter_factory() -> Callable[..., ScriptedAdapter]:
    return ScriptedAdapter


@pytest.fixture()
def games() -> Callable[..., list[GameRecord]]:
    return make_games
