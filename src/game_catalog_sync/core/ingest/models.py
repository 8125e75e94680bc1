"""カタログ同期で扱うドメインモデル。"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from game_catalog_sync.shared.types import DTO, ExternalKey, GameID, utc_now

__all__ = [
    "SourceName",
    "SOURCE_PRIORITY",
    "PATCHABLE_FIELDS",
    "SET_FIELDS",
    "MAPPING_FIELDS",
    "GameRecord",
    "SourceRecord",
    "GameUpdate",
    "Checkpoint",
    "CandidateCriteria",
    "RunState",
    "RecordOutcome",
    "RunSummary",
]


class SourceName(StrEnum):
    RAWG = "rawg"
    STEAMSPY = "steamspy"
    STEAM_STORE = "steam_store"
    OPENCRITIC = "opencritic"


# 後ろのソースほど優先度が高い (同じフィールドを上書きする)。
SOURCE_PRIORITY: tuple[SourceName, ...] = (
    SourceName.RAWG,
    SourceName.STEAMSPY,
    SourceName.STEAM_STORE,
    SourceName.OPENCRITIC,
)

PATCHABLE_FIELDS: frozenset[str] = frozenset(
    {
        "title",
        "slug",
        "short_description",
        "long_description",
        "genres",
        "platforms",
        "categories",
        "screenshots",
        "store_links",
        "image_url",
        "release_date",
        "price_usd",
        "rating",
        "rating_count",
        "metacritic_score",
        "steam_score",
        "steam_review_count",
        "critic_score",
        "critic_review_count",
        "rawg_id",
        "steam_appid",
        "opencritic_id",
    }
)

# 順序を持たない集合として比較するフィールド
SET_FIELDS: frozenset[str] = frozenset({"genres", "platforms", "categories"})
# 既存値へマージするフィールド
MAPPING_FIELDS: frozenset[str] = frozenset({"store_links"})

_SEQUENCE_FIELDS = SET_FIELDS | {"screenshots"}


def _freeze_sequence(values: Any) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = [values]
    return tuple(dict.fromkeys(str(value) for value in values))


@dataclass(slots=True)
class GameRecord(DTO):
    """ストレージ上のゲーム 1 件のスナップショット。"""

    id: GameID
    title: str | None = None
    slug: str | None = None
    short_description: str | None = None
    long_description: str | None = None
    genres: tuple[str, ...] = ()
    platforms: tuple[str, ...] = ()
    categories: tuple[str, ...] = ()
    screenshots: tuple[str, ...] = ()
    store_links: Mapping[str, str] = field(default_factory=dict)
    image_url: str | None = None
    release_date: str | None = None
    price_usd: float | None = None
    rating: float | None = None
    rating_count: int | None = None
    metacritic_score: int | None = None
    steam_score: float | None = None
    steam_review_count: int | None = None
    critic_score: float | None = None
    critic_review_count: int | None = None
    rawg_id: int | None = None
    steam_appid: int | None = None
    opencritic_id: int | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        for name in _SEQUENCE_FIELDS:
            setattr(self, name, _freeze_sequence(getattr(self, name)))
        self.store_links = dict(self.store_links or {})

    def value_of(self, name: str) -> Any:
        if name not in PATCHABLE_FIELDS:
            msg = f"Unknown game field: {name}"
            raise KeyError(msg)
        return getattr(self, name)

    def apply(self, update: GameUpdate) -> GameRecord:
        """差分を適用した新しいスナップショットを返す。"""

        changes = {key: value for key, value in update.changes.items() if value is not None}
        return replace(self, **changes, updated_at=update.updated_at)


@dataclass(slots=True)
class SourceRecord(DTO):
    """1 つの外部ソースから取得・正規化した部分レコード。

    ``fields`` には値が得られたフィールドのみを持つ。``None`` は欠損扱いで取り除く。
    """

    source: SourceName
    key: ExternalKey
    fields: Mapping[str, Any]
    raw: Mapping[str, Any] | None = None
    fetched_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        unknown = set(self.fields) - PATCHABLE_FIELDS
        if unknown:
            msg = f"Unknown fields for {self.source}: {sorted(unknown)}"
            raise ValueError(msg)
        self.fields = {key: value for key, value in self.fields.items() if value is not None}

    @property
    def is_empty(self) -> bool:
        return not self.fields


@dataclass(slots=True)
class GameUpdate(DTO):
    """既存レコードに対する部分更新。値が ``None`` のフィールドは含めない。"""

    game_id: GameID
    changes: Mapping[str, Any]
    updated_at: datetime
    sources: tuple[SourceName, ...] = ()
    needs_reindex: bool = False

    def __post_init__(self) -> None:
        self.changes = {key: value for key, value in self.changes.items() if value is not None}

    @property
    def changed_fields(self) -> tuple[str, ...]:
        return tuple(sorted(self.changes))

    @property
    def is_empty(self) -> bool:
        return not self.changes


@dataclass(slots=True)
class Checkpoint(DTO):
    """ソース単位で 1 件だけ保持される実行記録。"""

    source: str
    last_run: datetime
    processed: int = 0
    errors: int = 0
    last_error: str | None = None

    def __post_init__(self) -> None:
        if self.processed < 0 or self.errors < 0:
            msg = "processed/errors must be non-negative"
            raise ValueError(msg)


@dataclass(slots=True, frozen=True)
class CandidateCriteria:
    """ジョブごとの候補抽出条件。

    ``linked_by`` のいずれかが非 null のレコードを対象とする。``store_links.<name>`` 形式で
    ストアリンクのキーも指定できる。``refresh_field`` を指定した場合は、その値が null か
    ``refresh_after`` より古いレコードに限定する。
    """

    linked_by: tuple[str, ...] = ()
    require_title: bool = False
    refresh_field: str | None = None
    refresh_after: timedelta | None = None

    def __post_init__(self) -> None:
        for name in self.linked_by:
            base = name.split(".", 1)[0]
            if base not in PATCHABLE_FIELDS:
                msg = f"Unknown candidate field: {name}"
                raise ValueError(msg)
        if self.refresh_field is not None and self.refresh_field not in PATCHABLE_FIELDS:
            msg = f"Unknown refresh field: {self.refresh_field}"
            raise ValueError(msg)


class RunState(StrEnum):
    IDLE = "idle"
    SELECTING = "selecting"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    ABORTED = "aborted"


class RecordOutcome(StrEnum):
    UPDATED = "updated"
    SKIPPED_NO_KEY = "skipped_no_key"
    SKIPPED_NO_DATA = "skipped_no_data"


@dataclass(slots=True)
class RunSummary(DTO):
    """1 回のジョブ実行結果。"""

    source: str
    state: RunState
    processed: int = 0
    errors: int = 0
    updated: int = 0
    skipped: int = 0
    reindexed: int = 0
    candidates: int = 0
    duration_ms: int = 0
    cancelled: bool = False
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.state is not RunState.ABORTED

    def to_dict(self) -> dict[str, Any]:
        payload = {item.name: getattr(self, item.name) for item in fields(self)}
        payload["state"] = self.state.value
        payload["succeeded"] = self.succeeded
        return payload
