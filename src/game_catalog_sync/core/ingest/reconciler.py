"""複数ソースの部分レコードを既存レコードへの差分に統合する。"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

import structlog

from game_catalog_sync.core.ingest.models import (
    MAPPING_FIELDS,
    PATCHABLE_FIELDS,
    SET_FIELDS,
    SOURCE_PRIORITY,
    GameRecord,
    GameUpdate,
    SourceName,
    SourceRecord,
)
from game_catalog_sync.shared.types import utc_now

__all__ = ["Reconciler", "searchable_text", "is_absent"]


def searchable_text(record: GameRecord) -> str:
    """埋め込み対象となる検索用テキストを組み立てる。

    タイトル・短い説明・ジャンル・プラットフォームを空白区切りで連結する。
    ジャンルとプラットフォームは並び順の揺れで再インデックスが起きないようソートする。
    """

    parts = [
        record.title or "",
        record.short_description or "",
        " ".join(sorted(record.genres)),
        " ".join(sorted(record.platforms)),
    ]
    return " ".join(part.strip() for part in parts if part and part.strip())


def is_absent(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, Mapping | list | tuple | set | frozenset):
        return len(value) == 0
    return False


def _normalize(name: str, value: Any) -> Any:
    if name in SET_FIELDS or name == "screenshots":
        if isinstance(value, str):
            value = [value]
        return tuple(dict.fromkeys(str(item).strip() for item in value if str(item).strip()))
    if name in MAPPING_FIELDS:
        return {str(key): str(item) for key, item in value.items() if not is_absent(item)}
    if isinstance(value, str):
        return value.strip()
    return value


def _same(name: str, current: Any, candidate: Any) -> bool:
    if name in SET_FIELDS:
        return frozenset(current or ()) == frozenset(candidate)
    if name == "screenshots":
        return tuple(current or ()) == tuple(candidate)
    if name in MAPPING_FIELDS:
        return dict(current or {}) == dict(candidate)
    return current == candidate


class Reconciler:
    """ソース優先度に従って部分レコードをマージし、変更分だけの差分を作る。

    値の無いフィールドは既存値を上書きしない。
    """

    def __init__(
        self,
        *,
        priority: Sequence[SourceName] = SOURCE_PRIORITY,
        clock: Callable[[], datetime] = utc_now,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._rank = {source: index for index, source in enumerate(priority)}
        self._clock = clock
        self._logger = logger or structlog.get_logger(__name__)

    def reconcile(self, prior: GameRecord, records: Sequence[SourceRecord]) -> GameUpdate:
        ordered = sorted(records, key=lambda record: self._rank.get(record.source, len(self._rank)))
        merged: dict[str, Any] = {}
        for record in ordered:
            for name, value in record.fields.items():
                if name not in PATCHABLE_FIELDS:
                    self._logger.warning(
                        "reconcile_unknown_field", source=str(record.source), field=name
                    )
                    continue
                if is_absent(value):
                    continue
                normalized = _normalize(name, value)
                if is_absent(normalized):
                    continue
                if name in MAPPING_FIELDS:
                    base = merged.get(name, prior.value_of(name))
                    normalized = {**dict(base or {}), **normalized}
                merged[name] = normalized

        changes = {
            name: value
            for name, value in merged.items()
            if not _same(name, prior.value_of(name), value)
        }
        update = GameUpdate(
            game_id=prior.id,
            changes=changes,
            updated_at=self._clock(),
            sources=tuple(record.source for record in ordered),
        )
        after = prior.apply(update)
        update.needs_reindex = searchable_text(prior) != searchable_text(after)
        self._logger.debug(
            "game_reconciled",
            game_id=prior.id,
            changed_fields=list(update.changed_fields),
            needs_reindex=update.needs_reindex,
        )
        return update
