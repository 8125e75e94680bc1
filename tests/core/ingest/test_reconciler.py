"""Reconciler の統合規則 (欠損スキップ・優先度・再インデックス判定) の検証。"""

from __future__ import annotations

from datetime import UTC, datetime

from game_catalog_sync.core.ingest.models import GameRecord, SourceName, SourceRecord
from game_catalog_sync.core.ingest.reconciler import Reconciler, is_absent, searchable_text
from game_catalog_sync.shared.types import GameID

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _reconciler() -> Reconciler:
    return Reconciler(clock=lambda: NOW)


def _record(source: SourceName, **fields) -> SourceRecord:
    return SourceRecord(source=source, key=1, fields=fields)


def test_absent_values_never_overwrite_existing_data() -> None:
    prior = GameRecord(id=GameID(1), title="Portal 2", genres=("RPG",), price_usd=9.99)

    update = _reconciler().reconcile(
        prior,
        [_record(SourceName.STEAM_STORE, genres=[], short_description="   ", price_usd=None)],
    )

    assert update.is_empty
    assert update.updated_at == NOW
    assert not update.needs_reindex


def test_genre_order_is_not_a_change() -> None:
    prior = GameRecord(id=GameID(1), title="Portal 2", genres=("RPG", "Action"))

    update = _reconciler().reconcile(
        prior, [_record(SourceName.STEAM_STORE, genres=["Action", "RPG"])]
    )

    assert "genres" not in update.changes
    assert not update.needs_reindex


def test_higher_priority_source_wins_regardless_of_input_order() -> None:
    prior = GameRecord(id=GameID(1), title="Portal 2")

    update = _reconciler().reconcile(
        prior,
        [
            _record(SourceName.STEAM_STORE, price_usd=4.99),
            _record(SourceName.STEAMSPY, price_usd=19.99, steam_score=98),
        ],
    )

    assert update.changes == {"price_usd": 4.99, "steam_score": 98}
    assert update.sources == (SourceName.STEAMSPY, SourceName.STEAM_STORE)


def test_store_links_are_merged_into_existing_links() -> None:
    prior = GameRecord(
        id=GameID(1), store_links={"steam": "https://store.steampowered.com/app/620/"}
    )

    update = _reconciler().reconcile(
        prior, [_record(SourceName.RAWG, store_links={"gog": "https://www.gog.com/game/portal"})]
    )

    assert update.changes["store_links"] == {
        "steam": "https://store.steampowered.com/app/620/",
        "gog": "https://www.gog.com/game/portal",
    }


def test_reindex_only_when_searchable_text_changes() -> None:
    prior = GameRecord(id=GameID(1), title="Portal 2", platforms=("PC",))

    price_only = _reconciler().reconcile(prior, [_record(SourceName.STEAMSPY, price_usd=9.99)])
    new_platform = _reconciler().reconcile(
        prior, [_record(SourceName.STEAM_STORE, platforms=["PC", "Mac"])]
    )

    assert price_only.changes == {"price_usd": 9.99}
    assert not price_only.needs_reindex
    assert new_platform.changes["platforms"] == ("PC", "Mac")
    assert new_platform.needs_reindex


def test_unchanged_values_are_left_out_of_the_patch() -> None:
    prior = GameRecord(id=GameID(1), title="Portal 2", critic_score=95, opencritic_id=42)

    update = _reconciler().reconcile(
        prior,
        [
            _record(
                SourceName.OPENCRITIC, critic_score=95, opencritic_id=42, critic_review_count=120
            )
        ],
    )

    assert update.changes == {"critic_review_count": 120}


def test_searchable_text_sorts_sets_and_skips_blanks() -> None:
    record = GameRecord(
        id=GameID(1),
        title="Celeste",
        genres=("Platformer", "Indie"),
        platforms=("Switch", "PC"),
    )

    assert searchable_text(record) == "Celeste Indie Platformer PC Switch"
    assert searchable_text(GameRecord(id=GameID(2))) == ""


def test_is_absent() -> None:
    assert is_absent(None)
    assert is_absent(" ")
    assert is_absent([])
    assert is_absent({})
    assert not is_absent(0)
    assert not is_absent(False)
