"""ゲームカタログ DB の SQLAlchemy モデル。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """全 ORM モデルのベース。"""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


class Game(Base):
    """カタログに登録済みのゲーム。同期処理は既存行を更新するだけで新規作成はしない。"""

    __tablename__ = "games"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str | None] = mapped_column(String)
    slug: Mapped[str | None] = mapped_column(String)
    short_description: Mapped[str | None] = mapped_column(Text)
    long_description: Mapped[str | None] = mapped_column(Text)
    genres: Mapped[list[str] | None] = mapped_column(JSON)
    platforms: Mapped[list[str] | None] = mapped_column(JSON)
    categories: Mapped[list[str] | None] = mapped_column(JSON)
    screenshots: Mapped[list[str] | None] = mapped_column(JSON)
    store_links: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    image_url: Mapped[str | None] = mapped_column(String)
    release_date: Mapped[str | None] = mapped_column(String)
    price_usd: Mapped[float | None] = mapped_column(Float)
    rating: Mapped[float | None] = mapped_column(Float)
    rating_count: Mapped[int | None] = mapped_column(Integer)
    metacritic_score: Mapped[int | None] = mapped_column(Integer)
    steam_score: Mapped[float | None] = mapped_column(Float)
    steam_review_count: Mapped[int | None] = mapped_column(Integer)
    critic_score: Mapped[float | None] = mapped_column(Float)
    critic_review_count: Mapped[int | None] = mapped_column(Integer)
    rawg_id: Mapped[int | None] = mapped_column(Integer, unique=True)
    steam_appid: Mapped[int | None] = mapped_column(Integer, unique=True)
    opencritic_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )

    __table_args__ = (
        Index("idx_games_updated_at", "updated_at"),
        Index("idx_games_opencritic_id", "opencritic_id"),
    )


class GameVector(Base):
    """ゲームごとの検索用埋め込みベクトル (1 ゲーム 1 行)。"""

    __tablename__ = "game_vectors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    game_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("games.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    dimension: Mapped[int] = mapped_column(Integer, nullable=False)
    embedding: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    model: Mapped[str | None] = mapped_column(String)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )


class SyncCheckpoint(Base):
    """ソースごとの最終実行記録。"""

    __tablename__ = "sync_checkpoints"

    source: Mapped[str] = mapped_column(String, primary_key=True)
    last_run: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processed: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    errors: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    last_error: Mapped[str | None] = mapped_column(Text)


__all__ = ["Base", "Game", "GameVector", "SyncCheckpoint"]
