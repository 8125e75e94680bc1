"""初期スキーマ"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "games",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("title", sa.String()),
        sa.Column("slug", sa.String()),
        sa.Column("short_description", sa.Text()),
        sa.Column("long_description", sa.Text()),
        sa.Column("genres", sa.JSON()),
        sa.Column("platforms", sa.JSON()),
        sa.Column("categories", sa.JSON()),
        sa.Column("screenshots", sa.JSON()),
        sa.Column("store_links", sa.JSON()),
        sa.Column("image_url", sa.String()),
        sa.Column("release_date", sa.String()),
        sa.Column("price_usd", sa.Float()),
        sa.Column("rating", sa.Float()),
        sa.Column("rating_count", sa.Integer()),
        sa.Column("metacritic_score", sa.Integer()),
        sa.Column("steam_score", sa.Float()),
        sa.Column("steam_review_count", sa.Integer()),
        sa.Column("critic_score", sa.Float()),
        sa.Column("critic_review_count", sa.Integer()),
        sa.Column("rawg_id", sa.Integer(), unique=True),
        sa.Column("steam_appid", sa.Integer(), unique=True),
        sa.Column("opencritic_id", sa.Integer()),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index("idx_games_updated_at", "games", ["updated_at"])
    op.create_index("idx_games_opencritic_id", "games", ["opencritic_id"])

    op.create_table(
        "game_vectors",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "game_id",
            sa.Integer(),
            sa.ForeignKey("games.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("dimension", sa.Integer(), nullable=False),
        sa.Column("embedding", sa.LargeBinary(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("model", sa.String()),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "sync_checkpoints",
        sa.Column("source", sa.String(), primary_key=True),
        sa.Column("last_run", sa.DateTime(), nullable=False),
        sa.Column("processed", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("errors", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text()),
    )


def downgrade() -> None:
    op.drop_table("sync_checkpoints")
    op.drop_table("game_vectors")
    op.drop_index("idx_games_opencritic_id", table_name="games")
    op.drop_index("idx_games_updated_at", table_name="games")
    op.drop_table("games")
