from __future__ import annotations

from typing import Annotated

import typer

from game_catalog_sync.infra.db import DatabaseError, DatabaseSessionManager
from game_catalog_sync.shared.config import get_settings
from game_catalog_sync.shared.logging import configure_logging, get_logger

app = typer.Typer(help="カタログ DB の管理")


@app.command("init")
def init(
    revision: Annotated[str, typer.Option("--revision", help="適用する Alembic リビジョン")] = "head",
) -> None:
    """SQLite スキーマを作成・更新する。"""

    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    logger = get_logger("cli.db")
    manager = DatabaseSessionManager(settings=settings)
    try:
        manager.initialize_schema(revision)
    except DatabaseError as exc:
        logger.error("schema_init_failed", error=str(exc))
        typer.echo(f"スキーマの初期化に失敗しました: {exc}")
        raise typer.Exit(code=1) from exc
    finally:
        manager.close()
    typer.echo(f"スキーマを初期化しました: {manager.db_path}")
