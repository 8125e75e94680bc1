from __future__ import annotations

import typer

from game_catalog_sync.cli.commands import db, sync
from game_catalog_sync.shared.logging import configure_logging

app = typer.Typer(help="外部カタログ同期ツールのCLI")

app.add_typer(sync.app, name="sync", help="ソースごとの同期ジョブ")
app.add_typer(db.app, name="db", help="カタログ DB の管理")


def main() -> None:
    """エントリポイント。"""

    configure_logging()
    app()


if __name__ == "__main__":  # pragma: no cover - CLI エントリ
    main()
