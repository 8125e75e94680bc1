from __future__ import annotations

import json
import signal
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from game_catalog_sync.core.ingest.jobs import JobName, RunConfig
from game_catalog_sync.core.ingest.models import Checkpoint, RunSummary
from game_catalog_sync.core.ingest.runner import IngestionRunner
from game_catalog_sync.infra.db import (
    DatabaseError,
    DatabaseSessionManager,
    SQLAlchemyCheckpointStore,
    SQLAlchemyGameRepository,
    SQLAlchemyVectorRepository,
)
from game_catalog_sync.infra.http.retry import RetryPolicy
from game_catalog_sync.shared.config import get_settings
from game_catalog_sync.shared.exceptions import ConfigurationError
from game_catalog_sync.shared.logging import configure_logging, get_logger


class OutputFormat(str, Enum):
    """出力形式。"""

    TABLE = "table"
    JSON = "json"


app = typer.Typer(help="外部カタログからの同期ジョブ")


@contextmanager
def _cancel_on_interrupt(cancel_event: threading.Event) -> Iterator[None]:
    """Ctrl-C で実行中のレコードを打ち切らず、新しいレコードの着手だけを止める。"""

    if threading.current_thread() is not threading.main_thread():
        yield
        return

    def handler(_signum: int, _frame: object) -> None:
        cancel_event.set()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)


def _format_cell(value: object) -> str:
    if value is None:
        return "-"
    if isinstance(value, bool):
        return "yes" if value else "no"
    return str(value)


def _render_summary(summary: RunSummary, output: OutputFormat) -> None:
    payload = summary.to_dict()
    if output is OutputFormat.JSON:
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    console = Console(force_terminal=False, color_system=None)
    table = Table(title=f"Sync Run: {summary.source}")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value")
    for key in (
        "state",
        "candidates",
        "processed",
        "updated",
        "skipped",
        "reindexed",
        "errors",
        "duration_ms",
        "cancelled",
        "error",
    ):
        table.add_row(key, _format_cell(payload[key]))
    console.print(table)


def _render_checkpoints(items: Iterable[Checkpoint], output: OutputFormat) -> None:
    checkpoints = list(items)
    if output is OutputFormat.JSON:
        payload = [
            {
                "source": item.source,
                "last_run": item.last_run.isoformat(),
                "processed": item.processed,
                "errors": item.errors,
                "last_error": item.last_error,
            }
            for item in checkpoints
        ]
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
        return

    console = Console(force_terminal=False, color_system=None)
    table = Table(title="Sync Checkpoints")
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Last Run")
    table.add_column("Processed", justify="right")
    table.add_column("Errors", justify="right")
    table.add_column("Last Error")
    for item in checkpoints:
        table.add_row(
            item.source,
            item.last_run.isoformat(timespec="seconds"),
            str(item.processed),
            str(item.errors),
            item.last_error or "-",
        )
    console.print(table)


def _open_database() -> DatabaseSessionManager:
    settings = get_settings()
    manager = DatabaseSessionManager(settings=settings)
    manager.initialize_schema()
    return manager


@app.command("run")
def run(  # noqa: PLR0913 - CLI のため引数が多い
    job: Annotated[
        JobName,
        typer.Option("--job", "-j", case_sensitive=False, help="実行するジョブ"),
    ],
    authorization: Annotated[
        str | None,
        typer.Option(
            "--authorization",
            "-a",
            envvar="SYNC_AUTHORIZATION",
            help='サービス資格情報 ("Bearer <token>")',
        ),
    ] = None,
    batch_size: Annotated[
        int | None, typer.Option("--batch-size", min=1, help="1 回で処理する最大件数")
    ] = None,
    workers: Annotated[
        int | None, typer.Option("--workers", min=1, help="並列ワーカー数")
    ] = None,
    max_pages: Annotated[
        int | None, typer.Option("--max-pages", min=1, help="ページング取得の最大ページ数")
    ] = None,
    max_attempts: Annotated[
        int | None, typer.Option("--max-attempts", min=1, help="再試行を含む最大試行回数")
    ] = None,
    base_delay: Annotated[
        float | None, typer.Option("--base-delay", min=0.0, help="バックオフの初期待機秒数")
    ] = None,
    max_delay: Annotated[
        float | None, typer.Option("--max-delay", min=0.0, help="バックオフの上限秒数")
    ] = None,
    no_reindex: Annotated[
        bool, typer.Option("--no-reindex", help="埋め込みの再生成を行わない")
    ] = False,
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
    ] = OutputFormat.TABLE,
) -> None:
    """指定したソースの同期ジョブを 1 回実行する。"""

    try:
        settings = get_settings()
    except ConfigurationError as exc:
        typer.echo(f"設定の読み込みに失敗しました: {exc}")
        raise typer.Exit(code=1) from exc
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    logger = get_logger("cli.sync", job=job.value)

    base = RunConfig.from_settings(settings)
    policy = base.retry_policy
    try:
        retry_policy = RetryPolicy(
            max_attempts=max_attempts or policy.max_attempts,
            base_delay=policy.base_delay if base_delay is None else base_delay,
            max_delay=policy.max_delay if max_delay is None else max_delay,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    config = base.with_overrides(
        batch_size=batch_size,
        max_workers=workers,
        max_pages=max_pages,
        retry_policy=retry_policy,
        reindex=False if no_reindex else None,
    )

    try:
        db_manager = _open_database()
    except DatabaseError as exc:
        logger.error("database_unavailable", error=str(exc))
        typer.echo("DB の初期化に失敗しました。")
        raise typer.Exit(code=1) from exc

    session_factory = db_manager.session_factory
    runner = IngestionRunner(
        settings=settings,
        game_store=SQLAlchemyGameRepository(session_factory),
        checkpoint_store=SQLAlchemyCheckpointStore(session_factory),
        vector_store=SQLAlchemyVectorRepository(session_factory),
    )
    cancel_event = threading.Event()
    try:
        with _cancel_on_interrupt(cancel_event):
            summary = runner.run(
                job.value,
                authorization=authorization,
                config=config,
                cancel_event=cancel_event,
            )
    finally:
        db_manager.close()

    _render_summary(summary, output)
    if not summary.succeeded:
        raise typer.Exit(code=1)


@app.command("checkpoints")
def checkpoints(
    output: Annotated[
        OutputFormat,
        typer.Option("--output", "-o", case_sensitive=False, help="出力形式(table/json)"),
    ] = OutputFormat.TABLE,
) -> None:
    """ソースごとの最終実行記録を表示する。"""

    settings = get_settings()
    configure_logging(level=settings.log_level, json_output=settings.log_json)
    try:
        db_manager = _open_database()
    except DatabaseError as exc:
        typer.echo("DB の初期化に失敗しました。")
        raise typer.Exit(code=1) from exc
    try:
        items = SQLAlchemyCheckpointStore(db_manager.session_factory).list_all()
    finally:
        db_manager.close()
    _render_checkpoints(items, output)
