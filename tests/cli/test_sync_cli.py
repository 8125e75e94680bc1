from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest
from typer.testing import CliRunner

from game_catalog_sync.cli.app import app
from game_catalog_sync.cli.commands import db, sync
from game_catalog_sync.core.ingest.models import Checkpoint
from game_catalog_sync.infra.db import DatabaseSessionManager, SQLAlchemyCheckpointStore
from game_catalog_sync.shared.config import AppSettings, StorageSettings

TOKEN = "cli-secret"


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch) -> AppSettings:
    monkeypatch.delenv("SYNC_AUTHORIZATION", raising=False)
    app_settings = AppSettings(
        _env_file=None,
        service={"token": TOKEN},
        gemini={"api_key": None},
        storage=StorageSettings(sqlite_path=tmp_path / "catalog.db"),
    )
    monkeypatch.setattr(sync, "get_settings", lambda: app_settings)
    monkeypatch.setattr(db, "get_settings", lambda: app_settings)
    return app_settings


def test_run_rejects_missing_credentials(runner: CliRunner, settings: AppSettings) -> None:
    result = runner.invoke(app, ["sync", "run", "--job", "steam"])

    assert result.exit_code == 1
    assert "aborted" in result.output
    assert "Unauthorized" in result.output


def test_run_with_empty_catalog_reports_json_summary(
    runner: CliRunner, settings: AppSettings
) -> None:
    result = runner.invoke(
        app,
        ["sync", "run", "-j", "steam", "-a", f"Bearer {TOKEN}", "--workers", "2", "-o", "json"],
    )

    assert result.exit_code == 0, result.output
    payload = json.loads(result.stdout)
    assert payload["source"] == "steam"
    assert payload["state"] == "idle"
    assert payload["processed"] == 0
    assert payload["succeeded"] is True

    checkpoints = runner.invoke(app, ["sync", "checkpoints", "--output", "json"])
    assert checkpoints.exit_code == 0, checkpoints.output
    assert [item["source"] for item in json.loads(checkpoints.stdout)] == ["steam"]


def test_run_reads_credentials_from_env(
    runner: CliRunner, settings: AppSettings, monkeypatch
) -> None:
    monkeypatch.setenv("SYNC_AUTHORIZATION", f"Bearer {TOKEN}")

    result = runner.invoke(app, ["sync", "run", "--job", "OpenCritic", "--no-reindex"])

    assert result.exit_code == 0, result.output
    assert "Sync Run: opencritic" in result.output


def test_rawg_without_key_fails(runner: CliRunner, settings: AppSettings) -> None:
    result = runner.invoke(
        app, ["sync", "run", "-j", "rawg", "-a", f"Bearer {TOKEN}", "-o", "json"]
    )

    assert result.exit_code == 1
    payload = json.loads(result.stdout)
    assert payload["state"] == "aborted"
    assert "RAWG API key" in payload["error"]


def test_checkpoints_table(runner: CliRunner, settings: AppSettings) -> None:
    manager = DatabaseSessionManager(settings=settings)
    manager.initialize_schema()
    SQLAlchemyCheckpointStore(manager.session_factory).write(
        Checkpoint(
            source="rawg",
            last_run=datetime(2026, 10, 1, tzinfo=UTC),
            processed=12,
            errors=1,
            last_error="HTTP 503",
        )
    )
    manager.close()

    result = runner.invoke(app, ["sync", "checkpoints"])

    assert result.exit_code == 0, result.output
    assert "rawg" in result.output
    assert "HTTP 503" in result.output


def test_db_init_creates_schema(runner: CliRunner, settings: AppSettings) -> None:
    result = runner.invoke(app, ["db", "init"])

    assert result.exit_code == 0, result.output
    assert settings.storage.sqlite_path.exists()
