"""Tests for CLI commands - status, list, abandoned, retry, purge."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from fieldsync.client.cli import cli, get_queue_db_path, load_sync_config, save_config
from fieldsync.client.sync.queue import SyncQueue
from fieldsync.core.types import EntityType, SyncOperation


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def config_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point FIELDSYNC_HOME at a temporary directory."""
    config = tmp_path / ".fieldsync"
    config.mkdir()
    monkeypatch.setenv("FIELDSYNC_HOME", str(config))
    return config


@pytest.fixture
def db_path(config_dir: Path) -> Path:
    """Empty queue database in the config directory."""
    path = config_dir / "queue.db"
    SyncQueue(path).close()
    return path


def seed(db_path: Path) -> dict[str, str]:
    """Add one item per interesting status, returning their ids."""
    with SyncQueue(db_path, clock=lambda: 1000.0) as queue:
        done = queue.enqueue(EntityType.SESSION, "s1", SyncOperation.CREATE)
        queue.claim_batch(1)
        queue.mark_completed(done.id)

        stuck = queue.enqueue(EntityType.PHASE, "p1", SyncOperation.UPDATE)
        queue.claim_batch(1)
        queue.mark_failed(stuck.id, "[remote] Internal error", 1060.0)
        queue.mark_abandoned(stuck.id)

        waiting = queue.enqueue(EntityType.FRAMES, "s1", SyncOperation.CREATE)
    return {"completed": done.id, "abandoned": stuck.id, "pending": waiting.id}


class TestConfig:
    """Tests for CLI config helpers."""

    def test_default_db_path(self, config_dir: Path) -> None:
        assert get_queue_db_path() == config_dir / "queue.db"

    def test_configured_db_path(self, config_dir: Path, tmp_path: Path) -> None:
        save_config({"queue_db": str(tmp_path / "other.db")})
        assert get_queue_db_path() == tmp_path / "other.db"

    def test_sync_section(self, config_dir: Path) -> None:
        save_config({"sync": {"max_retries": 7}})

        assert load_sync_config().max_retries == 7
        assert json.loads((config_dir / "config.json").read_text())["sync"] == {"max_retries": 7}


class TestStatusCommand:
    """Tests for 'fieldsync status'."""

    def test_counts(self, runner: CliRunner, db_path: Path) -> None:
        seed(db_path)

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert "pending     1" in lines
        assert "completed   1" in lines
        assert "abandoned   1" in lines
        assert lines[-1].startswith("next attempt ")

    def test_empty_queue(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 0
        assert "next attempt -" in result.output

    def test_missing_database(self, runner: CliRunner, tmp_path: Path, config_dir: Path) -> None:
        result = runner.invoke(cli, ["--db", str(tmp_path / "nope.db"), "status"])

        assert result.exit_code == 1
        assert "Queue database not found" in result.output

    def test_invalid_sync_config(self, runner: CliRunner, db_path: Path) -> None:
        save_config({"sync": {"max_retries": -1}})

        result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "Invalid sync configuration" in result.output

    def test_explicit_db(self, runner: CliRunner, tmp_path: Path, config_dir: Path) -> None:
        other = tmp_path / "other.db"
        seed(other)

        result = runner.invoke(cli, ["--db", str(other), "status"])

        assert result.exit_code == 0
        assert "abandoned   1" in result.output.splitlines()


class TestListCommand:
    """Tests for 'fieldsync list'."""

    def test_empty(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 0
        assert "Queue is empty." in result.output

    def test_lists_all_items(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["list"])

        assert result.exit_code == 0
        for item_id in ids.values():
            assert item_id in result.output
        assert "[remote] Internal error" in result.output

    def test_status_filter(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["list", "--status", "pending"])

        assert result.exit_code == 0
        assert ids["pending"] in result.output
        assert ids["completed"] not in result.output

    def test_unknown_status(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["list", "--status", "lost"])
        assert result.exit_code != 0


class TestAbandonedCommand:
    """Tests for 'fieldsync abandoned'."""

    def test_none(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["abandoned"])

        assert result.exit_code == 0
        assert "No abandoned items." in result.output

    def test_lists_items_with_error(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["abandoned"])

        assert result.exit_code == 0
        assert "1 item(s) need attention:" in result.output
        assert ids["abandoned"] in result.output
        assert "retries=1/3" in result.output


class TestRetryCommand:
    """Tests for 'fieldsync retry'."""

    def test_retry_abandoned(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["retry", ids["abandoned"]])

        assert result.exit_code == 0
        assert "Requeued PHASE-UPDATE p1" in result.output
        with SyncQueue(db_path) as queue:
            item = queue.get_item(ids["abandoned"])
            assert item.retry_count == 0
            assert queue.abandoned_count() == 0

    def test_retry_unknown(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["retry", "missing"])

        assert result.exit_code == 1
        assert "Error: Unknown queue item: missing" in result.output

    def test_retry_requires_abandoned(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["retry", ids["pending"]])

        assert result.exit_code == 1
        assert "Cannot transition from PENDING to PENDING" in result.output


class TestPurgeCommand:
    """Tests for 'fieldsync purge'."""

    def test_purge_default_retention(self, runner: CliRunner, db_path: Path) -> None:
        ids = seed(db_path)

        result = runner.invoke(cli, ["purge"])

        assert result.exit_code == 0
        assert "Purged 1 completed item(s)." in result.output
        with SyncQueue(db_path) as queue:
            assert queue.get_item(ids["completed"]) is None
            assert queue.get_item(ids["abandoned"]) is not None

    def test_nothing_to_purge(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["purge", "--days", "1"])

        assert result.exit_code == 0
        assert "No items to purge." in result.output

    def test_negative_days_rejected(self, runner: CliRunner, db_path: Path) -> None:
        result = runner.invoke(cli, ["purge", "--days", "-1"])
        assert result.exit_code != 0
