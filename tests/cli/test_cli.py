"""Tests for the txoutbox CLI (Typer CliRunner)."""

from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest
from typer.testing import CliRunner

from txoutbox.cli.app import app
from txoutbox.core.connection import create_transaction_manager
from txoutbox.core.dialect import get_dialect
from txoutbox.dispatch.invocation import Invocation
from txoutbox.dispatch.outbox import TransactionOutbox
from txoutbox.dispatch.persistor import DefaultPersistor

pytestmark = pytest.mark.integration

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cwd(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for name in ("TXOUTBOX_DATABASE_URL", "TXOUTBOX_LOG_LEVEL", "TXOUTBOX_LOG_FORMAT"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db(tmp_path: Path) -> str:
    return str(tmp_path / "cli.db")


@pytest.fixture
def seeded(db):
    """Migrated database plus an outbox for seeding entries (no processing)."""
    tm, _ = create_transaction_manager(db)
    outbox = TransactionOutbox(tm, DefaultPersistor(get_dialect("sqlite")), process_immediately=False)
    outbox.initialize()
    return outbox


def _seed(outbox: TransactionOutbox, target: str, *args) -> str:
    with outbox.transaction_manager.transaction():
        return outbox.submit(Invocation.of(target, *args)).entry_id


class TestGlobalOptions:
    def test_help(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "migrate" in result.output
        assert "flush" in result.output

    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.output.startswith("txoutbox ")

    def test_bad_dialect(self, db):
        result = runner.invoke(app, ["migrate", "--database", db, "--dialect", "db2"])
        assert result.exit_code == 2
        assert "Unknown dialect" in result.output


class TestMigrate:
    def test_fresh_then_up_to_date(self, db):
        first = runner.invoke(app, ["migrate", "--database", db])
        assert first.exit_code == 0
        assert "Migrated" in first.output

        second = runner.invoke(app, ["migrate", "--database", db])
        assert second.exit_code == 0
        assert "already at version 10" in second.output

    def test_json(self, db):
        result = runner.invoke(app, ["migrate", "--database", db, "--json"])
        assert result.exit_code == 0
        assert '"to_version": 10' in result.output

    def test_database_from_environment(self, db, monkeypatch):
        monkeypatch.setenv("TXOUTBOX_DATABASE_URL", f"sqlite:///{db}")
        result = runner.invoke(app, ["migrate"])
        assert result.exit_code == 0
        assert Path(db).exists()


class TestStatus:
    def test_requires_schema(self, db):
        result = runner.invoke(app, ["status", "--database", db])
        assert result.exit_code == 1
        assert "txoutbox migrate" in result.output

    def test_counts(self, db, seeded):
        _seed(seeded, "orders.confirm", 1)
        _seed(seeded, "orders.confirm", 2)
        result = runner.invoke(app, ["status", "--database", db, "--json"])
        assert result.exit_code == 0
        assert '"pending": 2' in result.output
        assert '"schema_version": 10' in result.output


class TestFlush:
    def test_nothing_due(self, db, seeded):
        result = runner.invoke(app, ["flush", "--database", db])
        assert result.exit_code == 0
        assert "Nothing due" in result.output

    def test_runs_imported_handlers(self, db, seeded, tmp_path, monkeypatch):
        (tmp_path / "cli_flush_handlers.py").write_text(
            textwrap.dedent(
                """\
                from pathlib import Path

                from txoutbox import handler


                @handler("cli.touch")
                def touch(path):
                    Path(path).write_text("done")
                """
            ),
            encoding="utf-8",
        )
        monkeypatch.syspath_prepend(str(tmp_path))
        marker = tmp_path / "marker.txt"
        entry_id = _seed(seeded, "cli.touch", str(marker))

        result = runner.invoke(app, ["flush", "--database", db, "-H", "cli_flush_handlers"])
        assert result.exit_code == 0
        assert "Flushed" in result.output
        assert marker.read_text() == "done"
        assert seeded.get(entry_id).processed

    def test_unknown_handler_module(self, db, seeded):
        result = runner.invoke(app, ["flush", "--database", db, "-H", "no_such_module_here"])
        assert result.exit_code == 2


class TestEntries:
    def test_show(self, db, seeded):
        entry_id = _seed(seeded, "orders.confirm", 42)
        result = runner.invoke(app, ["show", entry_id, "--database", db, "--json"])
        assert result.exit_code == 0
        assert '"target": "orders.confirm"' in result.output
        assert '"status": "pending"' in result.output

    def test_show_missing(self, db, seeded):
        result = runner.invoke(app, ["show", "missing", "--database", db])
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_unblock(self, db, seeded):
        entry_id = _seed(seeded, "orders.confirm", 42)
        entry = seeded.get(entry_id)
        entry.blocked = True
        entry.attempts = 5
        seeded.transaction_manager.in_transaction(lambda tx: seeded.persistor.update(tx, entry))

        result = runner.invoke(app, ["unblock", entry_id, "--database", db])
        assert result.exit_code == 0
        assert "Unblocked" in result.output
        assert seeded.get(entry_id).attempts == 0

    def test_unblock_not_blocked(self, db, seeded):
        entry_id = _seed(seeded, "orders.confirm", 42)
        result = runner.invoke(app, ["unblock", entry_id, "--database", db])
        assert result.exit_code == 1

    def test_purge(self, db, seeded):
        result = runner.invoke(app, ["purge", "--database", db])
        assert result.exit_code == 0
        assert "Purged 0" in result.output


class TestLoggingOptions:
    @pytest.fixture
    def configured(self, monkeypatch) -> list[dict]:
        calls: list[dict] = []
        monkeypatch.setattr(
            "txoutbox.core.logging.configure_logging", lambda **kw: calls.append(kw)
        )
        return calls

    def test_defaults_from_settings(self, db, configured):
        result = runner.invoke(app, ["migrate", "--database", db])
        assert result.exit_code == 0
        assert configured == [{"level": "INFO", "json_format": True}]

    def test_environment(self, db, configured, monkeypatch):
        monkeypatch.setenv("TXOUTBOX_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("TXOUTBOX_LOG_FORMAT", "console")
        result = runner.invoke(app, ["migrate", "--database", db])
        assert result.exit_code == 0
        assert configured == [{"level": "DEBUG", "json_format": False}]

    def test_flags_override_environment(self, db, configured, monkeypatch):
        monkeypatch.setenv("TXOUTBOX_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("TXOUTBOX_LOG_FORMAT", "console")
        result = runner.invoke(app, ["--log-level", "ERROR", "--log-json", "migrate", "--database", db])
        assert result.exit_code == 0
        assert configured == [{"level": "ERROR", "json_format": True}]

    def test_environment_level_applies(self, db, monkeypatch):
        monkeypatch.setenv("TXOUTBOX_LOG_LEVEL", "ERROR")
        result = runner.invoke(app, ["migrate", "--database", db])
        assert result.exit_code == 0
        assert logging.getLogger().level == logging.ERROR
        assert "migration.running" not in result.output
