"""Tests for CLI commands."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner

from entitysync.cli import cli
from entitysync.core.config import ConfigStore, SyncConfig
from entitysync.core.types import Direction, Origin
from entitysync.server.database import Database
from entitysync.sync.alerts import AlertSink
from entitysync.sync.audit import AuditLog
from entitysync.sync.queue import ChangeQueue
from entitysync.sync.types import ChangeIntent

STATUS_REPORT = {
    "queue": {"depth": 2, "oldest_pending_age_seconds": 12.4, "counts": {"pending": 2, "done": 5}},
    "entity_types": {
        "lead": {
            "last_pull_at": "2024-01-01T12:00:00+00:00",
            "last_push_at": None,
            "consecutive_failures": 1,
            "pending": 2,
        }
    },
    "open_reviews": 3,
    "paused_entities": 0,
}


@pytest.fixture
def runner() -> CliRunner:
    """Create a CLI test runner."""
    return CliRunner()


class TestStatusCommand:
    """Tests for 'entitysync status'."""

    def test_table(self, runner: CliRunner) -> None:
        with patch("entitysync.cli.admin._call", return_value=STATUS_REPORT) as call:
            result = runner.invoke(cli, ["status", "--url", "http://sync:9000"])

        assert result.exit_code == 0
        call.assert_called_once_with("http://sync:9000", "GET", "/sync/status")
        assert "Queue depth:      2" in result.output
        assert "Oldest pending:   12s" in result.output
        assert "done=5, pending=2" in result.output
        assert "lead" in result.output

    def test_json(self, runner: CliRunner) -> None:
        with patch("entitysync.cli.admin._call", return_value=STATUS_REPORT):
            result = runner.invoke(cli, ["status", "--json"])

        assert result.exit_code == 0
        assert '"open_reviews": 3' in result.output

    def test_unreachable_service(self, runner: CliRunner) -> None:
        real_client = httpx.Client

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(refuse), **kwargs)

        with patch("entitysync.cli.admin.httpx.Client", side_effect=client_factory):
            result = runner.invoke(cli, ["status"])

        assert result.exit_code == 1
        assert "Cannot reach" in result.output

    def test_error_detail_shown(self, runner: CliRunner) -> None:
        real_client = httpx.Client

        def not_found(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"detail": "Queue item 9 not found"})

        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(not_found), **kwargs)

        with patch("entitysync.cli.admin.httpx.Client", side_effect=client_factory):
            result = runner.invoke(cli, ["queue", "retry", "9"])

        assert result.exit_code == 1
        assert "Error (404): Queue item 9 not found" in result.output


class TestPullCommand:
    """Tests for 'entitysync pull'."""

    def test_enqueues_system_pull(self, runner: CliRunner) -> None:
        with patch("entitysync.cli.admin._call", return_value={"id": 7}) as call:
            result = runner.invoke(cli, ["pull", "lead"])

        assert result.exit_code == 0
        assert "item 7" in result.output
        body = call.call_args.kwargs["json"]
        assert body == {"entity_type": "lead", "direction": "pull", "origin": "system"}


class TestConflictsCommands:
    """Tests for 'entitysync conflicts'."""

    def test_list_empty(self, runner: CliRunner) -> None:
        with patch("entitysync.cli.admin._call", return_value=[]) as call:
            result = runner.invoke(cli, ["conflicts", "list", "--entity-type", "lead"])

        assert result.exit_code == 0
        assert "No conflicts." in result.output
        assert call.call_args.kwargs["params"] == {
            "status": "manual_review",
            "limit": 50,
            "entity_type": "lead",
        }

    def test_list(self, runner: CliRunner) -> None:
        records = [{
            "id": 4,
            "entity_type": "lead",
            "local_id": "L1",
            "field": "notes",
            "candidate_local_id": None,
            "local_value": "a",
            "remote_value": "b",
            "status": "manual_review",
        }]
        with patch("entitysync.cli.admin._call", return_value=records):
            result = runner.invoke(cli, ["conflicts", "list"])

        assert '#4 lead/L1 notes local="a" remote="b" [manual_review]' in result.output

    def test_resolve_value_parsed_as_json(self, runner: CliRunner) -> None:
        with patch(
            "entitysync.cli.admin._call", return_value={"id": 4, "status": "resolved"}
        ) as call:
            result = runner.invoke(
                cli, ["conflicts", "resolve", "4", "--value", "42", "--by", "alice"]
            )

        assert result.exit_code == 0
        assert "Conflict #4 resolved" in result.output
        assert call.call_args.kwargs["json"] == {"resolved_by": "alice", "value": 42, "merge": None}

    def test_resolve_plain_string(self, runner: CliRunner) -> None:
        with patch(
            "entitysync.cli.admin._call", return_value={"id": 4, "status": "resolved"}
        ) as call:
            runner.invoke(cli, ["conflicts", "resolve", "4", "--value", "Acme", "--by", "alice"])

        assert call.call_args.kwargs["json"]["value"] == "Acme"

    def test_resolve_duplicate(self, runner: CliRunner) -> None:
        with patch(
            "entitysync.cli.admin._call", return_value={"id": 5, "status": "resolved"}
        ) as call:
            runner.invoke(cli, ["conflicts", "resolve", "5", "--keep-separate", "--by", "bob"])

        assert call.call_args.kwargs["json"]["merge"] is False

    def test_resolve_requires_decision(self, runner: CliRunner) -> None:
        with patch("entitysync.cli.admin._call") as call:
            result = runner.invoke(cli, ["conflicts", "resolve", "4", "--by", "alice"])

        assert result.exit_code == 1
        call.assert_not_called()


class TestQueueCommands:
    """Tests for 'entitysync queue'."""

    def test_cancel(self, runner: CliRunner) -> None:
        with patch(
            "entitysync.cli.admin._call", return_value={"id": 3, "status": "cancelled"}
        ) as call:
            result = runner.invoke(cli, ["queue", "cancel", "3"])

        assert result.exit_code == 0
        assert call.call_args.args[1:] == ("POST", "/sync/queue/3/cancel")
        assert "Item 3 is cancelled" in result.output

    def test_purge_missing_database(self, runner: CliRunner, tmp_path: Path) -> None:
        result = runner.invoke(cli, ["queue", "purge", "--db-path", str(tmp_path / "none.db")])

        assert result.exit_code == 1
        assert "Database not found" in result.output

    def test_purge(self, runner: CliRunner, tmp_path: Path) -> None:
        db_path = tmp_path / "sync.db"
        db = Database(db_path)
        change_queue = ChangeQueue(db, ConfigStore(SyncConfig()), AuditLog(db), AlertSink())
        change_queue.enqueue(ChangeIntent(
            entity_type="lead", direction=Direction.PUSH, origin=Origin.LOCAL, local_id="L1"
        ))
        change_queue.enqueue(ChangeIntent(
            entity_type="lead", direction=Direction.PUSH, origin=Origin.LOCAL, local_id="L2"
        ))
        [item] = change_queue.dequeue_batch(1)
        change_queue.mark_done(item)
        db.close()

        result = runner.invoke(cli, ["queue", "purge", "-d", "0", "--db-path", str(db_path)])

        assert result.exit_code == 0
        assert "Purged 1 queue items." in result.output

        result = runner.invoke(cli, ["queue", "purge", "-d", "0", "--db-path", str(db_path)])
        assert "No items to purge." in result.output


class TestServeCommand:
    """Tests for 'entitysync serve'."""

    def test_serve_runs_uvicorn(self, runner: CliRunner, tmp_path: Path) -> None:
        config_file = tmp_path / "config.json"
        config_file.write_text(
            '{"db_path": "%s", "log_path": "%s"}' % (tmp_path / "s.db", tmp_path / "s.log")
        )

        with patch("uvicorn.run") as run, patch("entitysync.server.app.setup_logging"):
            result = runner.invoke(cli, ["serve", "--config", str(config_file), "--port", "9100"])

        assert result.exit_code == 0, result.output
        run.assert_called_once()
        assert run.call_args.kwargs == {"host": "127.0.0.1", "port": 9100}
