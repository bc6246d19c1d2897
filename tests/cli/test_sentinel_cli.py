"""Tests for the sentinel CLI via typer's CliRunner against a real SQLite file."""

from __future__ import annotations

import json
import sqlite3

import pytest
from typer.testing import CliRunner

from sentinel.cli.app import app
from sentinel.core.connection import SqliteConnection
from sentinel.core.settings import clear_settings_cache
from sentinel.queue import QueueItem, SqlQueue

runner = CliRunner()


@pytest.fixture
def cli(tmp_path, db_url, monkeypatch):
    """Invoke the CLI against the test database; fails loudly on crashes."""
    monkeypatch.chdir(tmp_path)

    def _invoke(*args: str, database: bool = True):
        argv = ["--log-level", "WARNING", *args]
        if database:
            argv += ["--database", db_url]
        result = runner.invoke(app, argv)
        if result.exception and not isinstance(result.exception, SystemExit):
            raise result.exception
        return result

    assert _invoke("db", "init").exit_code == 0
    return _invoke


def _json(result):
    return json.loads(result.stdout)


def _make_due(db_path, task_id):
    with sqlite3.connect(db_path) as raw:
        raw.execute(
            "UPDATE sentinel_tasks SET next_execution = '2000-01-01 00:00:00.000000' WHERE id = ?",
            (task_id,),
        )


class TestRootCommands:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert "sentinel" in result.stdout

    def test_db_init_is_idempotent(self, cli):
        result = cli("db", "init", "--json")
        assert result.exit_code == 0
        assert _json(result)["skipped"] == ["001_sentinel.sql"]


class TestTaskCommands:
    def test_add_and_show(self, cli):
        result = cli("task", "add", "logrotate", "--cron", "0 3 * * *", "--priority", "2", "--json")
        assert result.exit_code == 0
        created = _json(result)
        assert created["type"] == "logrotate"
        assert created["priority"] == 2
        assert created["last_exit_code"] == 100

        shown = _json(cli("task", "show", str(created["id"]), "--json"))
        assert shown["cron_expression"] == "0 3 * * *"

    def test_add_unknown_type_needs_force(self, cli):
        result = cli("task", "add", "mystery", "--cron", "* * * * *")
        assert result.exit_code == 1

        forced = cli("task", "add", "mystery", "--cron", "* * * * *", "--force", "--json")
        assert forced.exit_code == 0

    def test_add_rejects_bad_cron(self, cli):
        result = cli("task", "add", "logrotate", "--cron", "whenever")
        assert result.exit_code == 1
        assert "cron_expression" in result.output

    def test_add_rejects_bad_params(self, cli):
        result = cli("task", "add", "logrotate", "--cron", "* * * * *", "--params", "[1, 2]")
        assert result.exit_code == 1

    def test_list_update_enable_disable_delete(self, cli):
        task_id = _json(cli("task", "add", "logrotate", "--cron", "0 3 * * *", "--json"))["id"]

        assert cli("task", "update", str(task_id), "--priority", "7", "--params", '{"a": 1}').exit_code == 0
        assert cli("task", "disable", str(task_id)).exit_code == 0
        listed = _json(cli("task", "list", "--json"))
        assert listed[0]["priority"] == 7
        assert listed[0]["params"] == {"a": 1}
        assert listed[0]["enabled"] is False
        assert _json(cli("task", "list", "--enabled", "--json")) == []

        assert cli("task", "enable", str(task_id)).exit_code == 0
        assert cli("task", "delete", str(task_id)).exit_code == 0
        assert cli("task", "delete", str(task_id)).exit_code == 1
        assert cli("task", "show", str(task_id)).exit_code == 1

    def test_types(self, cli):
        types = _json(cli("task", "types", "--json"))
        assert "logrotate" in [t["type"] for t in types]

    def test_run_executes_due_tasks(self, cli, db_path, tmp_path):
        log_dir = tmp_path / "logs"
        log_dir.mkdir()
        params = json.dumps({"log_dir": str(log_dir)})
        task_id = _json(cli("task", "add", "logrotate", "--cron", "0 3 * * *", "--params", params, "--json"))["id"]
        _make_due(db_path, task_id)

        result = cli("task", "run", "--json")

        assert result.exit_code == 0
        summary = _json(result)
        assert summary["executed"] == 1
        assert summary["outcomes"] == {"OK": 1}
        assert _json(cli("task", "show", str(task_id), "--json"))["last_exit_code"] == 0

    def test_run_exits_zero_when_task_fails(self, cli, db_path):
        task_id = _json(cli("task", "add", "mystery", "--cron", "* * * * *", "--force", "--json"))["id"]
        _make_due(db_path, task_id)

        result = cli("task", "run")

        assert result.exit_code == 0
        assert "Executed 1 task(s)" in result.stdout
        assert _json(cli("task", "show", str(task_id), "--json"))["last_exit_code"] == 127

    def test_status_after_run(self, cli):
        cli("task", "run")
        status = _json(cli("task", "status", "--json"))
        assert status["last_run_source"] == "cli"
        assert status["last_run"] is not None
        assert status["stuck"] == []

    def test_release_stuck(self, cli):
        result = cli("task", "release-stuck")
        assert result.exit_code == 0
        assert "Released 0" in result.stdout


class TestQueueCommands:
    def test_count_and_clear(self, cli, db_path):
        conn = SqliteConnection(str(db_path))
        queue = SqlQueue("mail", conn)
        queue.push(QueueItem({"to": "a"}, "mail", site_id=1))
        queue.push(QueueItem({"to": "b"}, "mail", site_id=2))
        queue.push(QueueItem({"to": "c"}, "mail", site_id=2))
        conn.close()

        assert cli("queue", "count", "mail").stdout.strip() == "3"
        assert cli("queue", "count", "mail", "--site-id", "2").stdout.strip() == "2"
        assert cli("queue", "count", "mail", "--where", 'to="a"').stdout.strip() == "1"

        cleared = cli("queue", "clear", "mail", "--site-id", "2")
        assert "Deleted 2 item(s)" in cleared.stdout
        assert cli("queue", "count", "mail").stdout.strip() == "1"

    def test_invalid_condition(self, cli):
        assert cli("queue", "count", "mail", "--where", "nonsense").exit_code == 1


class TestLogrotateCommand:
    def test_runs_handler_directly(self, cli):
        result = cli("logrotate")
        assert result.exit_code == 0
        assert "logrotate: OK" in result.stdout


class TestLogFile:
    def test_invocation_appends_to_log_dir(self, cli, db_url, tmp_path):
        result = runner.invoke(app, ["--log-level", "INFO", "task", "run", "--database", db_url, "--json"])

        assert result.exit_code == 0
        log_file = tmp_path / "log" / "sentinel.log"
        assert "runner.finished" in log_file.read_text()

    def test_empty_log_file_setting_disables_sink(self, cli, db_url, tmp_path, monkeypatch):
        monkeypatch.setenv("SENTINEL_LOG_FILE", "")
        clear_settings_cache()

        result = runner.invoke(app, ["--log-level", "INFO", "task", "run", "--database", db_url])

        assert result.exit_code == 0
        assert not (tmp_path / "log" / "sentinel.log").exists()
