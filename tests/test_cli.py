"""Tests for the command line interface."""

import json
import logging
import sys

import pytest

from taskbuddy.__main__ import JSONFormatter, main, setup_logging


@pytest.fixture
def run_cli(tmp_path, monkeypatch, capsys):
    """Run the CLI offline against a throwaway SQLite cache."""
    monkeypatch.setenv("TASKBUDDY_STORAGE_BACKEND", "sqlite")
    monkeypatch.setenv("TASKBUDDY_STORAGE_DB_PATH", str(tmp_path / "offline.db"))
    monkeypatch.delenv("TASKBUDDY_USER", raising=False)

    def run(*argv):
        monkeypatch.setattr(sys, "argv", ["taskbuddy", "--offline", *argv])
        code = main()
        return code, capsys.readouterr()

    return run


class TestLogging:
    """Tests for CLI logging setup."""

    @pytest.fixture(autouse=True)
    def restore_http_loggers(self):
        loggers = [logging.getLogger(name) for name in ("httpx", "httpcore")]
        levels = [lg.level for lg in loggers]
        yield
        for lg, level in zip(loggers, levels):
            lg.setLevel(level)

    def test_http_request_logs_quiet_at_info(self):
        """Test per-request httpx logs stay hidden at info level."""
        setup_logging(log_level="info")

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_http_request_logs_shown_when_debugging(self):
        """Test -v lets httpx request logs through."""
        setup_logging(verbose=True)

        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_json_formatter(self):
        """Test records are rendered as one JSON object."""
        record = logging.LogRecord(
            "taskbuddy.sync.engine", logging.INFO, __file__, 1, "Replay: synced=%d", (2,), None
        )

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "taskbuddy.sync.engine"
        assert entry["message"] == "Replay: synced=2"
        assert "exception" not in entry


class TestCli:
    """Tests for the taskbuddy command."""

    def test_no_command(self, run_cli):
        """Test running without a command prints help."""
        code, out = run_cli()

        assert code == 1
        assert "usage" in out.out

    def test_add_offline_then_status(self, run_cli):
        """Test an offline add is cached and counted as pending."""
        code, out = run_cli("add", "Read", "--time", "16:00")
        assert code == 0
        assert "Read @ 16:00 (not synced)" in out.out

        code, out = run_cli("status", "--json")
        status = json.loads(out.out)

        assert status["online"] is False
        assert status["cached_tasks"] == 1
        assert status["pending_operations"] == 1

    def test_complete_cached_task(self, run_cli):
        """Test completing a task by its printed id."""
        run_cli("add", "Read")
        _, out = run_cli("tasks")
        task_id = out.out.split("]")[1].split()[0]

        code, out = run_cli("complete", task_id)

        assert code == 0
        assert "[x]" in out.out
        assert "2 operations waiting to sync" in out.out

    def test_complete_unknown_task(self, run_cli):
        """Test completing a task that isn't cached fails."""
        code, out = run_cli("complete", "nope")

        assert code == 1
        assert "No cached task" in out.err

    def test_sync_while_offline(self, run_cli):
        """Test sync refuses to run offline."""
        run_cli("add", "Read")

        code, out = run_cli("sync")

        assert code == 1
        assert "1 operations waiting" in out.out

    def test_timer_validation(self, run_cli):
        """Test an invalid timer length is reported."""
        code, out = run_cli("timer", "0")

        assert code == 1
        assert "at least one minute" in out.err

    def test_login_switches_user(self, run_cli):
        """Test login scopes later commands to the user."""
        run_cli("add", "Anonymous task")

        code, _ = run_cli("login", "alice")
        assert code == 0

        _, out = run_cli("status", "--json")
        status = json.loads(out.out)
        assert status["user"] == "alice"
        assert status["cached_tasks"] == 0

        run_cli("logout")
        _, out = run_cli("status", "--json")
        assert json.loads(out.out)["user"] == "anonymous"
