"""
Tests for the command-line interface.
"""

import sys

import pytest

from smsfix import __version__
from smsfix.app import main
from smsfix.store import MessageStore


def run_cli(monkeypatch, *argv):
    monkeypatch.setattr(sys, "argv", ["smsfix", *argv])
    main()


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for key in ("SMSFIX_DB", "SMSFIX_MAGIC", "SMSFIX_OFFSET_METHOD", "SMSFIX_OFFSET_HOURS"):
        monkeypatch.delenv(key, raising=False)
    return tmp_path / "sms.db"


class TestCli:
    """Test CLI commands against a temporary database."""

    def test_version(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "--version")
        assert capsys.readouterr().out.strip() == __version__

    def test_receive_and_list(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "receive", "--db", str(db_path), "--body", "hello", "--address", "555-0100", "--date", "1700000000123")
        run_cli(monkeypatch, "list", "--db", str(db_path))

        out = capsys.readouterr().out
        assert "Received message 1" in out
        assert "555-0100: hello" in out

    def test_list_empty(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "list", "--db", str(db_path))
        assert "No messages in store." in capsys.readouterr().out

    def test_status(self, monkeypatch, capsys, db_path):
        store = MessageStore(db_path)
        store.insert_message("a", date=1_700_000_000_337)
        store.insert_message("b", date=1_700_000_001_000)
        store.close()

        run_cli(monkeypatch, "status", "--db", str(db_path))

        out = capsys.readouterr().out
        assert "Watcher active: no" in out
        assert "Newest inbound id: 2" in out
        assert "Inbound messages: 2 (fixed: 1, unfixed: 1)" in out

    def test_delete_missing(self, monkeypatch, db_path):
        with pytest.raises(SystemExit, match="Message not found: 9"):
            run_cli(monkeypatch, "delete", "--db", str(db_path), "--id", "9")

    def test_delete(self, monkeypatch, capsys, db_path):
        run_cli(monkeypatch, "receive", "--db", str(db_path), "--body", "bye")
        run_cli(monkeypatch, "delete", "--db", str(db_path), "--id", "1")
        assert "Deleted message 1" in capsys.readouterr().out

    def test_bad_config_exits(self, monkeypatch, db_path):
        monkeypatch.setenv("SMSFIX_MAGIC", "1200")
        with pytest.raises(SystemExit, match="magic"):
            run_cli(monkeypatch, "status", "--db", str(db_path))
