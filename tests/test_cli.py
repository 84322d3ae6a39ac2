"""
tests/test_cli.py -- Tests for the operator command line in main.py.

Each test points the CLI at a throwaway SQLite file so nothing touches the
default auth database.
"""

from __future__ import annotations

import io

import pytest

import main as cli
from auth.authenticator import Authenticator
from auth.models import Role
from core.config import get_settings


@pytest.fixture
def cli_settings(tmp_path, monkeypatch):
    settings = get_settings().model_copy(update={"database_url": f"sqlite:///{tmp_path / 'auth.db'}"})
    monkeypatch.setattr(cli, "get_settings", lambda: settings)
    return settings


def _stdin(monkeypatch, text: str) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO(text))


def test_create_admin(cli_settings, monkeypatch, capsys) -> None:
    _stdin(monkeypatch, "correcthorse123\n")
    assert cli.main(["create-admin", "root@example.com", "--password-stdin"]) == 0
    assert "Admin account created" in capsys.readouterr().out

    authenticator = Authenticator.from_settings(cli_settings)
    try:
        principal, _ = authenticator.login("root@example.com", "correcthorse123")
        assert principal.role == Role.admin
    finally:
        authenticator.close()


def test_create_admin_duplicate(cli_settings, monkeypatch, capsys) -> None:
    _stdin(monkeypatch, "correcthorse123\n")
    assert cli.main(["create-admin", "root@example.com", "--password-stdin"]) == 0
    _stdin(monkeypatch, "correcthorse123\n")
    assert cli.main(["create-admin", "ROOT@example.com", "--password-stdin"]) == 1
    assert "already exists" in capsys.readouterr().out


def test_create_admin_short_password(cli_settings, monkeypatch) -> None:
    _stdin(monkeypatch, "short\n")
    assert cli.main(["create-admin", "root@example.com", "--password-stdin"]) == 1


@pytest.mark.parametrize("email", ["not-an-email", "root@localhost", "two words@example.com", ""])
def test_create_admin_rejects_invalid_email(cli_settings, monkeypatch, capsys, email) -> None:
    _stdin(monkeypatch, "correcthorse123\n")
    assert cli.main(["create-admin", email, "--password-stdin"]) == 1
    assert "not a valid email address" in capsys.readouterr().out

    authenticator = Authenticator.from_settings(cli_settings)
    try:
        assert authenticator.principals.has_principals() is False
    finally:
        authenticator.close()


def test_purge_sessions(cli_settings, capsys) -> None:
    assert cli.main(["purge-sessions"]) == 0
    assert "Removed 0 expired session(s)." in capsys.readouterr().out


def test_no_command_prints_help(cli_settings, capsys) -> None:
    assert cli.main([]) == 2
    assert "create-admin" in capsys.readouterr().out
