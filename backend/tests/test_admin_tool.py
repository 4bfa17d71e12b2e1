"""
Operator CLI: token minting and account commands with in-memory repos.
"""
from __future__ import annotations

import pytest
from click.testing import CliRunner

from identity_access.profiles import ProfileRepo
from identity_access.stores import SessionStore
from identity_access.tokens import load_token_config, verify_id_token
from tools import prepmint_admin


@pytest.fixture
def repos(monkeypatch: pytest.MonkeyPatch):
    profiles, sessions = ProfileRepo(), SessionStore()
    monkeypatch.setattr(prepmint_admin, "_profiles", lambda dsn: profiles)
    monkeypatch.setattr(prepmint_admin, "_sessions", lambda dsn: sessions)
    return profiles, sessions


def test_mint_token_is_verifiable():
    result = CliRunner().invoke(prepmint_admin.cli, ["mint-token", "--sub", "dev-1", "--email", "dev@example.com"])
    assert result.exit_code == 0, result.output
    claims = verify_id_token(id_token=result.output.strip(), cfg=load_token_config())
    assert claims["sub"] == "dev-1" and claims["email"] == "dev@example.com"


def test_mint_token_refused_in_production(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PREPMINT_ENV", "production")
    result = CliRunner().invoke(prepmint_admin.cli, ["mint-token", "--sub", "dev-1"])
    assert result.exit_code != 0
    assert "disabled" in result.output


def test_create_user(repos):
    profiles, _ = repos
    result = CliRunner().invoke(
        prepmint_admin.cli,
        ["create-user", "--db-dsn", "x", "--email", "admin@school.org", "--name", "School Admin", "--role", "admin"],
    )
    assert result.exit_code == 0, result.output
    created = profiles.get_by_email("admin@school.org")
    assert created.role == "admin"
    assert profiles.verify_password(created.uid, "TempPassword123!")


def test_create_user_rejects_duplicates_and_dev_role(repos):
    runner = CliRunner()
    args = ["create-user", "--db-dsn", "x", "--email", "a@school.org", "--name", "Alpha"]
    assert runner.invoke(prepmint_admin.cli, args).exit_code == 0
    again = runner.invoke(prepmint_admin.cli, args)
    assert again.exit_code != 0 and "email_taken" in again.output
    dev = runner.invoke(prepmint_admin.cli, args[:-4] + ["--email", "b@school.org", "--name", "Beta", "--role", "dev"])
    assert dev.exit_code != 0


def test_set_role_revokes_sessions(repos):
    profiles, sessions = repos
    profiles.create(email="t@school.org", display_name="Teacher", uid="t1")
    sid = sessions.create(sub="t1", roles=["student"], name="Teacher", email="t@school.org").session_id
    result = CliRunner().invoke(prepmint_admin.cli, ["set-role", "--db-dsn", "x", "--uid", "t1", "--role", "teacher"])
    assert result.exit_code == 0, result.output
    assert "revoked_sessions=1" in result.output
    assert profiles.get("t1").role == "teacher"
    assert sessions.get(sid) is None
    missing = CliRunner().invoke(prepmint_admin.cli, ["set-role", "--db-dsn", "x", "--uid", "nope", "--role", "teacher"])
    assert missing.exit_code != 0
