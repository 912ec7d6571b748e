"""
Tests for the command line front end.
"""

import re

import pytest

from sealkeep.frontend import cli
from sealkeep.frontend.context import build_context, open_envelope, resolve_identity
from sealkeep.core.config import SealKeepConfig
from sealkeep.security import totp


# ==============================================================================
# Fixtures
# ==============================================================================

@pytest.fixture
def home(tmp_path, monkeypatch):
    monkeypatch.setenv("SEALKEEP_PASSPHRASE", "correct horse")
    monkeypatch.delenv("SEALKEEP_DB", raising=False)
    monkeypatch.delenv("SEALKEEP_STORE", raising=False)
    monkeypatch.delenv("SEALKEEP_REQUIRE_STEP_UP", raising=False)
    return tmp_path / "home"


@pytest.fixture
def run(home):
    def _run(identity, *argv):
        return cli.main(["--home", str(home), "--identity", identity, *argv])
    return _run


@pytest.fixture
def alice_and_bob(run):
    assert run("alice", "keygen") == 0
    assert run("bob", "keygen") == 0
    return run


# ==============================================================================
# Tests: Commands
# ==============================================================================

def test_keygen_writes_identity_and_publishes(run, home, capsys):
    assert run("alice", "keygen") == 0
    out = capsys.readouterr().out
    assert (home / "identities" / "alice.json").exists()
    assert re.search(r"Fingerprint: [0-9a-f]{32}", out)


def test_keygen_refuses_to_overwrite(run, capsys):
    run("alice", "keygen")
    assert run("alice", "keygen") == 1
    assert "already exists" in capsys.readouterr().err


def test_put_get_roundtrip(alice_and_bob, tmp_path):
    source = tmp_path / "report.txt"
    source.write_bytes(b"quarterly numbers")
    out = tmp_path / "out.txt"

    assert alice_and_bob("alice", "put", str(source)) == 0
    assert alice_and_bob("alice", "get", "report.txt", "-o", str(out)) == 0
    assert out.read_bytes() == b"quarterly numbers"


def test_share_revoke_flow(alice_and_bob, tmp_path, capsys):
    run = alice_and_bob
    source = tmp_path / "notes.txt"
    source.write_bytes(b"for bob")
    out = tmp_path / "bob.txt"

    run("alice", "put", str(source), "--id", "notes")
    assert run("bob", "get", "notes", "-o", str(out)) == 1
    assert "no key available" in capsys.readouterr().err

    assert run("alice", "grant", "notes", "bob") == 0
    assert run("bob", "get", "notes", "-o", str(out)) == 0
    assert out.read_bytes() == b"for bob"

    capsys.readouterr()
    assert run("bob", "ls", "--shared") == 0
    assert "notes\towner=alice" in capsys.readouterr().out

    assert run("alice", "revoke", "notes", "bob") == 0
    assert run("bob", "get", "notes", "-o", str(out)) == 1


def test_ls_and_rm(alice_and_bob, tmp_path, capsys):
    run = alice_and_bob
    source = tmp_path / "a.txt"
    source.write_bytes(b"a")
    run("alice", "put", str(source))
    run("alice", "grant", "a.txt", "bob")

    capsys.readouterr()
    run("alice", "ls")
    assert "a.txt\tgrantees=bob" in capsys.readouterr().out

    assert run("alice", "rm", "a.txt") == 0
    capsys.readouterr()
    run("alice", "ls")
    assert "No files." in capsys.readouterr().out


def test_put_replace(alice_and_bob, tmp_path):
    run = alice_and_bob
    source = tmp_path / "a.txt"
    source.write_bytes(b"v1")
    run("alice", "put", str(source))
    source.write_bytes(b"v2")
    assert run("alice", "put", str(source)) == 1
    assert run("alice", "put", str(source), "--replace") == 0

    out = tmp_path / "out"
    run("alice", "get", "a.txt", "-o", str(out))
    assert out.read_bytes() == b"v2"


def test_step_up_flow(alice_and_bob, tmp_path, capsys):
    run = alice_and_bob
    assert run("alice", "totp-enroll") == 0
    secret = re.search(r"TOTP secret for 'alice': ([A-Z2-7]+)", capsys.readouterr().out).group(1)

    source = tmp_path / "vault.txt"
    source.write_bytes(b"crown jewels")
    run("alice", "put", str(source), "--step-up")

    out = tmp_path / "out"
    assert run("alice", "get", "vault.txt", "-o", str(out)) == 1
    assert "--code" in capsys.readouterr().err

    code = totp.generate_code(secret)
    assert run("alice", "get", "vault.txt", "-o", str(out), "--code", code) == 0
    assert out.read_bytes() == b"crown jewels"


def test_commands_without_identity_file_fail(run, tmp_path, capsys):
    source = tmp_path / "a.txt"
    source.write_bytes(b"a")
    assert run("carol", "put", str(source)) == 1
    assert "keygen" in capsys.readouterr().err


def test_wrong_passphrase_fails(run, tmp_path, monkeypatch, capsys):
    run("alice", "keygen")
    monkeypatch.setenv("SEALKEEP_PASSPHRASE", "wrong horse")
    source = tmp_path / "a.txt"
    source.write_bytes(b"a")
    assert run("alice", "put", str(source)) == 1
    assert "invalid passphrase" in capsys.readouterr().err


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.main([])


# ==============================================================================
# Tests: Context helpers
# ==============================================================================

def test_resolve_identity_prefers_argument(monkeypatch):
    monkeypatch.setenv("SEALKEEP_IDENTITY", "from-env")
    assert resolve_identity("explicit") == "explicit"
    assert resolve_identity() == "from-env"


def test_open_envelope_rejects_foreign_identity_file(run, home):
    run("alice", "keygen")
    config = SealKeepConfig(data_root=home)
    ctx = build_context(config, identity="mallory")
    try:
        config.identity_root.joinpath("mallory.json").write_bytes(
            config.identity_path("alice").read_bytes()
        )
        with pytest.raises(ValueError, match="belongs to"):
            open_envelope(ctx, passphrase="correct horse")
    finally:
        ctx.close()
