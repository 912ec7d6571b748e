"""Tests for environment-driven configuration."""

from pathlib import Path

import pytest

from sealkeep.core.config import SealKeepConfig


def test_defaults(tmp_path):
    config = SealKeepConfig(data_root=tmp_path)
    assert config.db_path == tmp_path / "custody.db"
    assert config.blob_root == tmp_path / "blobs"
    assert config.identity_path("alice") == tmp_path / "identities" / "alice.json"
    assert config.store_provider == "sqlite"
    assert config.require_step_up is False
    assert config.conceal_existence is True
    assert config.call_timeout_seconds == 10.0


def test_from_env(tmp_path):
    env = {
        "SEALKEEP_HOME": str(tmp_path),
        "SEALKEEP_DB": str(tmp_path / "other.db"),
        "SEALKEEP_STORE": "memory",
        "SEALKEEP_REQUIRE_STEP_UP": "yes",
        "SEALKEEP_CONCEAL_EXISTENCE": "0",
        "SEALKEEP_SESSION_TTL": "45",
        "SEALKEEP_TIMEOUT": "2.5",
        "SEALKEEP_KEYRING_SERVICE": "sealkeep-test",
    }
    config = SealKeepConfig.from_env(env)
    assert config.data_root == tmp_path
    assert config.db_path == tmp_path / "other.db"
    assert config.store_provider == "memory"
    assert config.require_step_up is True
    assert config.conceal_existence is False
    assert config.session_ttl_seconds == 45.0
    assert config.call_timeout_seconds == 2.5
    assert config.keyring_service == "sealkeep-test"


def test_from_env_zero_timeout_disables_it(tmp_path):
    config = SealKeepConfig.from_env({"SEALKEEP_HOME": str(tmp_path), "SEALKEEP_TIMEOUT": "0"})
    assert config.call_timeout_seconds is None


def test_overrides_win_over_env(tmp_path):
    env = {"SEALKEEP_HOME": "/nonexistent", "SEALKEEP_STORE": "sqlite"}
    config = SealKeepConfig.from_env(env, data_root=tmp_path, store_provider="memory")
    assert config.data_root == tmp_path
    assert config.store_provider == "memory"


def test_none_overrides_are_ignored(tmp_path):
    config = SealKeepConfig.from_env({"SEALKEEP_HOME": str(tmp_path)}, data_root=None)
    assert config.data_root == tmp_path


def test_home_is_expanded():
    config = SealKeepConfig(data_root="~/vault")
    assert config.data_root == Path.home() / "vault"


def test_unknown_provider_rejected(tmp_path):
    with pytest.raises(ValueError):
        SealKeepConfig(data_root=tmp_path, store_provider="redis")


def test_negative_timeout_rejected(tmp_path):
    with pytest.raises(ValueError):
        SealKeepConfig(data_root=tmp_path, call_timeout_seconds=-1)
