"""Tests for settings resolution and object factories."""

from unittest.mock import patch

import pytest

from duckattach.config import (
    ENGINE_CONFIG,
    Settings,
    create_manager,
    create_pool,
    create_registry,
    create_vault,
    load_settings,
    settings_from_env,
)
from duckattach.lifecycle.manager import ConnectionLifecycleManager
from duckattach.lifecycle.registry import InMemoryRegistryStore, YamlFileRegistryStore
from duckattach.vault.base import InMemorySecretVault
from duckattach.vault.encrypted import EncryptedFileSecretVault


class TestLoadSettings:
    """Test settings precedence and validation."""

    def test_defaults(self, tmp_path):
        """Without file or environment the defaults apply."""
        with patch("duckattach.config.find_settings_file", return_value=None):
            settings = load_settings(environ={})
        assert settings == Settings()
        assert settings.database_path == ":memory:"
        assert settings.pool_size == 2

    def test_file_values(self, tmp_path):
        """Values from an explicit settings file are applied."""
        path = tmp_path / "duckattach.yml"
        path.write_text("pool_size: 4\nregistry_path: reg.yml\nverbose: yes\n")

        settings = load_settings(str(path), environ={})

        assert settings.pool_size == 4
        assert settings.registry_path == "reg.yml"
        assert settings.verbose is True

    def test_environment_overrides_file(self, tmp_path):
        """DUCKATTACH_* variables win over the file."""
        path = tmp_path / "duckattach.yml"
        path.write_text("pool_size: 4\n")

        settings = load_settings(
            str(path),
            environ={"DUCKATTACH_POOL_SIZE": "8", "DUCKATTACH_VERBOSE": "false"},
        )

        assert settings.pool_size == 8
        assert settings.verbose is False

    def test_missing_explicit_file(self, tmp_path):
        """An explicit path that does not exist is an error."""
        with pytest.raises(ValueError, match="Settings file not found"):
            load_settings(str(tmp_path / "nope.yml"), environ={})

    def test_unknown_key(self, tmp_path):
        """Unknown settings keys are rejected."""
        path = tmp_path / "duckattach.yml"
        path.write_text("pool_sise: 4\n")
        with pytest.raises(ValueError, match="Unknown setting 'pool_sise'"):
            load_settings(str(path), environ={})

    def test_bad_values(self, tmp_path):
        """Values that cannot be coerced are rejected."""
        with patch("duckattach.config.find_settings_file", return_value=None):
            with pytest.raises(ValueError, match="must be an integer"):
                load_settings(environ={"DUCKATTACH_POOL_SIZE": "many"})
            with pytest.raises(ValueError, match="must be a boolean"):
                load_settings(environ={"DUCKATTACH_VERBOSE": "perhaps"})
            with pytest.raises(ValueError, match="at least 1"):
                load_settings(environ={"DUCKATTACH_POOL_SIZE": "0"})

    def test_non_mapping_file(self, tmp_path):
        """A settings file must hold a mapping."""
        path = tmp_path / "duckattach.yml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ValueError, match="must contain a mapping"):
            load_settings(str(path), environ={})

    def test_settings_from_env_ignores_unknown(self):
        """Only known DUCKATTACH_* keys are picked up."""
        values = settings_from_env(
            {"DUCKATTACH_VAULT_PATH": "v.json", "DUCKATTACH_COLOR": "red", "HOME": "/"}
        )
        assert values == {"vault_path": "v.json"}


class TestFactories:
    """Test construction from settings."""

    def test_create_pool_uses_engine_config(self):
        """The pool gets the database path, size and extension settings."""
        pool = create_pool(Settings(database_path="x.duckdb", pool_size=3))
        assert pool.database_path == "x.duckdb"
        assert pool.size == 3
        assert pool._config == ENGINE_CONFIG
        assert not pool.is_open

    def test_create_vault(self, tmp_path):
        """A vault path selects the encrypted file vault."""
        assert isinstance(create_vault(Settings()), InMemorySecretVault)
        vault = create_vault(
            Settings(vault_path=str(tmp_path / "vault.json"), vault_key="pw")
        )
        assert isinstance(vault, EncryptedFileSecretVault)

    def test_create_registry(self, tmp_path):
        """A registry path selects the YAML store."""
        assert isinstance(create_registry(Settings()).store, InMemoryRegistryStore)
        registry = create_registry(Settings(registry_path=str(tmp_path / "r.yml")))
        assert isinstance(registry.store, YamlFileRegistryStore)

    def test_create_manager(self):
        """The manager is wired with pool, vault and registry."""
        manager = create_manager(Settings())
        assert isinstance(manager, ConnectionLifecycleManager)
        assert isinstance(manager.vault, InMemorySecretVault)
