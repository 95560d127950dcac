"""Settings for duckattach and factories for the objects they configure.

Settings are resolved from, lowest to highest precedence:

1. ``Settings`` defaults
2. a YAML settings file (``duckattach.yml`` in the project root, or an
   explicit path)
3. ``DUCKATTACH_*`` environment variables, after the project's ``.env`` file
   has been loaded
"""

import dataclasses
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from duckattach.engine.pool import DuckDBConnectionPool
from duckattach.lifecycle.manager import ConnectionLifecycleManager
from duckattach.lifecycle.registry import (
    ConnectionRegistryService,
    InMemoryRegistryStore,
    YamlFileRegistryStore,
)
from duckattach.logging import get_logger
from duckattach.utils.env import find_project_root, setup_environment
from duckattach.vault.base import InMemorySecretVault, SecretVault
from duckattach.vault.encrypted import EncryptedFileSecretVault

logger = get_logger(__name__)

ENV_PREFIX = "DUCKATTACH_"
SETTINGS_FILENAMES = ("duckattach.yml", "duckattach.yaml")

# Extensions (postgres, mysql, iceberg, motherduck, httpfs, excel) are
# installed and loaded by the engine on first use
ENGINE_CONFIG = {
    "autoinstall_known_extensions": True,
    "autoload_known_extensions": True,
}

_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off")


@dataclass
class Settings:
    """Runtime settings."""

    database_path: str = ":memory:"
    pool_size: int = 2
    registry_path: Optional[str] = None
    vault_path: Optional[str] = None
    vault_key: Optional[str] = None
    log_level: str = "info"
    verbose: bool = False


def _coerce(key: str, value: Any, target: Any) -> Any:
    """Convert ``value`` to the type of the field default ``target``."""
    if value is None:
        return None
    if isinstance(target, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE_VALUES:
            return True
        if text in _FALSE_VALUES:
            return False
        raise ValueError(f"Setting '{key}' must be a boolean, got {value!r}")
    if isinstance(target, int):
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Setting '{key}' must be an integer, got {value!r}")
    return str(value)


def _apply(settings: Settings, values: Dict[str, Any], source: str) -> Settings:
    defaults = Settings()
    known = {f.name for f in dataclasses.fields(Settings)}
    changes = {}
    for key, value in values.items():
        if key not in known:
            raise ValueError(f"Unknown setting '{key}' in {source}")
        changes[key] = _coerce(key, value, getattr(defaults, key))
    return dataclasses.replace(settings, **changes)


def find_settings_file(start_path: Optional[str] = None) -> Optional[Path]:
    root = find_project_root(start_path)
    if root is None:
        return None
    for filename in SETTINGS_FILENAMES:
        candidate = root / filename
        if candidate.is_file():
            return candidate
    return None


def load_settings_file(path: Path) -> Dict[str, Any]:
    """Read the settings mapping from a YAML file.

    Raises:
        ValueError: If the file is not valid YAML or not a mapping
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            document = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Settings file {path} is not valid YAML: {e}")
    if not isinstance(document, dict):
        raise ValueError(f"Settings file {path} must contain a mapping")
    return document


def settings_from_env(environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    environ = os.environ if environ is None else environ
    known = {f.name for f in dataclasses.fields(Settings)}
    values = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX) :].lower()
        if key in known:
            values[key] = value
    return values


def load_settings(
    path: Optional[str] = None, environ: Optional[Dict[str, str]] = None
) -> Settings:
    """Resolve settings from defaults, the settings file and the environment.

    Args:
        path: Explicit settings file; defaults to ``duckattach.yml`` in the
            project root if one exists
        environ: Environment mapping, defaults to ``os.environ`` after the
            project's ``.env`` file is loaded

    Returns:
        Resolved settings

    Raises:
        ValueError: On an unreadable file, unknown key or bad value
    """
    settings = Settings()

    settings_path = Path(path) if path else find_settings_file()
    if settings_path is not None:
        if not settings_path.is_file():
            raise ValueError(f"Settings file not found: {settings_path}")
        settings = _apply(
            settings, load_settings_file(settings_path), str(settings_path)
        )
        logger.debug("Loaded settings from %s", settings_path)

    if environ is None:
        setup_environment()
    settings = _apply(settings, settings_from_env(environ), "environment")
    if settings.pool_size < 1:
        raise ValueError("Setting 'pool_size' must be at least 1")
    return settings


def create_pool(settings: Settings) -> DuckDBConnectionPool:
    return DuckDBConnectionPool(
        database_path=settings.database_path,
        size=settings.pool_size,
        config=dict(ENGINE_CONFIG),
    )


def create_vault(settings: Settings) -> SecretVault:
    """Encrypted file vault when ``vault_path`` is set, else in memory."""
    if settings.vault_path:
        return EncryptedFileSecretVault(settings.vault_path, settings.vault_key or "")
    logger.warning("No vault_path configured; credentials are kept in memory only")
    return InMemorySecretVault()


def create_registry(settings: Settings) -> ConnectionRegistryService:
    if settings.registry_path:
        return ConnectionRegistryService(YamlFileRegistryStore(settings.registry_path))
    return ConnectionRegistryService(InMemoryRegistryStore())


def create_manager(settings: Settings) -> ConnectionLifecycleManager:
    """Build a lifecycle manager wired from ``settings``."""
    return ConnectionLifecycleManager(
        pool=create_pool(settings),
        vault=create_vault(settings),
        registry=create_registry(settings),
    )
