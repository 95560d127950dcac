"""Environment variable utilities for duckattach.

Loads ``.env`` files from the project root (the nearest directory holding a
``duckattach.yml`` settings file or a ``.env`` file) so that ``DUCKATTACH_*``
variables are available before settings are resolved.
"""

import os
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv

from duckattach.logging import get_logger

logger = get_logger(__name__)

PROJECT_MARKERS = ("duckattach.yml", "duckattach.yaml", ".env")


def find_project_root(start_path: Optional[str] = None) -> Optional[Path]:
    """Find the project root by looking for a settings file or ``.env``.

    Args:
    ----
        start_path: Path to start searching from (defaults to current directory)

    Returns:
    -------
        Path to the project root, or None if not found
    """
    if start_path is None:
        start_path = os.getcwd()

    current = Path(start_path).resolve()

    for parent in [current, *current.parents]:
        for marker in PROJECT_MARKERS:
            if (parent / marker).is_file():
                logger.debug(f"Found project root at: {parent}")
                return parent

    logger.debug("No project root found")
    return None


def load_dotenv_file(project_root: Path) -> bool:
    """Load .env file from the project root if it exists.

    Args:
    ----
        project_root: Path to the project root directory

    Returns:
    -------
        True if .env file was loaded, False otherwise
    """
    env_file = project_root / ".env"
    if not env_file.exists():
        logger.debug(f"No .env file found at: {env_file}")
        return False

    try:
        loaded = load_dotenv(env_file, override=True)
    except OSError as e:
        logger.warning(f"Error loading .env file: {e}")
        return False

    if loaded:
        logger.debug(f"Loaded environment variables from: {env_file}")
    return bool(loaded)


def setup_environment(start_path: Optional[str] = None) -> bool:
    """Load the project's .env file into the process environment.

    Args:
    ----
        start_path: Path to start searching from (defaults to current directory)

    Returns:
    -------
        True if .env file was found and loaded, False otherwise
    """
    project_root = find_project_root(start_path)

    if project_root is None:
        logger.debug("No project found, skipping .env file loading")
        return False

    return load_dotenv_file(project_root)


def get_env_var(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get an environment variable with optional default."""
    return os.environ.get(name, default)


def list_env_vars(prefix: Optional[str] = None) -> Dict[str, str]:
    """List environment variables, optionally filtered by prefix.

    Args:
    ----
        prefix: Optional prefix to filter variables (e.g., "DUCKATTACH_")

    Returns:
    -------
        Dictionary of environment variables
    """
    if prefix:
        return {k: v for k, v in os.environ.items() if k.startswith(prefix)}
    return dict(os.environ)
