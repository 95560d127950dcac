import logging
import sys
from typing import Any, Dict, Optional

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Map string log levels to logging constants
LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Modules that log every poll/attempt; kept at WARNING unless verbose
TECHNICAL_MODULES = [
    "duckattach.engine.pool",
    "duckattach.lifecycle.verification",
    "duckattach.lifecycle.resilience",
]


def get_logger(name: str) -> logging.Logger:
    """Return a logger with the specified name.

    Args:
        name: The name for the logger, typically __name__

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        logger.addHandler(handler)

        # Don't propagate to root logger to avoid duplicate logging
        logger.propagate = False

    return logger


def configure_logging(
    verbose: bool = False,
    quiet: bool = False,
    level: Optional[str] = None,
) -> None:
    """Configure logging settings based on command line flags.

    Args:
        verbose: Whether to enable verbose mode (shows all debug logs)
        quiet: Whether to enable quiet mode (only shows warnings and errors)
        level: Explicit level name ("debug", "info", ...); flags win over it
    """
    if quiet:
        root_level = logging.WARNING
    elif verbose:
        root_level = logging.DEBUG
    elif level:
        root_level = LOG_LEVELS.get(level.lower(), DEFAULT_LOG_LEVEL)
    else:
        root_level = DEFAULT_LOG_LEVEL

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
    root_logger.addHandler(handler)

    # Package loggers own a handler (see get_logger), so their level is what
    # actually filters output.
    package_level = root_level
    logging.getLogger("duckattach").setLevel(package_level)
    for name in list(logging.root.manager.loggerDict):
        if name.startswith("duckattach."):
            logging.getLogger(name).setLevel(package_level)

    for module_name in TECHNICAL_MODULES:
        module_logger = logging.getLogger(module_name)
        if verbose:
            module_logger.setLevel(logging.DEBUG)
        else:
            module_logger.setLevel(max(logging.WARNING, root_level))


def suppress_third_party_loggers():
    """Suppress noisy third-party loggers."""
    noisy_loggers = [
        "urllib3",
        "requests",
        "duckdb",
    ]

    for logger_name in noisy_loggers:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logging_status() -> Dict[str, Any]:
    """Get the current logging status of all package modules.

    Returns:
        Dictionary with logging status information
    """
    root_logger = logging.getLogger()
    root_level = logging.getLevelName(root_logger.level)

    modules = {}
    for name in logging.root.manager.loggerDict:
        if not name.startswith("duckattach"):
            continue
        logger = logging.getLogger(name)
        modules[name] = {
            "level": logging.getLevelName(logger.level),
            "propagate": logger.propagate,
            "has_handlers": bool(logger.handlers),
        }

    return {"root_level": root_level, "modules": modules}


def get_level_name(level: int) -> str:
    """Get a formatted name for a logging level.

    Args:
        level: Logging level (e.g., logging.INFO)

    Returns:
        Formatted name (e.g., "INFO")
    """
    level_names = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARNING",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
    }
    return level_names.get(level, str(level))
