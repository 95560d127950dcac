"""Classification of engine and client errors.

All substring matching on engine error text lives here, so call sites ask
``classify_engine_error(message)`` instead of testing messages themselves.
"""

import asyncio
import re
from enum import Enum
from typing import Tuple

import requests

from duckattach.exceptions import (
    AttachmentError,
    CredentialsRequiredError,
    DuplicateAttachError,
    MaxRetriesExceededError,
    TransientError,
    ValidationError,
    VerificationTimeoutError,
)
from duckattach.utils.sql import redact_secrets


class ErrorKind(Enum):
    """Engine error categories, in classification precedence order."""

    DUPLICATE = "duplicate"
    AUTH = "auth"
    TRANSIENT = "transient"
    NOT_FOUND = "not_found"
    FATAL = "fatal"


DUPLICATE_PATTERNS: Tuple[str, ...] = (
    "already in use",
    "already attached",
    "unique file handle conflict",
    "already exists",
)

AUTH_PATTERNS: Tuple[str, ...] = (
    "accessdenied",
    "access denied",
    "unauthorized",
    "forbidden",
    "authentication failed",
    "invalid token",
    "expired token",
    "token has expired",
)

# 401/403 only count as HTTP status codes, not as digits inside a host or port
AUTH_STATUS_PATTERN = re.compile(
    r"\b(?:http|status|code|error)\b\W{1,3}(?:\w+\W{1,3})?(401|403)(?![\w.:/-])"
)

TRANSIENT_PATTERNS: Tuple[str, ...] = (
    "networkerror",
    "failed to fetch",
    "failed to load",
    "err_network",
    "err_internet_disconnected",
    "connection refused",
    "econnrefused",
    "etimedout",
    "enetunreach",
    "network is not ready",
    "network is unreachable",
    "timed out",
    "timeout",
    "connection reset",
    "temporarily unavailable",
    "could not resolve host",
    "could not establish connection",
)

NOT_FOUND_PATTERNS: Tuple[str, ...] = (
    "not found",
    "does not exist",
)

_PATTERN_TABLE = (
    (ErrorKind.DUPLICATE, DUPLICATE_PATTERNS),
    (ErrorKind.AUTH, AUTH_PATTERNS),
    (ErrorKind.TRANSIENT, TRANSIENT_PATTERNS),
    (ErrorKind.NOT_FOUND, NOT_FOUND_PATTERNS),
)


def classify_engine_error(message: str) -> ErrorKind:
    """Map an engine error message to an :class:`ErrorKind`."""
    lowered = (message or "").lower()
    for kind, patterns in _PATTERN_TABLE:
        if any(pattern in lowered for pattern in patterns):
            return kind
        if kind is ErrorKind.AUTH and AUTH_STATUS_PATTERN.search(lowered):
            return kind
    return ErrorKind.FATAL


def classify_exception(error: BaseException) -> ErrorKind:
    """Classify an exception raised by the engine pool or an HTTP client."""
    if isinstance(error, DuplicateAttachError):
        return ErrorKind.DUPLICATE
    if isinstance(error, CredentialsRequiredError):
        return ErrorKind.AUTH
    if isinstance(error, TransientError):
        return ErrorKind.TRANSIENT
    if isinstance(
        error, (ValidationError, MaxRetriesExceededError, VerificationTimeoutError)
    ):
        return ErrorKind.FATAL
    if isinstance(error, requests.exceptions.HTTPError):
        status = getattr(error.response, "status_code", None)
        if status in (401, 403):
            return ErrorKind.AUTH
        if status is not None and 500 <= status < 600:
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL
    if isinstance(
        error,
        (
            asyncio.TimeoutError,
            TimeoutError,
            ConnectionError,
            requests.exceptions.ConnectionError,
            requests.exceptions.Timeout,
        ),
    ):
        return ErrorKind.TRANSIENT
    return classify_engine_error(str(error))


def is_duplicate_error(error: BaseException) -> bool:
    return classify_exception(error) is ErrorKind.DUPLICATE


def is_transient_error(error: BaseException) -> bool:
    return classify_exception(error) is ErrorKind.TRANSIENT


def is_auth_error(error: BaseException) -> bool:
    return classify_exception(error) is ErrorKind.AUTH


_TRACEBACK_FRAME = re.compile(r'^\s*File ".*", line \d+')
_FILE_PATH = re.compile(
    r"(?:[A-Za-z]:)?(?:[\\/][\w.\-]+){2,}[\\/]?[\w.\-]*\.(?:py|so|dll|cpp|hpp|c|h)\b"
)
_ENGINE_PREFIX = re.compile(r"^(?:[A-Za-z]+ ){0,2}(?:Error|Exception):\s*")

MAX_MESSAGE_LENGTH = 300


def sanitize_error_message(message: str) -> str:
    """Reduce an error message to something safe to show to a user.

    Keeps the first meaningful line, drops traceback frames and source file
    paths, masks credential values, and truncates long messages.
    """
    lines = []
    for line in (message or "").splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("Traceback"):
            continue
        if _TRACEBACK_FRAME.match(line):
            continue
        lines.append(stripped)

    text = lines[0] if lines else "Unknown error"
    text = _FILE_PATH.sub("<path>", text)
    text = _ENGINE_PREFIX.sub("", text)
    text = redact_secrets(text)
    if len(text) > MAX_MESSAGE_LENGTH:
        text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
    return text


def user_message(error: BaseException) -> str:
    """Sanitized message for ``error``; taxonomy errors drop the source prefix."""
    if isinstance(error, AttachmentError):
        return sanitize_error_message(error.message)
    return sanitize_error_message(str(error))
