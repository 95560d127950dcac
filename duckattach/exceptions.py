"""Exceptions raised by the connection lifecycle subsystem."""

from typing import Optional


class AttachmentError(Exception):
    """Base exception for data source attachment errors."""

    def __init__(self, source_name: str, message: str):
        self.source_name = source_name
        self.message = message
        super().__init__(f"[{source_name}] {message}")


class ValidationError(AttachmentError):
    """Missing or malformed configuration; never retried, no engine call made."""

    def __init__(
        self, message: str, source_name: str = "unknown", field: Optional[str] = None
    ):
        self.field = field
        super().__init__(source_name, f"Validation error: {message}")


class DuplicateAttachError(AttachmentError):
    """The engine reports the attach target already exists."""

    def __init__(self, message: str, source_name: str = "unknown"):
        super().__init__(source_name, message)


class TransientError(AttachmentError):
    """Network or timeout class failure that may succeed on retry."""

    def __init__(self, message: str, source_name: str = "unknown"):
        super().__init__(source_name, message)


class MaxRetriesExceededError(AttachmentError):
    """All attempts allowed by a retry policy failed transiently."""

    def __init__(
        self,
        attempts: int,
        last_error: Optional[BaseException],
        source_name: str = "unknown",
    ):
        self.attempts = attempts
        self.last_error = last_error
        detail = "none"
        if last_error is not None:
            detail = str(last_error) or type(last_error).__name__
        super().__init__(
            source_name, f"{attempts} attempt(s) failed. Last error: {detail}"
        )


class VerificationTimeoutError(AttachmentError):
    """Attach returned but the catalog never showed the new entry."""

    def __init__(self, name: str, attempts: int, source_name: Optional[str] = None):
        self.name = name
        self.attempts = attempts
        super().__init__(
            source_name or name,
            f"'{name}' was not confirmed in the catalog after {attempts} check(s)",
        )


class CredentialsRequiredError(AttachmentError):
    """Auth-shaped failure; the user has to supply credentials again."""

    def __init__(self, message: str, source_name: str = "unknown"):
        super().__init__(source_name, message)


class InvalidStateTransitionError(AttachmentError):
    """A connection state change not allowed by the state machine."""

    def __init__(self, current: str, target: str, source_name: str = "unknown"):
        self.current = current
        self.target = target
        super().__init__(
            source_name, f"Cannot move from '{current}' to '{target}'"
        )


class RegistryError(AttachmentError):
    """Data source registry lookup or persistence errors."""

    def __init__(self, message: str, source_name: str = "registry"):
        super().__init__(source_name, message)


class VaultError(Exception):
    """Secret vault storage or encryption errors."""


class EngineError(Exception):
    """Error reported by the query engine for a statement."""

    def __init__(self, message: str, statement: Optional[str] = None):
        self.statement = statement
        super().__init__(message)
