"""duckattach - connection lifecycle manager for DuckDB attachments."""

__version__ = "0.1.0"
__package_name__ = "duckattach"

# Initialize logging with default configuration
from duckattach.logging import configure_logging

# Set up default logging configuration
configure_logging()

from .exceptions import (
    AttachmentError,
    CredentialsRequiredError,
    DuplicateAttachError,
    MaxRetriesExceededError,
    RegistryError,
    TransientError,
    ValidationError,
    VaultError,
    VerificationTimeoutError,
)

__all__ = [
    "AttachmentError",
    "ValidationError",
    "DuplicateAttachError",
    "TransientError",
    "MaxRetriesExceededError",
    "VerificationTimeoutError",
    "CredentialsRequiredError",
    "RegistryError",
    "VaultError",
]
