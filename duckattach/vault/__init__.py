"""Credential storage used by the attach pipeline."""

from duckattach.vault.base import (
    InMemorySecretVault,
    SecretPayload,
    SecretSummary,
    SecretVault,
    make_secret_id,
)
from duckattach.vault.encrypted import EncryptedFileSecretVault

__all__ = [
    "SecretVault",
    "SecretPayload",
    "SecretSummary",
    "InMemorySecretVault",
    "EncryptedFileSecretVault",
    "make_secret_id",
]
