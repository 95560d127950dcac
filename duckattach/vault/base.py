"""Secret vault contract and an in-process implementation."""

import copy
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from duckattach.models import utcnow


def make_secret_id() -> str:
    """Generate a vault id; ids are always chosen by the caller, not the vault."""
    return f"sec_{uuid.uuid4().hex}"


@dataclass
class SecretPayload:
    """Credential material stored in the vault."""

    label: str
    data: Dict[str, str] = field(default_factory=dict)


@dataclass
class SecretSummary:
    """Listing entry for a stored secret; never carries the payload data."""

    id: str
    label: str
    created_at: datetime
    updated_at: datetime


class SecretVault(ABC):
    """Keyed, encrypted storage for credentials."""

    @abstractmethod
    async def put(self, secret_id: str, payload: SecretPayload) -> None:
        """Create or replace the secret stored under ``secret_id``."""

    @abstractmethod
    async def get(self, secret_id: str) -> Optional[SecretPayload]:
        """Return the secret, or None when missing or unreadable."""

    @abstractmethod
    async def delete(self, secret_id: str) -> None:
        """Delete the secret; deleting a missing id is not an error."""

    @abstractmethod
    async def list(self) -> List[SecretSummary]:
        """Summaries of every stored secret."""


class InMemorySecretVault(SecretVault):
    """Vault kept in process memory, used for tests and ephemeral sessions."""

    def __init__(self):
        self._secrets: Dict[str, SecretPayload] = {}
        self._summaries: Dict[str, SecretSummary] = {}

    async def put(self, secret_id: str, payload: SecretPayload) -> None:
        now = utcnow()
        existing = self._summaries.get(secret_id)
        self._secrets[secret_id] = copy.deepcopy(payload)
        self._summaries[secret_id] = SecretSummary(
            id=secret_id,
            label=payload.label,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

    async def get(self, secret_id: str) -> Optional[SecretPayload]:
        payload = self._secrets.get(secret_id)
        return copy.deepcopy(payload) if payload is not None else None

    async def delete(self, secret_id: str) -> None:
        self._secrets.pop(secret_id, None)
        self._summaries.pop(secret_id, None)

    async def list(self) -> List[SecretSummary]:
        return sorted(self._summaries.values(), key=lambda s: s.created_at)

    def __contains__(self, secret_id: str) -> bool:
        return secret_id in self._secrets
