"""
File-backed secret vault with AES-256-GCM encryption.

Each secret's ``data`` map is serialized to JSON and encrypted with a key
derived from the vault passphrase (PBKDF2-HMAC-SHA256, random per-file salt).
Every encryption uses a fresh 12-byte IV and binds the ciphertext to the
secret id as associated data, so ciphertexts cannot be swapped between ids.

File format::

    {
      "version": 1,
      "salt": "<base64>",
      "secrets": {
        "<id>": {
          "id": "<id>",
          "label": "Postgres: sales",
          "encrypted": {"ciphertext": "<base64>", "iv": "<base64>"},
          "created_at": "...",
          "updated_at": "..."
        }
      }
    }
"""

import asyncio
import base64
import json
import os
import secrets
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from duckattach.exceptions import VaultError
from duckattach.logging import get_logger
from duckattach.models import utcnow
from duckattach.vault.base import SecretPayload, SecretSummary, SecretVault

logger = get_logger(__name__)

FORMAT_VERSION = 1


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: str) -> bytes:
    return base64.b64decode(data.encode("ascii"))


class EncryptedFileSecretVault(SecretVault):
    """Secret vault persisted to a single JSON file with encrypted payloads."""

    IV_LENGTH = 12
    KEY_LENGTH = 32
    SALT_LENGTH = 16
    KDF_ITERATIONS = 100_000

    def __init__(self, path: str, passphrase: str):
        if not passphrase:
            raise VaultError("A vault passphrase is required (DUCKATTACH_VAULT_KEY)")
        self.path = Path(path)
        self._passphrase = passphrase
        self._key: Optional[bytes] = None
        self._salt: Optional[bytes] = None
        self._lock = asyncio.Lock()

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=self.KEY_LENGTH,
            salt=salt,
            iterations=self.KDF_ITERATIONS,
        )
        return kdf.derive(self._passphrase.encode("utf-8"))

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {"version": FORMAT_VERSION, "salt": None, "secrets": {}}
        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise VaultError(f"Cannot read vault file {self.path}: {e}") from e
        if document.get("version") != FORMAT_VERSION:
            raise VaultError(
                f"Unsupported vault format version: {document.get('version')}"
            )
        document.setdefault("secrets", {})
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with tmp_path.open("w", encoding="utf-8") as f:
            json.dump(document, f, indent=2, sort_keys=True)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)

    def _ensure_key(self, document: Dict[str, Any]) -> bytes:
        if document.get("salt") is None:
            document["salt"] = _b64(secrets.token_bytes(self.SALT_LENGTH))
        salt = _unb64(document["salt"])
        if self._key is None or self._salt != salt:
            self._key = self._derive_key(salt)
            self._salt = salt
        return self._key

    def _encrypt(
        self, key: bytes, secret_id: str, data: Dict[str, str]
    ) -> Dict[str, str]:
        iv = secrets.token_bytes(self.IV_LENGTH)
        plaintext = json.dumps(data, sort_keys=True).encode("utf-8")
        ciphertext = AESGCM(key).encrypt(iv, plaintext, secret_id.encode("utf-8"))
        return {"ciphertext": _b64(ciphertext), "iv": _b64(iv)}

    def _decrypt(
        self, key: bytes, secret_id: str, encrypted: Dict[str, str]
    ) -> Dict[str, str]:
        plaintext = AESGCM(key).decrypt(
            _unb64(encrypted["iv"]),
            _unb64(encrypted["ciphertext"]),
            secret_id.encode("utf-8"),
        )
        return json.loads(plaintext.decode("utf-8"))

    def _put_sync(self, secret_id: str, payload: SecretPayload) -> None:
        document = self._read_document()
        key = self._ensure_key(document)
        now = utcnow().isoformat()
        existing = document["secrets"].get(secret_id)
        document["secrets"][secret_id] = {
            "id": secret_id,
            "label": payload.label,
            "encrypted": self._encrypt(key, secret_id, dict(payload.data)),
            "created_at": existing["created_at"] if existing else now,
            "updated_at": now,
        }
        self._write_document(document)

    def _get_sync(self, secret_id: str) -> Optional[SecretPayload]:
        document = self._read_document()
        entry = document["secrets"].get(secret_id)
        if entry is None:
            return None
        key = self._ensure_key(document)
        try:
            data = self._decrypt(key, secret_id, entry["encrypted"])
        except (InvalidTag, KeyError, ValueError) as e:
            logger.warning(
                "Secret %s could not be decrypted (%s); treating it as missing",
                secret_id,
                type(e).__name__,
            )
            return None
        return SecretPayload(label=entry.get("label", ""), data=data)

    def _delete_sync(self, secret_id: str) -> None:
        document = self._read_document()
        if document["secrets"].pop(secret_id, None) is not None:
            self._write_document(document)

    def _list_sync(self) -> List[SecretSummary]:
        document = self._read_document()
        summaries = [
            SecretSummary(
                id=entry["id"],
                label=entry.get("label", ""),
                created_at=datetime.fromisoformat(entry["created_at"]),
                updated_at=datetime.fromisoformat(entry["updated_at"]),
            )
            for entry in document["secrets"].values()
        ]
        return sorted(summaries, key=lambda s: s.created_at)

    async def put(self, secret_id: str, payload: SecretPayload) -> None:
        async with self._lock:
            await asyncio.to_thread(self._put_sync, secret_id, payload)
        logger.debug("Stored secret %s (%s)", secret_id, payload.label)

    async def get(self, secret_id: str) -> Optional[SecretPayload]:
        async with self._lock:
            return await asyncio.to_thread(self._get_sync, secret_id)

    async def delete(self, secret_id: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete_sync, secret_id)
        logger.debug("Deleted secret %s", secret_id)

    async def list(self) -> List[SecretSummary]:
        async with self._lock:
            return await asyncio.to_thread(self._list_sync)
