"""Data source registry with copy-on-write updates and durable stores.

:class:`ConnectionRegistryService` is the single owner of the
``id -> DataSourceRecord`` map. Writers replace the whole map with an updated
copy, so readers holding a snapshot never see a half-applied change. Every
update is persisted through a :class:`RegistryStore`; persistence runs in a
worker thread and failures are logged without affecting in-memory state.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import yaml

from duckattach.exceptions import RegistryError
from duckattach.logging import get_logger
from duckattach.models import DataSourceKind, DataSourceRecord

logger = get_logger(__name__)

REGISTRY_FORMAT_VERSION = 1


def catalog_namespace(kind: DataSourceKind) -> str:
    """Catalog namespace a kind's name lives in: views or databases."""
    return "view" if kind is DataSourceKind.GSHEET else "database"


class RegistryStore(ABC):
    """Durable storage for serialized registry records."""

    @abstractmethod
    def load(self) -> List[Dict[str, Any]]:
        """Return all stored records as dictionaries."""

    @abstractmethod
    def save(self, records: List[Dict[str, Any]]) -> None:
        """Replace the stored records."""


class InMemoryRegistryStore(RegistryStore):
    """Store that keeps the last saved records in memory."""

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records: List[Dict[str, Any]] = list(records or [])
        self.save_count = 0

    def load(self) -> List[Dict[str, Any]]:
        return list(self.records)

    def save(self, records: List[Dict[str, Any]]) -> None:
        self.records = list(records)
        self.save_count += 1


class YamlFileRegistryStore(RegistryStore):
    """Store records in a YAML document on disk.

    The file is written to a temporary sibling and then moved into place, so
    a crash mid-write leaves the previous registry intact.
    """

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                document = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise RegistryError(f"Registry file {self.path} is not valid YAML: {e}")

        if not isinstance(document, dict):
            raise RegistryError(f"Registry file {self.path} must contain a mapping")
        records = document.get("data_sources") or []
        if not isinstance(records, list):
            raise RegistryError(
                f"'data_sources' in {self.path} must be a list of records"
            )
        return records

    def save(self, records: List[Dict[str, Any]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {"version": REGISTRY_FORMAT_VERSION, "data_sources": records}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(document, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, self.path)


class ConnectionRegistryService:
    """In-memory registry of data source records backed by a store."""

    def __init__(self, store: Optional[RegistryStore] = None):
        self.store = store or InMemoryRegistryStore()
        self._records: Dict[str, DataSourceRecord] = {}
        self._version = 0
        self._persisted_version = 0
        self._persist_lock = asyncio.Lock()
        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> List[DataSourceRecord]:
        """Load persisted records into memory.

        Records that fail to deserialize are skipped with a warning.

        Returns:
            The loaded records
        """
        raw_records = await asyncio.to_thread(self.store.load)
        loaded: Dict[str, DataSourceRecord] = {}
        for raw in raw_records:
            try:
                record = DataSourceRecord.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(
                    "Skipping unreadable registry record %s: %s",
                    raw.get("id", "<no id>") if isinstance(raw, dict) else raw,
                    e,
                )
                continue
            loaded[record.id] = record

        self._records = loaded
        self._started = True
        logger.info("Loaded %d data source record(s)", len(loaded))
        return list(loaded.values())

    def get(self, record_id: str) -> Optional[DataSourceRecord]:
        return self._records.get(record_id)

    def require(self, record_id: str) -> DataSourceRecord:
        """Get a record or raise :class:`RegistryError`."""
        record = self._records.get(record_id)
        if record is None:
            raise RegistryError(f"Unknown data source id '{record_id}'")
        return record

    def list(self, kind: Optional[DataSourceKind] = None) -> List[DataSourceRecord]:
        records = list(self._records.values())
        if kind is not None:
            records = [r for r in records if r.kind is kind]
        return sorted(records, key=lambda r: r.created_at)

    def snapshot(self) -> Mapping[str, DataSourceRecord]:
        """Read-only view of the current map; later updates replace the map."""
        return MappingProxyType(self._records)

    def find_by_name(self, name: str, namespace: str) -> List[DataSourceRecord]:
        """Records using ``name`` (case-insensitively) in a catalog namespace."""
        lowered = name.lower()
        return [
            record
            for record in self.list()
            if catalog_namespace(record.kind) == namespace
            and record.config.name.lower() == lowered
        ]

    def find_by_credentials(self, secret_id: str) -> List[DataSourceRecord]:
        return [r for r in self._records.values() if r.credentials_ref == secret_id]

    async def upsert(self, record: DataSourceRecord) -> DataSourceRecord:
        """Insert or replace ``record`` and persist the registry."""
        updated = dict(self._records)
        updated[record.id] = record
        self._replace(updated)
        await self._persist()
        return record

    async def upsert_many(self, records: List[DataSourceRecord]) -> None:
        if not records:
            return
        updated = dict(self._records)
        for record in records:
            updated[record.id] = record
        self._replace(updated)
        await self._persist()

    async def remove(self, record_id: str) -> Optional[DataSourceRecord]:
        """Remove a record; returns the removed record, or None if absent."""
        if record_id not in self._records:
            return None
        updated = dict(self._records)
        removed = updated.pop(record_id)
        self._replace(updated)
        await self._persist()
        return removed

    async def flush(self) -> None:
        await self._persist()

    async def close(self) -> None:
        await self.flush()
        self._started = False

    def _replace(self, records: Dict[str, DataSourceRecord]) -> None:
        self._records = records
        self._version += 1

    async def _persist(self) -> None:
        async with self._persist_lock:
            version = self._version
            if version == self._persisted_version:
                return
            payload = [record.to_dict() for record in self._records.values()]
            try:
                await asyncio.to_thread(self.store.save, payload)
            except Exception as e:
                logger.error("Failed to persist data source registry: %s", e)
                return
            self._persisted_version = version
            logger.debug("Persisted registry version %d", version)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._records
