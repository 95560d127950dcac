"""Schema metadata for attached sources.

After a successful attach or reconnect the manager asks a
:class:`MetadataRefresher` for the schemas of the attached names and merges
the result into a :class:`MetadataCache`. Refresh failures never change a
connection's state; they are logged and the cache keeps its previous entry.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from duckattach.engine.pool import EngineConnectionPool
from duckattach.logging import get_logger
from duckattach.utils.sql import quote_literal

logger = get_logger(__name__)


@dataclass(frozen=True)
class ColumnMetadata:
    name: str
    data_type: str


@dataclass
class TableMetadata:
    schema: str
    name: str
    columns: List[ColumnMetadata] = field(default_factory=list)


@dataclass
class SourceMetadata:
    """Tables and columns reachable through one attached name."""

    name: str
    tables: List[TableMetadata] = field(default_factory=list)

    def table(self, schema: str, name: str) -> Optional[TableMetadata]:
        for table in self.tables:
            if table.schema == schema and table.name == name:
                return table
        return None


class MetadataRefresher(ABC):
    """Produces schema metadata for attached database or view names."""

    @abstractmethod
    async def refresh(self, names: List[str]) -> Dict[str, SourceMetadata]:
        """Return metadata keyed by attached name."""


class CatalogMetadataRefresher(MetadataRefresher):
    """Reads schema metadata from the engine's ``duckdb_columns()`` catalog.

    Attached databases are matched on ``database_name``; view-backed sources
    (Google Sheets) are matched on ``table_name`` within the default database.
    """

    def __init__(self, pool: EngineConnectionPool):
        self.pool = pool

    async def refresh(self, names: List[str]) -> Dict[str, SourceMetadata]:
        if not names:
            return {}

        name_list = ", ".join(quote_literal(name) for name in names)
        rows = await self.pool.query(
            "SELECT database_name, schema_name, table_name, column_name, data_type "
            "FROM duckdb_columns() "
            f"WHERE database_name IN ({name_list}) "
            "OR (database_name = current_database() "
            f"AND table_name IN ({name_list})) "
            "ORDER BY database_name, schema_name, table_name, column_index"
        )

        wanted = set(names)
        result: Dict[str, SourceMetadata] = {
            name: SourceMetadata(name) for name in names
        }
        for database_name, schema_name, table_name, column_name, data_type in rows:
            key = database_name if database_name in wanted else table_name
            source = result.get(key)
            if source is None:
                continue
            table = source.table(schema_name, table_name)
            if table is None:
                table = TableMetadata(schema=schema_name, name=table_name)
                source.tables.append(table)
            table.columns.append(ColumnMetadata(column_name, data_type))

        logger.debug(
            "Refreshed metadata for %s: %d table(s)",
            ", ".join(names),
            sum(len(s.tables) for s in result.values()),
        )
        return result


class MetadataCache:
    """Copy-on-write cache of :class:`SourceMetadata` keyed by name."""

    def __init__(self):
        self._entries: Dict[str, SourceMetadata] = {}

    def merge(self, entries: Dict[str, SourceMetadata]) -> None:
        updated = dict(self._entries)
        updated.update(entries)
        self._entries = updated

    def drop(self, name: str) -> None:
        if name not in self._entries:
            return
        updated = dict(self._entries)
        del updated[name]
        self._entries = updated

    def get(self, name: str) -> Optional[SourceMetadata]:
        return self._entries.get(name)

    def snapshot(self) -> Mapping[str, SourceMetadata]:
        return MappingProxyType(self._entries)

    def __contains__(self, name: str) -> bool:
        return name in self._entries
