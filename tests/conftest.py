"""Pytest configuration for duckattach tests."""

import asyncio
import re
from typing import Dict, List, Optional, Set, Tuple
from unittest.mock import Mock

import pytest

from duckattach.clients.httpserver import RemoteColumn, RemoteTable
from duckattach.drivers.httpserver import HttpServerDriver
from duckattach.engine.pool import EngineConnectionPool, EngineHandle
from duckattach.exceptions import EngineError
from duckattach.lifecycle.manager import ConnectionLifecycleManager
from duckattach.lifecycle.registry import (
    ConnectionRegistryService,
    InMemoryRegistryStore,
)
from duckattach.models import DataSourceKind
from duckattach.vault.base import InMemorySecretVault

_LITERAL = re.compile(r"'((?:[^']|'')*)'")


def _unquote(identifier: str) -> str:
    if identifier.startswith('"') and identifier.endswith('"'):
        return identifier[1:-1].replace('""', '"')
    return identifier


def _literal(statement: str, index: int = 0) -> str:
    return _LITERAL.findall(statement)[index].replace("''", "'")


class ScriptedHandle(EngineHandle):
    def __init__(self, pool: "ScriptedPool"):
        self.pool = pool

    async def query(self, sql: str):
        return await self.pool.run_statement(sql)


class ScriptedPool(EngineConnectionPool):
    """In-process engine fake.

    Keeps a catalog of attached databases, views and secrets, applies the
    statements the drivers emit, answers the catalog queries they issue,
    and raises injected errors for statements starting with a prefix.
    """

    def __init__(self):
        self.statements: List[str] = []
        self.raised: List[Exception] = []
        self.databases: Set[str] = set()
        self.motherduck: Set[str] = set()
        self.views: Set[str] = set()
        self.tables: Set[str] = set()
        self.secrets: Set[str] = set()
        # Attached but never reported by catalog queries
        self.invisible: Set[str] = set()
        self.columns: List[Tuple[str, str, str, str, str]] = []
        self._failures: List[Dict] = []
        self.acquired = 0
        self.released = 0
        self.closed = False

    def fail_on(
        self,
        prefix: str,
        error: Exception,
        times: Optional[int] = None,
        after_effect: bool = False,
    ) -> None:
        """Raise ``error`` for statements starting with ``prefix``.

        ``times`` limits how often (None = always); with ``after_effect`` the
        statement is applied before the error is raised.
        """
        self._failures.append(
            {
                "prefix": prefix,
                "error": error,
                "times": times,
                "after_effect": after_effect,
            }
        )

    def statements_starting(self, prefix: str) -> List[str]:
        return [s for s in self.statements if s.startswith(prefix)]

    async def acquire(self) -> EngineHandle:
        self.acquired += 1
        return ScriptedHandle(self)

    async def release(self, handle: EngineHandle) -> None:
        self.released += 1

    async def close(self) -> None:
        self.closed = True

    async def run_statement(self, sql: str):
        await asyncio.sleep(0)
        self.statements.append(sql)

        failure = self._match_failure(sql)
        if failure is not None and not failure["after_effect"]:
            self.raised.append(failure["error"])
            raise failure["error"]
        try:
            rows = self._apply(sql)
        except EngineError as e:
            self.raised.append(e)
            raise
        if failure is not None:
            self.raised.append(failure["error"])
            raise failure["error"]
        return rows

    def _match_failure(self, sql: str) -> Optional[Dict]:
        for failure in self._failures:
            if not sql.startswith(failure["prefix"]):
                continue
            if failure["times"] is None:
                return failure
            if failure["times"] > 0:
                failure["times"] -= 1
                return failure
        return None

    def _visible(self, names: Set[str]) -> Set[str]:
        return names - self.invisible

    def _apply(self, sql: str):
        match = re.match(r"CREATE OR REPLACE SECRET (\S+) \(", sql)
        if match:
            self.secrets.add(_unquote(match.group(1)))
            return []
        match = re.match(r"DROP SECRET IF EXISTS (\S+)", sql)
        if match:
            self.secrets.discard(_unquote(match.group(1)))
            return []
        match = re.match(r"ATTACH IF NOT EXISTS 'md:([^']+)'", sql)
        if match:
            self.databases.add(match.group(1))
            self.motherduck.add(match.group(1))
            return []
        match = re.match(r"ATTACH '(?:[^']|'')*' AS (\S+)", sql)
        if match:
            name = _unquote(match.group(1))
            if name.lower() in {db.lower() for db in self.databases}:
                raise EngineError(
                    f'Binder Error: Unique file handle conflict: Database "{name}" '
                    "is already attached",
                    statement=sql,
                )
            self.databases.add(name)
            return []
        match = re.match(r"DETACH DATABASE (IF EXISTS )?(\S+)", sql)
        if match:
            name = _unquote(match.group(2))
            if name not in self.databases and not match.group(1):
                raise EngineError(
                    f'Catalog Error: Failed to detach database with name "{name}": '
                    "database not found",
                    statement=sql,
                )
            self.databases.discard(name)
            self.motherduck.discard(name)
            self.views = {v for v in self.views if not v.startswith(f"{name}.")}
            return []
        match = re.match(r"CREATE OR REPLACE VIEW (\S+) AS", sql)
        if match:
            self.views.add(_unquote(match.group(1)))
            return []
        match = re.match(r"DROP VIEW IF EXISTS (\S+)", sql)
        if match:
            self.views.discard(_unquote(match.group(1)))
            return []
        if sql.startswith("SELECT"):
            return self._select(sql)
        return []

    def _select(self, sql: str):
        if "duckdb_columns()" in sql:
            return list(self.columns)
        if "type = 'motherduck'" in sql:
            return [(name,) for name in sorted(self._visible(self.motherduck))]
        if "duckdb_tables()" in sql:
            wanted = _literal(sql).lower()
            names = self._visible(self.tables | self.views)
            return [(name,) for name in names if name.lower() == wanted]
        if "duckdb_views()" in sql:
            wanted = _literal(sql)
            return [(name,) for name in self._visible(self.views) if name == wanted]
        if "duckdb_databases()" in sql:
            wanted = _literal(sql)
            names = self._visible(self.databases)
            if "lower(" in sql:
                return [(n,) for n in names if n.lower() == wanted.lower()]
            return [(n,) for n in names if n == wanted]
        return []


class RecordingSleep:
    """Stands in for ``asyncio.sleep`` and records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture
def scripted_pool() -> ScriptedPool:
    return ScriptedPool()


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def vault() -> InMemorySecretVault:
    return InMemorySecretVault()


@pytest.fixture
def registry_store() -> InMemoryRegistryStore:
    return InMemoryRegistryStore()


@pytest.fixture
def registry(registry_store) -> ConnectionRegistryService:
    return ConnectionRegistryService(registry_store)


@pytest.fixture
def http_client() -> Mock:
    """Stand-in for DuckDBHttpServerClient."""
    client = Mock()
    client.ping.return_value = None
    client.get_schema.return_value = [
        RemoteTable("users", [RemoteColumn("id", "INTEGER")]),
        RemoteTable("orders", [RemoteColumn("id", "INTEGER")]),
    ]
    client.table_query_url.side_effect = (
        lambda table: f"http://remote:9999/?query=SELECT+*+FROM+{table}"
    )
    return client


@pytest.fixture
def sheets_client() -> Mock:
    """Stand-in for GoogleSheetsClient."""
    client = Mock()
    client.list_sheet_names.return_value = ["Sheet1", "2024 Sales"]
    return client


@pytest.fixture
def manager(
    scripted_pool, vault, registry, fake_sleep, http_client, sheets_client
) -> ConnectionLifecycleManager:
    return ConnectionLifecycleManager(
        pool=scripted_pool,
        vault=vault,
        registry=registry,
        drivers={
            DataSourceKind.HTTPSERVER: HttpServerDriver(
                client_factory=lambda base_url, auth_type, credentials: http_client
            )
        },
        sheets_client_factory=lambda access_token=None: sheets_client,
        sleep=fake_sleep,
    )
