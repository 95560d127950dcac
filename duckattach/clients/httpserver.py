"""Client for a remote DuckDB exposed through the httpserver extension.

The server answers ``GET /`` with a health response and executes SQL sent as
the body of ``POST /``, returning one JSON object per result row.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from requests.auth import HTTPBasicAuth

from duckattach.logging import get_logger
from duckattach.models import ConnectionTestResult
from duckattach.utils.sql import quote_identifier

logger = get_logger(__name__)

DEFAULT_TEST_TIMEOUT = 10
DEFAULT_QUERY_TIMEOUT = 30


@dataclass
class RemoteColumn:
    name: str
    data_type: str
    nullable: bool = True


@dataclass
class RemoteTable:
    name: str
    columns: List[RemoteColumn] = field(default_factory=list)


class DuckDBHttpServerClient:
    """Synchronous client; async callers wrap it with ``asyncio.to_thread``."""

    def __init__(
        self,
        base_url: str,
        auth_type: str = "none",
        username: Optional[str] = None,
        password: Optional[str] = None,
        token: Optional[str] = None,
        timeout: int = DEFAULT_QUERY_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_type = auth_type
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers["User-Agent"] = "duckattach-httpserver-client/1.0"

        if auth_type == "basic":
            self.session.auth = HTTPBasicAuth(username or "", password or "")
        elif auth_type == "token":
            self.session.headers["X-API-Key"] = token or ""

    @classmethod
    def from_credentials(
        cls, base_url: str, auth_type: str, credentials: Optional[Dict[str, str]]
    ) -> "DuckDBHttpServerClient":
        credentials = credentials or {}
        return cls(
            base_url,
            auth_type=auth_type,
            username=credentials.get("username"),
            password=credentials.get("password"),
            token=credentials.get("token"),
        )

    def ping(self) -> None:
        """Check the server answers; raises a ``requests`` error otherwise."""
        response = self.session.get(f"{self.base_url}/", timeout=DEFAULT_TEST_TIMEOUT)
        response.raise_for_status()

    def test_connection(self) -> ConnectionTestResult:
        try:
            self.ping()
            return ConnectionTestResult(
                success=True, message=f"Successfully connected to {self.base_url}"
            )
        except requests.exceptions.Timeout:
            return ConnectionTestResult(
                success=False,
                message=f"Connection timeout after {DEFAULT_TEST_TIMEOUT} seconds",
            )
        except requests.exceptions.RequestException as e:
            return ConnectionTestResult(
                success=False, message=f"Connection failed: {str(e)}", error=e
            )

    def execute_query(self, sql: str) -> List[Dict[str, Any]]:
        """Run ``sql`` on the server and return the decoded rows."""
        response = self.session.post(
            f"{self.base_url}/",
            data=sql.encode("utf-8"),
            headers={"Content-Type": "text/plain"},
            timeout=self.timeout,
        )
        response.raise_for_status()

        rows = []
        for line in response.text.strip().splitlines():
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                logger.warning("Skipping unparsable result line from %s", self.base_url)
        return rows

    def get_schema(self) -> List[RemoteTable]:
        """Tables of the server's ``main`` schema with their columns."""
        tables = self.execute_query(
            "SELECT table_name FROM duckdb_tables() "
            "WHERE schema_name = 'main' ORDER BY table_name"
        )
        columns = self.execute_query(
            "SELECT table_name, column_name, data_type, is_nullable "
            "FROM duckdb_columns() WHERE schema_name = 'main' "
            "ORDER BY table_name, column_index"
        )

        by_table: Dict[str, List[RemoteColumn]] = {}
        for column in columns:
            by_table.setdefault(column["table_name"], []).append(
                RemoteColumn(
                    name=column["column_name"],
                    data_type=column["data_type"],
                    nullable=column.get("is_nullable") is not False,
                )
            )
        return [
            RemoteTable(
                name=row["table_name"],
                columns=by_table.get(row["table_name"], []),
            )
            for row in tables
        ]

    def table_query_url(self, table_name: str) -> str:
        """URL returning the rows of ``table_name`` as JSON lines."""
        sql = f"SELECT * FROM {quote_identifier(table_name)}"
        return f"{self.base_url}/?{urlencode({'query': sql})}"

    def close(self) -> None:
        self.session.close()
