"""Data model for attached data sources.

A data source is described by a per-kind configuration dataclass (a tagged
union keyed by :class:`DataSourceKind`) and tracked by a
:class:`DataSourceRecord`, the single durable unit stored in the registry.
"""

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type, Union


class DataSourceKind(Enum):
    """Closed set of supported external source kinds."""

    URL_REMOTE = "url-remote"
    POSTGRES = "postgres"
    MYSQL = "mysql"
    ICEBERG = "iceberg"
    MOTHERDUCK = "motherduck"
    GSHEET = "gsheet"
    HTTPSERVER = "httpserver"


class ConnectionState(Enum):
    """Connection state of a data source, see ConnectionStateMachine."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"
    CREDENTIALS_REQUIRED = "credentials-required"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class UrlRemoteConfig:
    """DuckDB database file served over https or object storage."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.URL_REMOTE

    database_name: str
    url: str
    read_only: bool = True
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.database_name


@dataclass(frozen=True)
class PostgresConfig:
    """Postgres database attached through the engine's postgres extension."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.POSTGRES

    host: str
    database: str
    port: int = 5432
    alias: Optional[str] = None
    schema: Optional[str] = None
    ssl_mode: str = "prefer"
    read_only: bool = True
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.alias or self.database


@dataclass(frozen=True)
class MySQLConfig:
    """MySQL database attached through the engine's mysql extension."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.MYSQL

    host: str
    database: str
    port: int = 3306
    alias: Optional[str] = None
    ssl_mode: str = "preferred"
    read_only: bool = True
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.alias or self.database


@dataclass(frozen=True)
class IcebergConfig:
    """Iceberg catalog (REST, Glue or S3 Tables)."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.ICEBERG

    alias: str
    warehouse: str
    endpoint: Optional[str] = None
    endpoint_type: Optional[str] = None
    auth_type: str = "oauth2"
    oauth2_server_uri: Optional[str] = None
    oauth2_scope: Optional[str] = None
    region: Optional[str] = None
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.alias


@dataclass(frozen=True)
class MotherDuckConfig:
    """One database of a MotherDuck account (instance)."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.MOTHERDUCK

    database: str
    instance_id: str = "default"
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.database


@dataclass(frozen=True)
class GSheetConfig:
    """One sheet of a Google Sheets workbook, exposed as a view."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.GSHEET

    view_name: str
    spreadsheet_id: str
    sheet_name: str
    access_mode: str = "public"
    group_id: str = ""
    spreadsheet_name: str = ""
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.view_name

    @property
    def export_url(self) -> str:
        return (
            f"https://docs.google.com/spreadsheets/d/{self.spreadsheet_id}"
            "/export?format=xlsx"
        )


@dataclass(frozen=True)
class HttpServerConfig:
    """Remote DuckDB exposed by the httpserver extension."""

    kind: ClassVar[DataSourceKind] = DataSourceKind.HTTPSERVER

    database_name: str
    host: str
    port: int = 9999
    protocol: str = "http"
    auth_type: str = "none"
    secret_id: Optional[str] = None

    @property
    def name(self) -> str:
        return self.database_name

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"


DataSourceConfig = Union[
    UrlRemoteConfig,
    PostgresConfig,
    MySQLConfig,
    IcebergConfig,
    MotherDuckConfig,
    GSheetConfig,
    HttpServerConfig,
]

CONFIG_TYPES: Dict[DataSourceKind, Type[Any]] = {
    DataSourceKind.URL_REMOTE: UrlRemoteConfig,
    DataSourceKind.POSTGRES: PostgresConfig,
    DataSourceKind.MYSQL: MySQLConfig,
    DataSourceKind.ICEBERG: IcebergConfig,
    DataSourceKind.MOTHERDUCK: MotherDuckConfig,
    DataSourceKind.GSHEET: GSheetConfig,
    DataSourceKind.HTTPSERVER: HttpServerConfig,
}


def config_to_dict(config: DataSourceConfig) -> Dict[str, Any]:
    """Serialize a config with its ``kind`` discriminator."""
    data = dataclasses.asdict(config)
    data["kind"] = config.kind.value
    return data


def config_from_dict(data: Dict[str, Any]) -> DataSourceConfig:
    """Build the config dataclass selected by ``data["kind"]``.

    Raises:
        ValueError: On a missing/unknown kind, unknown fields or missing
            required fields
    """
    if not isinstance(data, dict):
        raise ValueError("Data source configuration must be a mapping")
    raw_kind = data.get("kind")
    if not raw_kind:
        raise ValueError("Data source configuration missing required 'kind' field")
    try:
        kind = DataSourceKind(raw_kind)
    except ValueError:
        allowed = ", ".join(k.value for k in DataSourceKind)
        raise ValueError(f"Unknown data source kind '{raw_kind}' (expected: {allowed})")

    config_cls = CONFIG_TYPES[kind]
    known = {f.name for f in dataclasses.fields(config_cls)}
    params = {k: v for k, v in data.items() if k != "kind"}
    unknown = sorted(set(params) - known)
    if unknown:
        raise ValueError(f"Unknown {kind.value} field(s): {', '.join(unknown)}")

    try:
        return config_cls(**params)
    except TypeError as e:
        raise ValueError(f"Invalid {kind.value} configuration: {e}")


def with_secret_id(config: DataSourceConfig, secret_id: Optional[str]):
    """Return a copy of ``config`` pointing at ``secret_id``."""
    return dataclasses.replace(config, secret_id=secret_id)


def make_record_id() -> str:
    return f"ds_{uuid.uuid4().hex}"


def _format_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


@dataclass(frozen=True)
class DataSourceRecord:
    """Durable unit of one attached external source.

    Records are immutable; every change produces a new record through
    :func:`dataclasses.replace` so registry readers only ever observe fully
    formed values.
    """

    id: str
    kind: DataSourceKind
    display_name: str
    config: DataSourceConfig
    connection_state: ConnectionState = ConnectionState.CONNECTING
    connection_error: Optional[str] = None
    attached_at: Optional[datetime] = None
    credentials_ref: Optional[str] = None
    engine_secret_name: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        config: DataSourceConfig,
        display_name: Optional[str] = None,
        credentials_ref: Optional[str] = None,
    ) -> "DataSourceRecord":
        """Create a record in the ``connecting`` state with a fresh id."""
        return cls(
            id=make_record_id(),
            kind=config.kind,
            display_name=display_name or config.name,
            config=config,
            credentials_ref=credentials_ref,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind.value,
            "display_name": self.display_name,
            "config": config_to_dict(self.config),
            "connection_state": self.connection_state.value,
            "connection_error": self.connection_error,
            "attached_at": _format_ts(self.attached_at),
            "credentials_ref": self.credentials_ref,
            "engine_secret_name": self.engine_secret_name,
            "created_at": _format_ts(self.created_at),
            "updated_at": _format_ts(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DataSourceRecord":
        config = config_from_dict(data["config"])
        kind = DataSourceKind(data["kind"])
        if config.kind is not kind:
            raise ValueError(
                f"Record {data.get('id')} kind '{kind.value}' does not match "
                f"config kind '{config.kind.value}'"
            )
        return cls(
            id=data["id"],
            kind=kind,
            display_name=data.get("display_name") or config.name,
            config=config,
            connection_state=ConnectionState(
                data.get("connection_state", ConnectionState.DISCONNECTED.value)
            ),
            connection_error=data.get("connection_error"),
            attached_at=_parse_ts(data.get("attached_at")),
            credentials_ref=data.get("credentials_ref"),
            engine_secret_name=data.get("engine_secret_name"),
            created_at=_parse_ts(data.get("created_at")) or utcnow(),
            updated_at=_parse_ts(data.get("updated_at")) or utcnow(),
        )


@dataclass
class AttachResult:
    """Outcome of an add / reconnect pipeline run.

    ``message`` is safe to show to users; ``error`` keeps the normalized
    exception for callers that branch on the error kind.
    """

    success: bool
    message: str
    record: Optional[DataSourceRecord] = None
    records: List[DataSourceRecord] = field(default_factory=list)
    error: Optional[Exception] = None


class ConnectionTestResult:
    """Result of a connection test."""

    def __init__(
        self,
        success: bool,
        message: Optional[str] = None,
        error: Optional[Exception] = None,
    ):
        """Initialize a ConnectionTestResult.

        Args:
        ----
            success: Whether the test was successful
            message: Optional message with details
            error: Normalized error when the test failed

        """
        self.success = success
        self.message = message
        self.error = error

    def __repr__(self) -> str:
        return f"ConnectionTestResult(success={self.success}, message={self.message!r})"
