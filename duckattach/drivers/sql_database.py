"""Postgres and MySQL attachments through the engine's scanner extensions."""

from typing import Optional, Tuple

from duckattach.drivers.base import (
    AttachmentDriver,
    Credentials,
    require_choice,
    require_fields,
    require_port,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.models import DataSourceKind, MySQLConfig, PostgresConfig
from duckattach.utils.sql import quote_identifier, quote_literal

POSTGRES_SSL_MODES = (
    "disable",
    "allow",
    "prefer",
    "require",
    "verify-ca",
    "verify-full",
)
MYSQL_SSL_MODES = ("disabled", "preferred", "required", "verify_ca", "verify_identity")


def conninfo_value(value: object) -> str:
    """Quote a value for a libpq / MySQL key=value connection string."""
    text = str(value)
    if text and not any(c in text for c in " '\\"):
        return text
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


class SqlDatabaseDriver(AttachmentDriver):
    """Shared statement building for client/server SQL databases."""

    engine_type = ""
    database_key = "dbname"
    ssl_key = "sslmode"
    ssl_modes: Tuple[str, ...] = ()

    def _validate(self, config) -> None:
        require_fields(config, "host", "database")
        require_port(config)
        require_choice(config, "ssl_mode", self.ssl_modes)

    def required_credentials(self, config) -> Tuple[str, ...]:
        return ("user", "password")

    def build_connection_string(self, config) -> str:
        parts = [
            f"host={conninfo_value(config.host)}",
            f"port={config.port}",
            f"{self.database_key}={conninfo_value(config.database)}",
            f"{self.ssl_key}={config.ssl_mode}",
        ]
        return " ".join(parts)

    def build_secret_statement(
        self, config, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        return secret_statement(
            secret_name,
            self.engine_type,
            [
                ("HOST", config.host),
                ("PORT", config.port),
                ("DATABASE", config.database),
                ("USER", credentials.get("user")),
                ("PASSWORD", credentials.get("password")),
            ],
        )

    def attach_options(self, config, secret_name: Optional[str]) -> list:
        options = [f"TYPE {self.engine_type}"]
        if secret_name:
            options.append(f"SECRET {quote_identifier(secret_name)}")
        if config.read_only:
            options.append("READ_ONLY")
        return options

    def build_attach_statement(
        self, config, name: str, secret_name: Optional[str] = None
    ) -> str:
        return (
            f"ATTACH {quote_literal(self.build_connection_string(config))} "
            f"AS {quote_identifier(name)} "
            f"({', '.join(self.attach_options(config, secret_name))})"
        )


@register_driver(DataSourceKind.POSTGRES)
class PostgresDriver(SqlDatabaseDriver):
    kind = DataSourceKind.POSTGRES
    secret_prefix = "pg_secret"
    engine_type = "POSTGRES"
    database_key = "dbname"
    ssl_key = "sslmode"
    ssl_modes = POSTGRES_SSL_MODES

    def attach_options(self, config: PostgresConfig, secret_name: Optional[str]):
        options = super().attach_options(config, secret_name)
        if config.schema:
            options.append(f"SCHEMA {quote_literal(config.schema)}")
        return options

    def secret_label(self, config: PostgresConfig) -> str:
        return f"PostgreSQL: {config.host}/{config.database}"


@register_driver(DataSourceKind.MYSQL)
class MySQLDriver(SqlDatabaseDriver):
    kind = DataSourceKind.MYSQL
    secret_prefix = "mysql_secret"
    engine_type = "MYSQL"
    database_key = "database"
    ssl_key = "ssl_mode"
    ssl_modes = MYSQL_SSL_MODES

    def secret_label(self, config: MySQLConfig) -> str:
        return f"MySQL: {config.host}/{config.database}"
