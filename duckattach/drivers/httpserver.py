"""Remote DuckDB instances served by the httpserver extension.

The remote server cannot be attached directly. Instead the driver attaches
an empty in-memory database under the source name and creates one view per
remote table inside it, each reading the table through the server's JSON
query endpoint. Detaching the database removes every view with it.
"""

import asyncio
import base64
from typing import Callable, Optional, Tuple

from duckattach.clients.httpserver import DuckDBHttpServerClient
from duckattach.drivers.base import (
    AttachContext,
    AttachmentDriver,
    Credentials,
    RawSQL,
    require_choice,
    require_fields,
    require_port,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.lifecycle.classify import sanitize_error_message
from duckattach.logging import get_logger
from duckattach.models import DataSourceKind, HttpServerConfig
from duckattach.utils.sql import quote_identifier, quote_literal, quote_qualified

logger = get_logger(__name__)

PROTOCOLS = ("http", "https")
AUTH_TYPES = ("none", "basic", "token")

ClientFactory = Callable[[str, str, Optional[Credentials]], DuckDBHttpServerClient]


def auth_header(auth_type: str, credentials: Credentials) -> Optional[Tuple[str, str]]:
    """HTTP header carrying the server credentials, if any."""
    if auth_type == "basic":
        pair = f"{credentials.get('username', '')}:{credentials.get('password', '')}"
        encoded = base64.b64encode(pair.encode("utf-8")).decode("ascii")
        return "Authorization", f"Basic {encoded}"
    if auth_type == "token":
        return "X-API-Key", credentials.get("token", "")
    return None


@register_driver(DataSourceKind.HTTPSERVER)
class HttpServerDriver(AttachmentDriver):
    kind = DataSourceKind.HTTPSERVER
    secret_prefix = "httpserver_secret"

    def __init__(self, client_factory: Optional[ClientFactory] = None):
        self.client_factory = client_factory or DuckDBHttpServerClient.from_credentials

    def _validate(self, config: HttpServerConfig) -> None:
        require_fields(config, "database_name", "host")
        require_port(config)
        require_choice(config, "protocol", PROTOCOLS)
        require_choice(config, "auth_type", AUTH_TYPES)

    def required_credentials(self, config: HttpServerConfig) -> Tuple[str, ...]:
        if config.auth_type == "basic":
            return ("username", "password")
        if config.auth_type == "token":
            return ("token",)
        return ()

    def build_secret_statement(
        self, config: HttpServerConfig, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        header = auth_header(config.auth_type, credentials)
        if header is None:
            return None
        key, value = header
        headers_map = RawSQL(f"MAP {{{quote_literal(key)}: {quote_literal(value)}}}")
        return secret_statement(
            secret_name,
            "HTTP",
            [("EXTRA_HTTP_HEADERS", headers_map), ("SCOPE", config.base_url)],
        )

    def build_attach_statement(
        self, config: HttpServerConfig, name: str, secret_name: Optional[str] = None
    ) -> str:
        return f"ATTACH ':memory:' AS {quote_identifier(name)}"

    def build_view_statement(
        self, name: str, table_name: str, client: DuckDBHttpServerClient
    ) -> str:
        url = client.table_query_url(table_name)
        return (
            f"CREATE OR REPLACE VIEW {quote_qualified(name, 'main', table_name)} AS "
            f"SELECT * FROM read_json_auto({quote_literal(url)})"
        )

    def make_client(self, context: AttachContext) -> DuckDBHttpServerClient:
        config = context.config
        return self.client_factory(
            config.base_url, config.auth_type, context.credentials
        )

    async def prepare(self, context: AttachContext) -> None:
        """Probe the server under the pipeline's retry policy."""
        client = self.make_client(context)
        try:
            await context.executor.run(
                lambda: asyncio.to_thread(client.ping),
                context.policy,
                source_name=context.source_name,
            )
        finally:
            client.close()

    async def after_attach(self, context: AttachContext) -> None:
        """Create one view per remote table; schema problems are not fatal."""
        if context.for_test:
            return
        client = self.make_client(context)
        try:
            tables = await asyncio.to_thread(client.get_schema)
        except Exception as e:
            logger.warning(
                "Could not read schema from %s; '%s' attached without views: %s",
                context.config.base_url,
                context.name,
                sanitize_error_message(str(e)),
            )
            client.close()
            return

        created = 0
        try:
            for table in tables:
                statement = self.build_view_statement(context.name, table.name, client)
                try:
                    await context.pool.query(statement)
                    created += 1
                except Exception as e:
                    logger.warning(
                        "Could not create view for remote table '%s': %s",
                        table.name,
                        sanitize_error_message(str(e)),
                    )
        finally:
            client.close()
        logger.info(
            "Created %d of %d view(s) for HTTP server source '%s'",
            created,
            len(tables),
            context.name,
        )

    def secret_label(self, config: HttpServerConfig) -> str:
        return f"DuckDB HTTP server: {config.base_url}"
