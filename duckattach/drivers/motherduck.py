"""MotherDuck databases.

The token is handed to the engine as a MOTHERDUCK secret and each database
is attached with ``ATTACH IF NOT EXISTS 'md:<database>'``. MotherDuck
databases keep their own names in the catalog, so connection tests cannot
use a temporary alias.
"""

from typing import Optional, Tuple

from duckattach.drivers.base import (
    AttachmentDriver,
    Credentials,
    require_fields,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.models import DataSourceKind, MotherDuckConfig
from duckattach.utils.sql import quote_literal

LIST_DATABASES_QUERY = (
    "SELECT database_name FROM duckdb_databases() WHERE type = 'motherduck' "
    "ORDER BY database_name"
)


@register_driver(DataSourceKind.MOTHERDUCK)
class MotherDuckDriver(AttachmentDriver):
    kind = DataSourceKind.MOTHERDUCK
    secret_prefix = "md_secret"
    supports_test_alias = False

    def _validate(self, config: MotherDuckConfig) -> None:
        require_fields(config, "database", "instance_id")

    def required_credentials(self, config: MotherDuckConfig) -> Tuple[str, ...]:
        return ("token",)

    def build_secret_statement(
        self, config: MotherDuckConfig, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        return secret_statement(
            secret_name, "MOTHERDUCK", [("TOKEN", credentials.get("token"))]
        )

    def build_attach_statement(
        self, config: MotherDuckConfig, name: str, secret_name: Optional[str] = None
    ) -> str:
        return f"ATTACH IF NOT EXISTS {quote_literal('md:' + config.database)}"

    def replaces_on_conflict(
        self, existing: MotherDuckConfig, requested: MotherDuckConfig
    ) -> bool:
        # Same database name from another account: switching instances
        return (
            existing.database.lower() == requested.database.lower()
            and existing.instance_id != requested.instance_id
        )

    def secret_label(self, config: MotherDuckConfig) -> str:
        return f"MotherDuck: {config.instance_id}"
