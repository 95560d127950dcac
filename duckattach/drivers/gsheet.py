"""Google Sheets, one view per sheet over the workbook's xlsx export."""

from typing import Optional, Tuple

from duckattach.drivers.base import (
    AttachmentDriver,
    Credentials,
    require_choice,
    require_fields,
    secret_statement,
)
from duckattach.drivers.registry import register_driver
from duckattach.models import DataSourceKind, GSheetConfig
from duckattach.utils.sql import quote_identifier, quote_literal

ACCESS_MODES = ("public", "authorized")

# Naming and grouping only; two configs differing here read the same sheet
GSHEET_NON_IDENTITY_FIELDS = frozenset({"secret_id", "group_id", "spreadsheet_name"})


def secret_scope(spreadsheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}"


@register_driver(DataSourceKind.GSHEET)
class GSheetDriver(AttachmentDriver):
    kind = DataSourceKind.GSHEET
    secret_prefix = "gsheet_http"
    catalog_namespace = "view"

    def _validate(self, config: GSheetConfig) -> None:
        require_fields(config, "view_name", "spreadsheet_id", "sheet_name")
        require_choice(config, "access_mode", ACCESS_MODES)

    def required_credentials(self, config: GSheetConfig) -> Tuple[str, ...]:
        if config.access_mode == "authorized":
            return ("access_token",)
        return ()

    def build_secret_statement(
        self, config: GSheetConfig, secret_name: str, credentials: Credentials
    ) -> Optional[str]:
        if config.access_mode != "authorized":
            return None
        return secret_statement(
            secret_name,
            "HTTP",
            [
                ("BEARER_TOKEN", credentials.get("access_token")),
                ("SCOPE", secret_scope(config.spreadsheet_id)),
            ],
        )

    def build_attach_statement(
        self, config: GSheetConfig, name: str, secret_name: Optional[str] = None
    ) -> str:
        return (
            f"CREATE OR REPLACE VIEW {quote_identifier(name)} AS "
            f"SELECT * FROM read_xlsx({quote_literal(config.export_url)}, "
            f"sheet = {quote_literal(config.sheet_name)}, ignore_errors = true)"
        )

    def build_detach_statement(self, name: str, if_exists: bool = True) -> str:
        return f"DROP VIEW IF EXISTS {quote_identifier(name)}"

    def build_verification_query(self, name: str) -> str:
        return (
            "SELECT view_name FROM duckdb_views() "
            f"WHERE view_name = {quote_literal(name)}"
        )

    def build_catalog_lookup_query(self, name: str) -> str:
        return (
            "SELECT table_name FROM duckdb_tables() "
            f"WHERE lower(table_name) = lower({quote_literal(name)}) "
            "UNION ALL SELECT view_name FROM duckdb_views() "
            f"WHERE lower(view_name) = lower({quote_literal(name)})"
        )

    def non_identity_fields(self) -> frozenset:
        return GSHEET_NON_IDENTITY_FIELDS

    def secret_label(self, config: GSheetConfig) -> str:
        return f"Google Sheet: {config.spreadsheet_name or config.spreadsheet_id}"
