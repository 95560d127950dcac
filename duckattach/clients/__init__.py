"""HTTP clients used by drivers that talk to a source before attaching it."""

from duckattach.clients.gsheet import GoogleSheetsClient, extract_spreadsheet_id
from duckattach.clients.httpserver import DuckDBHttpServerClient

__all__ = ["DuckDBHttpServerClient", "GoogleSheetsClient", "extract_spreadsheet_id"]
