"""Google Sheets workbook discovery through the xlsx export endpoint."""

import io
import re
import zipfile
from typing import Iterable, List, Optional
from xml.etree import ElementTree

import requests

from duckattach.logging import get_logger
from duckattach.utils.sql import SQLIdentifierValidator

logger = get_logger(__name__)

SPREADSHEET_URL_PATTERN = re.compile(r"/spreadsheets/d/([a-zA-Z0-9_-]+)")
SPREADSHEET_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{20,}$")

_SPREADSHEETML_NS = "http://schemas.openxmlformats.org/spreadsheetml/2006/main"

DEFAULT_TIMEOUT = 30


def extract_spreadsheet_id(sheet_ref: str) -> Optional[str]:
    """Spreadsheet id from a Google Sheets URL or a bare id."""
    sheet_ref = (sheet_ref or "").strip()
    match = SPREADSHEET_URL_PATTERN.search(sheet_ref)
    if match:
        return match.group(1)
    if SPREADSHEET_ID_PATTERN.match(sheet_ref):
        return sheet_ref
    return None


def build_export_url(spreadsheet_id: str) -> str:
    return f"https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export?format=xlsx"


def read_xlsx_sheet_names(content: bytes) -> List[str]:
    """Sheet names, in workbook order, from an xlsx document.

    Raises:
        ValueError: If the content is not an xlsx workbook
    """
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            workbook_xml = archive.read("xl/workbook.xml")
    except (zipfile.BadZipFile, KeyError) as e:
        raise ValueError(f"Spreadsheet export is not a valid xlsx workbook: {e}")

    root = ElementTree.fromstring(workbook_xml)
    sheets = root.find(f"{{{_SPREADSHEETML_NS}}}sheets")
    if sheets is None:
        return []
    return [
        sheet.get("name")
        for sheet in sheets.findall(f"{{{_SPREADSHEETML_NS}}}sheet")
        if sheet.get("name")
    ]


def make_view_name(sheet_name: str, reserved: Iterable[str]) -> str:
    """Derive a unique, valid view name for a sheet.

    Characters outside ``[A-Za-z0-9_]`` become underscores and a numeric
    suffix is appended when the name is taken (case-insensitively).
    """
    base = re.sub(r"[^a-zA-Z0-9_]", "_", sheet_name).strip("_").lower() or "sheet"
    if base[0].isdigit():
        base = f"sheet_{base}"
    taken = {name.lower() for name in reserved} | SQLIdentifierValidator.SYSTEM_CATALOGS

    candidate = base
    suffix = 2
    while candidate in taken:
        candidate = f"{base}_{suffix}"
        suffix += 1
    return candidate


class GoogleSheetsClient:
    """Fetches public or bearer-authorized spreadsheet exports."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        timeout: int = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        self.timeout = timeout
        self.session = session or requests.Session()
        if access_token:
            self.session.headers["Authorization"] = f"Bearer {access_token}"

    def fetch_workbook(self, spreadsheet_id: str) -> bytes:
        """Download the xlsx export of a spreadsheet.

        Raises:
            requests.exceptions.RequestException: On HTTP or network failure
            ValueError: If the export is empty
        """
        response = self.session.get(
            build_export_url(spreadsheet_id), timeout=self.timeout
        )
        response.raise_for_status()
        if not response.content:
            raise ValueError("Spreadsheet export returned an empty file")
        return response.content

    def list_sheet_names(self, spreadsheet_id: str) -> List[str]:
        names = read_xlsx_sheet_names(self.fetch_workbook(spreadsheet_id))
        logger.debug("Spreadsheet %s has %d sheet(s)", spreadsheet_id, len(names))
        return names

    def close(self) -> None:
        self.session.close()
