"""Tests for the Google Sheets workbook client."""

import io
import zipfile
from unittest.mock import Mock

import pytest
import requests

from duckattach.clients.gsheet import (
    GoogleSheetsClient,
    build_export_url,
    extract_spreadsheet_id,
    make_view_name,
    read_xlsx_sheet_names,
)

SPREADSHEET_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz"

WORKBOOK_XML = (
    '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
    '<workbook xmlns="http://schemas.openxmlformats.org/spreadsheetml/2006/main" '
    'xmlns:r="http://schemas.openxmlformats.org/officeDocument/2006/relationships">'
    "<sheets>"
    '<sheet name="Sheet1" sheetId="1" r:id="rId1"/>'
    '<sheet name="2024 Sales" sheetId="2" r:id="rId2"/>'
    "</sheets></workbook>"
)


def make_xlsx(workbook_xml: str = WORKBOOK_XML) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("xl/workbook.xml", workbook_xml)
    return buffer.getvalue()


class TestSpreadsheetIds:
    def test_from_url(self):
        """Ids are taken from full sheet URLs."""
        url = f"https://docs.google.com/spreadsheets/d/{SPREADSHEET_ID}/edit#gid=0"
        assert extract_spreadsheet_id(url) == SPREADSHEET_ID

    def test_bare_id(self):
        assert extract_spreadsheet_id(f"  {SPREADSHEET_ID} ") == SPREADSHEET_ID

    @pytest.mark.parametrize("ref", ["", None, "short", "https://example.com/x"])
    def test_not_a_spreadsheet(self, ref):
        assert extract_spreadsheet_id(ref) is None

    def test_export_url(self):
        assert build_export_url("abc") == (
            "https://docs.google.com/spreadsheets/d/abc/export?format=xlsx"
        )


class TestReadXlsxSheetNames:
    def test_sheet_names_in_order(self):
        """Names come back in workbook order."""
        assert read_xlsx_sheet_names(make_xlsx()) == ["Sheet1", "2024 Sales"]

    def test_workbook_without_sheets(self):
        xml = (
            '<workbook xmlns="http://schemas.openxmlformats.org/'
            'spreadsheetml/2006/main"/>'
        )
        assert read_xlsx_sheet_names(make_xlsx(xml)) == []

    def test_not_an_xlsx(self):
        """HTML error pages and other content are rejected."""
        with pytest.raises(ValueError, match="not a valid xlsx workbook"):
            read_xlsx_sheet_names(b"<html>Sign in</html>")


class TestMakeViewName:
    def test_sanitizes(self):
        """Sheet names become lower-case identifiers."""
        assert make_view_name("Q1 Budget!", []) == "q1_budget"
        assert make_view_name("2024 Sales", []) == "sheet_2024_sales"
        assert make_view_name("***", []) == "sheet"

    def test_avoids_taken_names(self):
        """Taken and reserved names get a numeric suffix."""
        assert make_view_name("Budget", ["budget", "BUDGET_2"]) == "budget_3"
        assert make_view_name("Memory", []) == "memory_2"


class TestGoogleSheetsClient:
    def _session(self, content=b"", status_error=None):
        session = Mock()
        session.headers = {}
        response = Mock(content=content)
        if status_error is not None:
            response.raise_for_status.side_effect = status_error
        session.get.return_value = response
        return session

    def test_lists_sheets_from_export(self):
        """Sheet names are read from the downloaded export."""
        session = self._session(make_xlsx())
        client = GoogleSheetsClient(session=session, timeout=5)

        assert client.list_sheet_names(SPREADSHEET_ID) == ["Sheet1", "2024 Sales"]
        session.get.assert_called_once_with(
            build_export_url(SPREADSHEET_ID), timeout=5
        )
        assert "Authorization" not in session.headers

    def test_access_token_is_sent_as_bearer(self):
        session = self._session(make_xlsx())
        GoogleSheetsClient(access_token="ya29.token", session=session)
        assert session.headers["Authorization"] == "Bearer ya29.token"

    def test_http_errors_propagate(self):
        """HTTP failures are raised to the caller."""
        session = self._session(status_error=requests.exceptions.HTTPError("403"))
        client = GoogleSheetsClient(session=session)
        with pytest.raises(requests.exceptions.HTTPError):
            client.fetch_workbook(SPREADSHEET_ID)

    def test_empty_export(self):
        client = GoogleSheetsClient(session=self._session(b""))
        with pytest.raises(ValueError, match="empty"):
            client.fetch_workbook(SPREADSHEET_ID)

    def test_close(self):
        session = self._session()
        GoogleSheetsClient(session=session).close()
        session.close.assert_called_once()
