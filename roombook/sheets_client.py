"""Thin wrapper over the Sheets v4 API and the public CSV export.

All spreadsheet I/O goes through :class:`SheetsClient`: tab metadata, value
reads and ``USER_ENTERED`` writes, structural ``batchUpdate`` requests and the
unauthenticated gviz CSV download used for polling.  Tab titles are always
quoted before they reach an A1 range.

The discovery service is built lazily, so CSV-only callers never need OAuth
configuration.  Each thread builds its own service (httplib2 transports are
not thread-safe) unless one was injected.  HTTP and socket failures are
raised as :class:`~roombook.errors.TransientIOError` and a missing credential
as :class:`~roombook.errors.AuthError`.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
import urllib.error
import urllib.parse
import urllib.request
from typing import Callable, Dict, List, Mapping, MutableSequence, Optional, Sequence

from google.auth.exceptions import TransportError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from roombook.errors import AuthError, TransientIOError
from roombook.layout import COLUMN_COUNT
from roombook.models import SheetTab

logger = logging.getLogger(__name__)

VALUE_INPUT_OPTION = "USER_ENTERED"
USER_AGENT = "RoomBook-SheetReader"
CSV_EXPORT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/gviz/tq?tqx=out:csv&gid={gid}"
EDIT_URL = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/edit"

CsvFetcher = Callable[[str], str]

_TRANSIENT_ERRORS = (HttpError, TransportError, urllib.error.URLError, OSError)


def quote_title(title: str) -> str:
    """Return a worksheet title quoted according to A1 notation rules."""

    safe = (title or "").strip()
    if not safe:
        raise ValueError("Worksheet title must not be empty")
    safe = safe.replace("'", "''")
    return f"'{safe}'"


def column_letter(index: int) -> str:
    """Return the A1 letter(s) of a 1-based column index."""

    if index < 1:
        raise ValueError("Column index must be >= 1")
    letters: MutableSequence[str] = []
    while index:
        index, remainder = divmod(index - 1, 26)
        letters.append(chr(65 + remainder))
    return "".join(reversed(letters))


def a1_row_range(
    title: str,
    row_number: int,
    *,
    first_column: int = 1,
    last_column: int = COLUMN_COUNT,
) -> str:
    """Return an A1 range covering one row, ``A<row>:I<row>`` by default."""

    if row_number < 1:
        raise ValueError("Row index must be >= 1")
    return (
        f"{quote_title(title)}!{column_letter(first_column)}{row_number}"
        f":{column_letter(last_column)}{row_number}"
    )


def a1_table_range(title: str, *, columns: int = COLUMN_COUNT) -> str:
    """Return an A1 range spanning all rows of the first ``columns`` columns."""

    return f"{quote_title(title)}!A1:{column_letter(max(1, columns))}"


def grid_range(
    sheet_id: str,
    start_row_index: int,
    end_row_index: Optional[int] = None,
    *,
    start_column_index: int = 0,
    end_column_index: int = COLUMN_COUNT,
) -> Dict[str, int]:
    """Return a ``GridRange`` payload using 0-based, end-exclusive indices."""

    return {
        "sheetId": int(sheet_id),
        "startRowIndex": start_row_index,
        "endRowIndex": start_row_index + 1 if end_row_index is None else end_row_index,
        "startColumnIndex": start_column_index,
        "endColumnIndex": end_column_index,
    }


def parse_csv(text: str) -> List[List[str]]:
    return [list(row) for row in csv.reader(io.StringIO(text))]


def _download_text(url: str) -> str:
    request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    with urllib.request.urlopen(request, timeout=30) as response:  # nosec: B310 - fixed Google host
        charset = response.headers.get_content_charset() or "utf-8"
        return response.read().decode(charset, errors="replace")


def _build_service(token_provider):
    if token_provider is None:
        raise AuthError("Google credentials are required for authenticated sheet access.")
    credentials = token_provider.credentials()
    return build("sheets", "v4", credentials=credentials, cache_discovery=False)


class SheetsClient:
    """Concrete helper that speaks to one spreadsheet."""

    def __init__(
        self,
        spreadsheet_id: str,
        token_provider=None,
        *,
        service=None,
        csv_fetcher: Optional[CsvFetcher] = None,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._token_provider = token_provider
        self._service = service
        self._local = threading.local()
        self._csv_fetcher = csv_fetcher or _download_text

    @property
    def spreadsheet_id(self) -> str:
        return self._spreadsheet_id

    @property
    def has_credentials(self) -> bool:
        if self._service is not None:
            return True
        return bool(self._token_provider is not None and self._token_provider.is_configured)

    def _sheets(self):
        if self._service is not None:
            return self._service.spreadsheets()
        service = getattr(self._local, "service", None)
        if service is None:
            logger.debug(
                "Building Sheets v4 service for %s on thread %s",
                self._spreadsheet_id,
                threading.current_thread().name,
            )
            try:
                service = _build_service(self._token_provider)
            except _TRANSIENT_ERRORS as exc:
                raise TransientIOError(f"Unable to connect to Google Sheets: {exc}") from exc
            self._local.service = service
        return service.spreadsheets()

    def _execute(self, request, action: str):
        try:
            return request.execute()
        except _TRANSIENT_ERRORS as exc:
            logger.error("Sheets API %s failed: %s", action, exc)
            raise TransientIOError(f"Google Sheets {action} failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def list_tabs(self) -> List[SheetTab]:
        """Return every tab of the spreadsheet as ``SheetTab(gid, title)``."""

        response = self._execute(
            self._sheets().get(spreadsheetId=self._spreadsheet_id, fields="sheets.properties"),
            "metadata read",
        )
        tabs: List[SheetTab] = []
        for sheet in response.get("sheets", []):
            properties = sheet.get("properties", {})
            if "sheetId" not in properties:
                continue
            tabs.append(SheetTab(gid=str(properties["sheetId"]), title=properties.get("title")))
        return tabs

    def get_values(self, a1_range: str) -> List[List[str]]:
        response = self._execute(
            self._sheets().values().get(
                spreadsheetId=self._spreadsheet_id,
                range=a1_range,
                majorDimension="ROWS",
            ),
            "values read",
        )
        return [["" if cell is None else str(cell) for cell in row] for row in response.get("values", [])]

    def update_values(self, a1_range: str, rows: Sequence[Sequence[object]]) -> Mapping[str, object]:
        body = {"range": a1_range, "majorDimension": "ROWS", "values": [list(row) for row in rows]}
        return self._execute(
            self._sheets().values().update(
                spreadsheetId=self._spreadsheet_id,
                range=a1_range,
                valueInputOption=VALUE_INPUT_OPTION,
                body=body,
            ),
            "values write",
        )

    def batch_update_values(self, data: Sequence[Mapping[str, object]]) -> Mapping[str, object]:
        """Write several ``{"range": ..., "values": ...}`` blocks in one request."""

        if not data:
            return {}
        body = {
            "valueInputOption": VALUE_INPUT_OPTION,
            "data": [dict(entry, majorDimension="ROWS") for entry in data],
        }
        return self._execute(
            self._sheets().values().batchUpdate(spreadsheetId=self._spreadsheet_id, body=body),
            "batch values write",
        )

    def batch_update(self, requests: Sequence[Mapping[str, object]]) -> Mapping[str, object]:
        """Send structural requests (insert/delete rows, copy formatting)."""

        if not requests:
            return {}
        return self._execute(
            self._sheets().batchUpdate(
                spreadsheetId=self._spreadsheet_id,
                body={"requests": list(requests)},
            ),
            "structural update",
        )

    def csv_url(self, gid: str) -> str:
        return CSV_EXPORT_URL.format(
            spreadsheet_id=urllib.parse.quote(self._spreadsheet_id, safe=""),
            gid=urllib.parse.quote(str(gid), safe=""),
        )

    def edit_url(self, gid: Optional[str] = None) -> str:
        url = EDIT_URL.format(spreadsheet_id=self._spreadsheet_id)
        if gid is not None:
            url = f"{url}#gid={gid}"
        return url

    def fetch_csv(self, gid: str) -> List[List[str]]:
        """Download one tab through the public CSV export."""

        url = self.csv_url(gid)
        try:
            text = self._csv_fetcher(url)
        except _TRANSIENT_ERRORS as exc:
            logger.warning("CSV export for gid %s failed: %s", gid, exc)
            raise TransientIOError(f"Unable to download the sheet export: {exc}") from exc
        return parse_csv(text)


__all__ = [
    "CSV_EXPORT_URL",
    "SheetsClient",
    "a1_row_range",
    "a1_table_range",
    "column_letter",
    "grid_range",
    "parse_csv",
    "quote_title",
]
