"""Google Sheets-backed row store and log sink."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import tzinfo
from urllib.parse import quote

from tasksync.core.retry import RetryPolicy
from tasksync.errors import TransportError
from tasksync.google.client import GoogleApiClient
from tasksync.sync.models import IDENTITY_COLUMN_INDEX
from tasksync.sync.run_log import RunLogEntry
from tasksync.sync.stores import LogSink, RowStore

logger = logging.getLogger(__name__)

GOOGLE_SHEETS_API_BASE_URL = "https://sheets.googleapis.com/v4"

_A1_RANGE_PATTERN = re.compile(
    r"^(?P<sheet>(?:'(?:[^']|'')+'|[^!']+)!)?"
    r"(?P<start_col>[A-Za-z]{1,3})(?P<start_row>\d+)?"
    r"(?::(?P<end_col>[A-Za-z]{1,3})(?P<end_row>\d+)?)?$"
)


def column_to_index(column: str) -> int:
    """``"A"`` -> 0, ``"Z"`` -> 25, ``"AA"`` -> 26."""
    index = 0
    for char in column.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1


def index_to_column(index: int) -> str:
    if index < 0:
        raise ValueError("column index must be non-negative")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


@dataclass(frozen=True)
class SheetRange:
    """Parsed A1-notation range such as ``WN25!A2:I``."""

    sheet: str | None
    start_column: str
    start_row: int
    end_column: str | None = None
    end_row: int | None = None

    @classmethod
    def parse(cls, value: str) -> SheetRange:
        match = _A1_RANGE_PATTERN.match(value.strip())
        if match is None:
            raise ValueError(f"Not an A1 range: {value!r}")
        sheet = match.group("sheet")
        return cls(
            sheet=sheet[:-1] if sheet else None,
            start_column=match.group("start_col").upper(),
            start_row=int(match.group("start_row") or 1),
            end_column=(match.group("end_col") or "").upper() or None,
            end_row=int(match.group("end_row")) if match.group("end_row") else None,
        )

    def cell(self, row_offset: int, column_offset: int) -> str:
        """Address of the cell *row_offset* rows and *column_offset* columns into the range."""
        column = index_to_column(column_to_index(self.start_column) + column_offset)
        address = f"{column}{self.start_row + row_offset}"
        return f"{self.sheet}!{address}" if self.sheet else address


def _encode_range(range_name: str) -> str:
    return quote(range_name, safe="")


class GoogleSheetsRowStore(RowStore):
    def __init__(self, api: GoogleApiClient, *, spreadsheet_id: str) -> None:
        self._api = api
        self._spreadsheet_id = spreadsheet_id

    def _values_path(self, range_name: str) -> str:
        return (
            f"/spreadsheets/{quote(self._spreadsheet_id, safe='')}/values/"
            f"{_encode_range(range_name)}"
        )

    async def read_range(self, range_name: str) -> list[list[str]]:
        payload = await self._api.request_json(
            "GET",
            self._values_path(range_name),
            params={"majorDimension": "ROWS", "valueRenderOption": "FORMATTED_VALUE"},
        )
        values = payload.get("values", [])
        if not isinstance(values, list):
            raise TransportError(f"Sheets response for {range_name} has a non-list 'values'")
        rows: list[list[str]] = []
        for row in values:
            if not isinstance(row, list):
                raise TransportError(f"Sheets response for {range_name} has a non-list row")
            rows.append(["" if cell is None else str(cell) for cell in row])
        logger.debug("Read %d row(s) from %s", len(rows), range_name)
        return rows

    async def write_cell(self, cell_ref: str, value: str) -> None:
        await self._api.request_json(
            "PUT",
            self._values_path(cell_ref),
            params={"valueInputOption": "RAW"},
            json_body={"range": cell_ref, "majorDimension": "ROWS", "values": [[value]]},
        )

    def identity_cell(self, range_name: str, row_index: int) -> str:
        return SheetRange.parse(range_name).cell(row_index, IDENTITY_COLUMN_INDEX)

    async def append_rows(self, range_name: str, rows: list[list[str]]) -> None:
        await self._api.request_json(
            "POST",
            f"{self._values_path(range_name)}:append",
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json_body={"range": range_name, "majorDimension": "ROWS", "values": rows},
        )


class SheetsLogSink(LogSink):
    """Appends ``(timestamp, message)`` rows to a log tab of the spreadsheet.

    Each append goes through the sync's retry policy, so a rate-limited
    flush is retried like any other sheet write.
    """

    def __init__(
        self,
        row_store: GoogleSheetsRowStore,
        *,
        log_range: str,
        zone: tzinfo,
        retry: RetryPolicy,
    ) -> None:
        self._row_store = row_store
        self._log_range = log_range
        self._zone = zone
        self._retry = retry

    async def append(self, entries: Sequence[RunLogEntry]) -> None:
        rows = [
            [entry.timestamp.astimezone(self._zone).isoformat(timespec="seconds"), entry.message]
            for entry in entries
        ]
        await self._retry.run(
            lambda: self._row_store.append_rows(self._log_range, rows),
            description=f"append run log to {self._log_range}",
        )
