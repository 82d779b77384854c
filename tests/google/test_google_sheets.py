"""Unit tests for the Sheets row store, A1 helpers and log sink."""

from __future__ import annotations

import json
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from conftest import FakeGoogleBackend

from tasksync.core.retry import RetryPolicy
from tasksync.errors import RateLimitedError, RetryExhaustedError, TransportError
from tasksync.google.sheets import (
    GOOGLE_SHEETS_API_BASE_URL,
    GoogleSheetsRowStore,
    SheetRange,
    SheetsLogSink,
    column_to_index,
    index_to_column,
)
from tasksync.sync.clock import FixedClock
from tasksync.sync.run_log import RunLog, RunLogEntry

pytestmark = pytest.mark.unit

SPREADSHEET = "sheet-123"


def _store(backend: FakeGoogleBackend) -> GoogleSheetsRowStore:
    return GoogleSheetsRowStore(backend.api(GOOGLE_SHEETS_API_BASE_URL), spreadsheet_id=SPREADSHEET)


def _sink(backend: FakeGoogleBackend, retry: RetryPolicy) -> SheetsLogSink:
    return SheetsLogSink(
        _store(backend), log_range="Log!A:B", zone=ZoneInfo("America/New_York"), retry=retry
    )


class TestColumnHelpers:
    @pytest.mark.parametrize(
        ("column", "index"), [("A", 0), ("I", 8), ("Z", 25), ("AA", 26), ("AZ", 51), ("BA", 52)]
    )
    def test_round_trip(self, column, index):
        assert column_to_index(column) == index
        assert index_to_column(index) == column

    def test_lowercase_column(self):
        assert column_to_index("i") == 8

    def test_negative_index_is_rejected(self):
        with pytest.raises(ValueError):
            index_to_column(-1)


class TestSheetRange:
    def test_open_ended_range(self):
        parsed = SheetRange.parse("WN25!A2:I")
        assert parsed == SheetRange(
            sheet="WN25", start_column="A", start_row=2, end_column="I", end_row=None
        )

    def test_quoted_sheet_name(self):
        parsed = SheetRange.parse("'Winter 2025'!B3:J40")
        assert parsed.sheet == "'Winter 2025'"
        assert (parsed.start_column, parsed.start_row) == ("B", 3)
        assert parsed.end_row == 40

    def test_range_without_sheet(self):
        parsed = SheetRange.parse("a1")
        assert parsed.sheet is None
        assert parsed.cell(0, 0) == "A1"

    def test_cell_offsets(self):
        assert SheetRange.parse("WN25!A2:I").cell(3, 8) == "WN25!I5"

    @pytest.mark.parametrize("value", ["", "WN25!", "WN25!12", "A1:B2:C3"])
    def test_invalid_ranges(self, value):
        with pytest.raises(ValueError, match="Not an A1 range"):
            SheetRange.parse(value)


class TestGoogleSheetsRowStore:
    async def test_read_range(self):
        backend = FakeGoogleBackend(
            [
                httpx.Response(
                    200,
                    json={
                        "range": "WN25!A2:I4",
                        "values": [["CS 101", "Essay", "3/1/2025"], [], ["", "Lab", 5]],
                    },
                )
            ]
        )

        rows = await _store(backend).read_range("WN25!A2:I")

        assert rows == [["CS 101", "Essay", "3/1/2025"], [], ["", "Lab", "5"]]
        request = backend.requests[0]
        assert request.method == "GET"
        assert request.url.path == f"/v4/spreadsheets/{SPREADSHEET}/values/WN25!A2:I"
        assert request.url.params["majorDimension"] == "ROWS"

    async def test_empty_range_has_no_values_key(self):
        backend = FakeGoogleBackend([httpx.Response(200, json={"range": "WN25!A2:I"})])
        assert await _store(backend).read_range("WN25!A2:I") == []

    async def test_malformed_values_are_rejected(self):
        backend = FakeGoogleBackend([httpx.Response(200, json={"values": "nope"})])
        with pytest.raises(TransportError, match="non-list"):
            await _store(backend).read_range("WN25!A2:I")

    async def test_write_cell(self):
        backend = FakeGoogleBackend()

        await _store(backend).write_cell("WN25!I5", "uuid-1")

        request = backend.requests[0]
        assert request.method == "PUT"
        assert request.url.path == f"/v4/spreadsheets/{SPREADSHEET}/values/WN25!I5"
        assert request.url.params["valueInputOption"] == "RAW"
        assert json.loads(request.content) == {
            "range": "WN25!I5",
            "majorDimension": "ROWS",
            "values": [["uuid-1"]],
        }

    async def test_rate_limit_surfaces_for_retry(self):
        backend = FakeGoogleBackend([httpx.Response(429, json={"error": {"message": "slow"}})])
        with pytest.raises(RateLimitedError):
            await _store(backend).write_cell("WN25!I5", "uuid-1")

    def test_identity_cell_addresses_last_column(self):
        store = _store(FakeGoogleBackend())
        assert store.identity_cell("WN25!A2:I", 0) == "WN25!I2"
        assert store.identity_cell("WN25!A2:I", 3) == "WN25!I5"

    async def test_append_rows(self):
        backend = FakeGoogleBackend()

        await _store(backend).append_rows("Log!A:B", [["t1", "m1"], ["t2", "m2"]])

        request = backend.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/values/Log!A:B:append")
        assert request.url.params["insertDataOption"] == "INSERT_ROWS"
        assert json.loads(request.content)["values"] == [["t1", "m1"], ["t2", "m2"]]


class TestSheetsLogSink:
    async def test_entries_become_rows_in_local_time(self, retry):
        backend = FakeGoogleBackend()
        sink = _sink(backend, retry)
        when = datetime(2025, 2, 20, 15, 30, tzinfo=UTC)

        await sink.append(
            [RunLogEntry(when, "Created event: Essay"), RunLogEntry(when, "Sync complete")]
        )

        body = json.loads(backend.requests[0].content)
        assert body["values"] == [
            ["2025-02-20T10:30:00-05:00", "Created event: Essay"],
            ["2025-02-20T10:30:00-05:00", "Sync complete"],
        ]

    async def test_rate_limited_flush_is_retried(self, retry, no_sleep, clock: FixedClock):
        backend = FakeGoogleBackend(
            [
                httpx.Response(429, json={"error": {"message": "Quota exceeded"}}),
                httpx.Response(200),
            ]
        )
        run_log = RunLog(_sink(backend, retry), clock=clock)
        run_log.record("Created event: Essay")

        await run_log.flush()

        assert [request.method for request in backend.requests] == ["POST", "POST"]
        assert backend.requests[0].content == backend.requests[1].content
        no_sleep.assert_awaited_once_with(1.0)
        assert run_log.flushed

    async def test_exhausted_retries_propagate_from_append(self, no_sleep):
        backend = FakeGoogleBackend([httpx.Response(429), httpx.Response(429)])
        retry = RetryPolicy(max_attempts=2, base_delay=0.0, max_jitter=0.0, sleep=no_sleep)
        sink = _sink(backend, retry)

        with pytest.raises(RetryExhaustedError):
            await sink.append([RunLogEntry(datetime(2025, 2, 20, tzinfo=UTC), "Sync complete")])

        assert len(backend.requests) == 2
