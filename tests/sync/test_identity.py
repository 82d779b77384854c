"""Unit tests for identity backfill and its concurrency guard.

Covers:
- Rows with stored identities are not written
- Missing identities are generated and written once, in row order
- A freshness re-read precedes every identity write
- Own writes are not mistaken for concurrent edits
- Drift before a write aborts with ConcurrentModificationError, no rollback
- Row-count drift is detected
- Duplicate stored identities are rejected before any write
- Reads and writes go through the retry policy
"""

from __future__ import annotations

from itertools import count

import pytest
from conftest import FakeRowStore, make_row

from tasksync.core.retry import RetryPolicy
from tasksync.errors import (
    ConcurrentModificationError,
    DuplicateIdentityError,
    RateLimitedError,
    SyncErrorKind,
)
from tasksync.sync.identity import IdentityAssigner, find_drift
from tasksync.sync.models import RawRow

pytestmark = pytest.mark.unit

RANGE = "Tasks!A2:I"


def _sequential_ids():
    counter = count(1)
    return lambda: f"new-{next(counter)}"


def _assigner(store: FakeRowStore, retry: RetryPolicy, run_log=None) -> IdentityAssigner:
    return IdentityAssigner(
        store,
        range_name=RANGE,
        retry=retry,
        run_log=run_log,
        identity_factory=_sequential_ids(),
    )


class TestAssign:
    async def test_existing_identities_are_not_rewritten(self, retry):
        store = FakeRowStore([make_row(identity="a"), make_row(name="Lab", identity="b")])

        result = await _assigner(store, retry).assign()

        assert [task.identity for task in result.tasks] == ["a", "b"]
        assert result.written == []
        assert store.writes == []
        # Only the initial snapshot read.
        assert store.reads == 1

    async def test_missing_identities_are_generated_and_written(self, retry, run_log):
        store = FakeRowStore(
            [make_row(identity="a"), make_row(name="Lab"), make_row(name="Quiz")]
        )

        result = await _assigner(store, retry, run_log).assign()

        assert [task.identity for task in result.tasks] == ["a", "new-1", "new-2"]
        assert result.written == [(1, "new-1"), (2, "new-2")]
        assert store.writes == [(f"{RANGE}#1", "new-1"), (f"{RANGE}#2", "new-2")]
        # Snapshot read plus one freshness check per written row.
        assert store.reads == 3
        assert [entry.message for entry in run_log.entries] == [
            "Assigned identity to Lab",
            "Assigned identity to Quiz",
        ]

    async def test_short_rows_get_identity_cell(self, retry):
        store = FakeRowStore([["Math", "Homework", "3/1/2025", "1:00 PM"]])

        result = await _assigner(store, retry).assign()

        assert result.written == [(0, "new-1")]
        assert store.rows[0][8] == "new-1"

    async def test_uses_supplied_snapshot(self, retry):
        store = FakeRowStore([make_row(identity="a")])
        snapshot = [RawRow.from_cells(make_row(identity="a"))]

        await _assigner(store, retry).assign(snapshot)

        assert store.reads == 0

    async def test_concurrent_edit_aborts_before_write(self, retry):
        store = FakeRowStore([make_row(name="Lab"), make_row(name="Quiz")])

        def edit_on_second_read(reads: int, s: FakeRowStore) -> None:
            if reads == 2:
                s.rows[1][1] = "Quiz (edited)"

        store.on_read = edit_on_second_read

        with pytest.raises(ConcurrentModificationError) as excinfo:
            await _assigner(store, retry).assign()

        assert excinfo.value.kind is SyncErrorKind.CONCURRENT_MODIFICATION
        assert excinfo.value.row_index == 1
        assert store.writes == []

    async def test_late_edit_stops_further_writes_without_rollback(self, retry):
        store = FakeRowStore([make_row(name="Lab"), make_row(name="Quiz"), make_row(name="Exam")])

        def edit_before_second_write(reads: int, s: FakeRowStore) -> None:
            if reads == 3:
                s.rows[2][2] = "4/1/2025"

        store.on_read = edit_before_second_write

        with pytest.raises(ConcurrentModificationError):
            await _assigner(store, retry).assign()

        # The first identity stays written; nothing else was written.
        assert store.writes == [(f"{RANGE}#0", "new-1")]
        assert store.rows[0][8] == "new-1"

    async def test_inserted_row_is_detected(self, retry):
        store = FakeRowStore([make_row(name="Lab")])

        def insert_row(reads: int, s: FakeRowStore) -> None:
            if reads == 2:
                s.rows.append(make_row(name="Intruder"))

        store.on_read = insert_row

        with pytest.raises(ConcurrentModificationError, match="row count"):
            await _assigner(store, retry).assign()
        assert store.writes == []

    async def test_duplicate_stored_identity_is_rejected(self, retry):
        store = FakeRowStore(
            [make_row(identity="dup"), make_row(name="Lab"), make_row(name="Copy", identity="dup")]
        )

        with pytest.raises(DuplicateIdentityError) as excinfo:
            await _assigner(store, retry).assign()

        assert excinfo.value.row_indexes == (0, 2)
        assert store.writes == []

    async def test_rate_limited_write_is_retried(self, no_sleep):
        store = FakeRowStore([make_row(name="Lab")])
        original_write = store.write_cell
        failures = [RateLimitedError(status_code=429)]

        async def flaky_write(cell_ref: str, value: str) -> None:
            if failures:
                raise failures.pop()
            await original_write(cell_ref, value)

        store.write_cell = flaky_write  # type: ignore[method-assign]
        retry = RetryPolicy(max_attempts=5, base_delay=1.0, max_jitter=0.0, sleep=no_sleep)

        result = await _assigner(store, retry).assign()

        assert result.written == [(0, "new-1")]
        no_sleep.assert_awaited_once_with(1.0)


class TestFindDrift:
    def test_identical_rows(self):
        rows = [RawRow.from_cells(make_row())]
        assert find_drift(rows, list(rows)) is None

    def test_cell_difference_reports_row(self):
        before = [RawRow.from_cells(make_row()), RawRow.from_cells(make_row(name="A"))]
        after = [RawRow.from_cells(make_row()), RawRow.from_cells(make_row(name="B"))]
        drift = find_drift(before, after)
        assert drift is not None
        assert drift[0] == 1

    def test_trailing_blank_cells_are_not_drift(self):
        before = [RawRow.from_cells(["a", "b"])]
        after = [RawRow.from_cells(["a", "b", ""])]
        assert find_drift(before, after) is None
