"""Identity backfill with an optimistic concurrency guard.

Rows without a stored identity get a fresh one, written back to the row
store one cell at a time.  Immediately before each write the full range is
re-read and compared with what we expect it to contain: the snapshot taken at
the start of the run plus the identities this run has already written.  Any
other difference means someone edited the table concurrently and the run
stops with ``ConcurrentModificationError``.  Identities already written stay
in place.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from tasksync.core.retry import RetryPolicy
from tasksync.errors import ConcurrentModificationError, DuplicateIdentityError
from tasksync.sync.models import RawRow, Task
from tasksync.sync.normalizer import new_identity, normalize_row
from tasksync.sync.run_log import RunLog
from tasksync.sync.stores import RowStore

logger = logging.getLogger(__name__)


@dataclass
class IdentityAssignment:
    tasks: list[Task] = field(default_factory=list)
    # (row_index, identity) for every identity written this run, in write order.
    written: list[tuple[int, str]] = field(default_factory=list)


def find_drift(expected: list[RawRow], current: list[RawRow]) -> tuple[int | None, str] | None:
    """Return ``(row_index, detail)`` for the first difference, or ``None``."""
    if len(expected) != len(current):
        return None, f"row count changed from {len(expected)} to {len(current)}"
    for index, (before, after) in enumerate(zip(expected, current, strict=True)):
        if before.cells() != after.cells():
            return index, f"expected {list(before.cells())!r}, found {list(after.cells())!r}"
    return None


def _check_duplicates(rows: list[RawRow]) -> None:
    seen: dict[str, int] = {}
    for index, row in enumerate(rows):
        identity = row.stored_identity
        if identity is None:
            continue
        if identity in seen:
            raise DuplicateIdentityError(identity, row_indexes=(seen[identity], index))
        seen[identity] = index


class IdentityAssigner:
    def __init__(
        self,
        row_store: RowStore,
        *,
        range_name: str,
        retry: RetryPolicy,
        run_log: RunLog | None = None,
        identity_factory: Callable[[], str] = new_identity,
    ) -> None:
        self._row_store = row_store
        self._range_name = range_name
        self._retry = retry
        self._run_log = run_log
        self._identity_factory = identity_factory

    async def read_rows(self) -> list[RawRow]:
        cells = await self._retry.run(
            lambda: self._row_store.read_range(self._range_name),
            description=f"read {self._range_name}",
        )
        return [RawRow.from_cells(row) for row in cells]

    async def assign(self, snapshot: list[RawRow] | None = None) -> IdentityAssignment:
        """Normalize every row, writing back identities that are missing.

        *snapshot* is the range as read at the start of the run; it is read
        here when not supplied.
        """
        if snapshot is None:
            snapshot = await self.read_rows()
        _check_duplicates(snapshot)

        expected = list(snapshot)
        result = IdentityAssignment()
        for index, row in enumerate(snapshot):
            task = normalize_row(row, identity_factory=self._identity_factory)
            if row.stored_identity is None:
                await self._ensure_unchanged(expected)
                await self._write_identity(index, task)
                expected[index] = row.with_identity(task.identity)
                result.written.append((index, task.identity))
            result.tasks.append(task)

        if result.written:
            logger.info("Assigned %d new identit(ies)", len(result.written))
        return result

    async def _ensure_unchanged(self, expected: list[RawRow]) -> None:
        current = await self.read_rows()
        drift = find_drift(expected, current)
        if drift is not None:
            row_index, detail = drift
            raise ConcurrentModificationError(row_index=row_index, detail=detail)

    async def _write_identity(self, index: int, task: Task) -> None:
        cell_ref = self._row_store.identity_cell(self._range_name, index)
        await self._retry.run(
            lambda: self._row_store.write_cell(cell_ref, task.identity),
            description=f"write {cell_ref}",
        )
        if self._run_log is not None:
            self._run_log.record(f"Assigned identity to {task.name}")
        logger.debug("Wrote identity %s to %s", task.identity, cell_ref)
