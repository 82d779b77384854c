"""Data models shared by the sync pipeline."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Sentinel used for any task field whose cell is missing or blank.
UNKNOWN = "Unknown"

# Column order of the task table.  ``RawRow.from_cells`` is the only place
# that indexes cells by position.
ROW_COLUMNS: tuple[str, ...] = (
    "origin",
    "name",
    "due_date",
    "due_time",
    "status",
    "difficulty",
    "priority",
    "notes",
    "identity",
)
ROW_WIDTH = len(ROW_COLUMNS)
IDENTITY_COLUMN_INDEX = ROW_COLUMNS.index("identity")


class RawRow(BaseModel):
    """One row of the task table, padded to the full column width."""

    model_config = ConfigDict(frozen=True)

    origin: str = ""
    name: str = ""
    due_date: str = ""
    due_time: str = ""
    status: str = ""
    difficulty: str = ""
    priority: str = ""
    notes: str = ""
    identity: str = ""

    @classmethod
    def from_cells(cls, cells: Sequence[object]) -> RawRow:
        """Build a row from positional cells; short rows are padded with ``""``."""
        values = ["" if cell is None else str(cell) for cell in list(cells)[:ROW_WIDTH]]
        values.extend([""] * (ROW_WIDTH - len(values)))
        return cls(**dict(zip(ROW_COLUMNS, values, strict=True)))

    def cells(self) -> tuple[str, ...]:
        return tuple(getattr(self, column) for column in ROW_COLUMNS)

    def with_identity(self, identity: str) -> RawRow:
        return self.model_copy(update={"identity": identity})

    @property
    def stored_identity(self) -> str | None:
        value = self.identity.strip()
        return value or None


class Task(BaseModel):
    """A normalized task row.  Never mutated once built."""

    model_config = ConfigDict(frozen=True)

    origin: str = UNKNOWN
    name: str = UNKNOWN
    due_date: str = UNKNOWN
    due_time: str = UNKNOWN
    status: str = UNKNOWN
    difficulty: str = UNKNOWN
    priority: str = UNKNOWN
    notes: str = UNKNOWN
    identity: str = Field(min_length=1)

    @field_validator("identity")
    @classmethod
    def _normalize_identity(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("identity must be a non-empty string")
        return normalized


class TargetEvent(BaseModel):
    """A calendar event as projected from a task or read back from the store.

    ``identity`` is ``None`` for events that were not created by this tool.
    ``event_id`` is only set on events read from the store.
    """

    summary: str
    description: str | None = None
    start_at: datetime
    end_at: datetime
    timezone: str
    identity: str | None = None
    event_id: str | None = None

    @field_validator("start_at", "end_at")
    @classmethod
    def _require_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None or value.utcoffset() is None:
            raise ValueError("event boundaries must be timezone-aware")
        return value


class ReconcileResult(BaseModel):
    """Identities touched by one reconciliation pass, by outcome."""

    created: list[str] = Field(default_factory=list)
    updated: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    deleted: list[str] = Field(default_factory=list)

    @property
    def changes(self) -> int:
        return len(self.created) + len(self.updated) + len(self.deleted)
