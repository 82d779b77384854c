"""Projection of a ``Task`` into the ``TargetEvent`` it should appear as."""

from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime

from tasksync.errors import DateParseError
from tasksync.sync.clock import Clock
from tasksync.sync.models import UNKNOWN, Task, TargetEvent

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_COMPLETION_MARKER = "✓ "
DEFAULT_COMPLETED_STATUSES: tuple[str, ...] = ("done", "complete", "completed")

DATE_FORMATS: tuple[str, ...] = ("%m/%d/%Y",)
TIME_FORMATS: tuple[str, ...] = ("%I:%M:%S %p", "%I:%M %p", "%H:%M:%S", "%H:%M")

# Statuses are written like "1 - Not Done" / "3 - Done".
_STATUS_ORDINAL_PREFIX = re.compile(r"^\s*\d+\s*[-.:)]\s*")


def parse_due(due_date: str, due_time: str) -> datetime:
    """Parse the date and time cells into a naive local datetime.

    Raises ``DateParseError`` quoting ``"<date>|<time>"`` when either part is
    blank, ``Unknown`` or in no accepted format.
    """
    raw = f"{due_date}|{due_time}"
    date_text = " ".join(due_date.split())
    time_text = " ".join(due_time.split()).upper()
    if not date_text or not time_text or UNKNOWN.upper() in (date_text.upper(), time_text):
        raise DateParseError(raw)

    for date_format in DATE_FORMATS:
        for time_format in TIME_FORMATS:
            try:
                return datetime.strptime(f"{date_text} {time_text}", f"{date_format} {time_format}")
            except ValueError:
                continue
    raise DateParseError(raw)


def is_completed(status: str, completed_statuses: Iterable[str]) -> bool:
    label = _STATUS_ORDINAL_PREFIX.sub("", status).strip().lower()
    return label in {value.strip().lower() for value in completed_statuses}


def build_summary(task: Task, *, completion_marker: str = "", completed: bool = False) -> str:
    summary = f"{task.origin}: {task.name}"
    if completed and completion_marker:
        summary = f"{completion_marker}{summary}"
    return summary


def build_description(task: Task) -> str:
    return f"Difficulty: {task.difficulty}\nPriority: {task.priority}\nNotes: {task.notes}"


class EventProjector:
    def __init__(
        self,
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Clock | None = None,
        completion_marker: str = DEFAULT_COMPLETION_MARKER,
        completed_statuses: Iterable[str] = DEFAULT_COMPLETED_STATUSES,
    ) -> None:
        self._clock = clock or Clock()
        self._timezone = timezone
        self._zone = self._clock.zone(timezone)
        self._completion_marker = completion_marker
        self._completed_statuses = tuple(completed_statuses)

    @property
    def timezone(self) -> str:
        return self._timezone

    def project(self, task: Task) -> TargetEvent:
        try:
            local_due = parse_due(task.due_date, task.due_time)
        except DateParseError as exc:
            raise DateParseError(exc.raw_value, task_name=task.name) from exc

        due_at = local_due.replace(tzinfo=self._zone)
        return TargetEvent(
            summary=build_summary(
                task,
                completion_marker=self._completion_marker,
                completed=is_completed(task.status, self._completed_statuses),
            ),
            description=build_description(task),
            start_at=due_at,
            end_at=due_at,
            timezone=self._timezone,
            identity=task.identity,
        )
