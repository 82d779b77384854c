"""Semantic equality between a stored event and a freshly projected one."""

from __future__ import annotations

from datetime import UTC, datetime

from tasksync.sync.models import TargetEvent


def _instant(value: datetime) -> datetime:
    return value.astimezone(UTC)


def comparable_fields(event: TargetEvent) -> tuple[str, str, datetime, datetime]:
    """Fields that decide equality.  Identity, event id and timezone label are left out."""
    return (
        event.summary,
        event.description or "",
        _instant(event.start_at),
        _instant(event.end_at),
    )


def events_equal(existing: TargetEvent, projected: TargetEvent) -> bool:
    return comparable_fields(existing) == comparable_fields(projected)
