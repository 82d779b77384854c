"""Row normalization: ``RawRow`` -> ``Task``."""

from __future__ import annotations

import uuid
from collections.abc import Callable

from tasksync.sync.models import UNKNOWN, RawRow, Task


def new_identity() -> str:
    return str(uuid.uuid4())


def _or_unknown(value: str) -> str:
    return value if value.strip() else UNKNOWN


def normalize_row(raw: RawRow, *, identity_factory: Callable[[], str] = new_identity) -> Task:
    """Fill blank fields with ``UNKNOWN`` and resolve the row's identity.

    The stored identity is kept when present; otherwise *identity_factory*
    supplies a fresh one.
    """
    return Task(
        origin=_or_unknown(raw.origin),
        name=_or_unknown(raw.name),
        due_date=_or_unknown(raw.due_date),
        due_time=_or_unknown(raw.due_time),
        status=_or_unknown(raw.status),
        difficulty=_or_unknown(raw.difficulty),
        priority=_or_unknown(raw.priority),
        notes=_or_unknown(raw.notes),
        identity=raw.stored_identity or identity_factory(),
    )
