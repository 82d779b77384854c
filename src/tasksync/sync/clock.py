"""Current time and named-timezone resolution."""

from __future__ import annotations

from datetime import UTC, datetime, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Clock:
    """System clock.  Tests substitute a subclass with a fixed ``now``."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def zone(self, name: str) -> tzinfo:
        """Resolve an IANA zone name; raises ``ValueError`` for unknown names."""
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {name!r}") from exc


class FixedClock(Clock):
    def __init__(self, now: datetime) -> None:
        self._now = now

    def now(self) -> datetime:
        return self._now
