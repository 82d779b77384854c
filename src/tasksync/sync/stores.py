"""Abstract collaborators the sync pipeline talks to.

Concrete Google-backed implementations live in ``tasksync.google``; tests
use in-memory fakes.  Every remote method may raise ``RateLimitedError``
(retried by the caller) or ``TransportError`` (fatal).
"""

from __future__ import annotations

import abc
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from tasksync.sync.models import TargetEvent

if TYPE_CHECKING:
    from tasksync.sync.run_log import RunLogEntry

logger = logging.getLogger(__name__)


class AuthorizationProvider(abc.ABC):
    """Supplies the session both stores authenticate with."""

    @abc.abstractmethod
    async def authorize(self) -> None:
        """Acquire (or validate) credentials.  Raises ``AuthorizationError``."""
        ...


class RowStore(abc.ABC):
    """Tabular store holding one task per row."""

    @abc.abstractmethod
    async def read_range(self, range_name: str) -> list[list[str]]:
        """Return every row of *range_name*, in order.  Rows may be short."""
        ...

    @abc.abstractmethod
    async def write_cell(self, cell_ref: str, value: str) -> None:
        """Overwrite a single cell."""
        ...

    @abc.abstractmethod
    def identity_cell(self, range_name: str, row_index: int) -> str:
        """Return the address of the identity cell of the 0-based *row_index*."""
        ...


class EventStore(abc.ABC):
    """Calendar-like store of events."""

    @abc.abstractmethod
    async def list_events(self, *, calendar_id: str) -> list[TargetEvent]:
        """Return every live event on the calendar."""
        ...

    @abc.abstractmethod
    async def create_event(self, *, calendar_id: str, event: TargetEvent) -> TargetEvent:
        """Create an event and return it with its store-assigned id."""
        ...

    @abc.abstractmethod
    async def update_event(
        self,
        *,
        calendar_id: str,
        event_id: str,
        event: TargetEvent,
    ) -> TargetEvent:
        """Replace the whole event payload."""
        ...

    @abc.abstractmethod
    async def delete_event(self, *, calendar_id: str, event_id: str) -> None:
        """Delete an event.  Deleting an already-deleted event is not an error."""
        ...


class LogSink(abc.ABC):
    """Post-hoc destination for a run's log entries."""

    @abc.abstractmethod
    async def append(self, entries: Sequence[RunLogEntry]) -> None: ...


class NullLogSink(LogSink):
    """Sink used when log persistence is not configured."""

    async def append(self, entries: Sequence[RunLogEntry]) -> None:
        logger.debug("Discarding %d run log entr(ies); no log sink configured", len(entries))


class DryRunEventStore(EventStore):
    """Reads from the wrapped store but only logs mutations."""

    def __init__(self, inner: EventStore) -> None:
        self._inner = inner
        self.planned: list[tuple[str, str]] = []

    async def list_events(self, *, calendar_id: str) -> list[TargetEvent]:
        return await self._inner.list_events(calendar_id=calendar_id)

    async def create_event(self, *, calendar_id: str, event: TargetEvent) -> TargetEvent:
        logger.info("[dry-run] would create %r on %s", event.summary, calendar_id)
        self.planned.append(("create", event.summary))
        return event

    async def update_event(
        self,
        *,
        calendar_id: str,
        event_id: str,
        event: TargetEvent,
    ) -> TargetEvent:
        logger.info("[dry-run] would update %s (%r) on %s", event_id, event.summary, calendar_id)
        self.planned.append(("update", event.summary))
        return event.model_copy(update={"event_id": event_id})

    async def delete_event(self, *, calendar_id: str, event_id: str) -> None:
        logger.info("[dry-run] would delete %s on %s", event_id, calendar_id)
        self.planned.append(("delete", event_id))
