"""Per-run log buffer.

A ``RunLog`` is created for one sync run, passed explicitly to whatever
needs to record user-visible events, and flushed to a ``LogSink`` exactly
once when the run ends (successfully or not).  Entries are also forwarded to
the process logger as they are recorded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from types import TracebackType

from tasksync.sync.clock import Clock
from tasksync.sync.stores import LogSink

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunLogEntry:
    timestamp: datetime
    message: str


class RunLog:
    def __init__(self, sink: LogSink, *, clock: Clock | None = None) -> None:
        self._sink = sink
        self._clock = clock or Clock()
        self._entries: list[RunLogEntry] = []
        self._flushed = False

    @property
    def entries(self) -> list[RunLogEntry]:
        return list(self._entries)

    @property
    def flushed(self) -> bool:
        return self._flushed

    def record(self, message: str, *, level: int = logging.INFO) -> None:
        if self._flushed:
            raise RuntimeError("RunLog was already flushed")
        entry = RunLogEntry(timestamp=self._clock.now(), message=message)
        self._entries.append(entry)
        logger.log(level, message)

    async def flush(self) -> None:
        """Hand the buffered entries to the sink.  Later calls are no-ops.

        Sink failures are logged and swallowed.
        """
        if self._flushed:
            return
        self._flushed = True
        if not self._entries:
            return
        try:
            await self._sink.append(self.entries)
        except Exception:
            logger.warning(
                "Failed to persist %d run log entr(ies)", len(self._entries), exc_info=True
            )

    async def __aenter__(self) -> RunLog:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.flush()
