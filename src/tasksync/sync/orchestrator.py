"""One end-to-end sync run, expressed as a sequence of named phases.

    AUTHORIZE -> READ_ROWS -> ASSIGN_IDENTITIES -> LIST_EVENTS -> RECONCILE -> FINALIZE

Identity write-back (ASSIGN_IDENTITIES) always completes before the event
store is read.  Any failure stops the run in the phase where it happened;
``run()`` never raises and reports the failure in the returned
``SyncOutcome``.  The run log is flushed exactly once either way.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

from tasksync.core.retry import RetryPolicy
from tasksync.core.telemetry import phase_span
from tasksync.errors import SyncError, SyncErrorKind
from tasksync.sync.clock import Clock
from tasksync.sync.identity import IdentityAssigner, IdentityAssignment
from tasksync.sync.models import RawRow, ReconcileResult, TargetEvent
from tasksync.sync.normalizer import new_identity
from tasksync.sync.projector import EventProjector
from tasksync.sync.reconciler import Reconciler
from tasksync.sync.run_log import RunLog
from tasksync.sync.stores import AuthorizationProvider, EventStore, LogSink, RowStore

logger = logging.getLogger(__name__)


class SyncPhase(enum.StrEnum):
    AUTHORIZE = "authorize"
    READ_ROWS = "read_rows"
    ASSIGN_IDENTITIES = "assign_identities"
    LIST_EVENTS = "list_events"
    RECONCILE = "reconcile"
    FINALIZE = "finalize"
    DONE = "done"


class SyncOutcome(BaseModel):
    """Result of ``SyncOrchestrator.run``.

    ``phase`` is the phase the run failed in, or ``DONE`` on success.
    ``error_kind`` is ``None`` on success and for unexpected (non-``SyncError``)
    failures.
    """

    success: bool
    phase: SyncPhase
    error_kind: SyncErrorKind | None = None
    error: str | None = None
    identities_written: int = 0
    result: ReconcileResult | None = None


@dataclass(frozen=True)
class SyncTarget:
    """Where a run reads from and writes to."""

    range_name: str
    calendar_id: str
    last_sync_cell: str | None = None


class SyncOrchestrator:
    def __init__(
        self,
        *,
        target: SyncTarget,
        authorizer: AuthorizationProvider,
        row_store: RowStore,
        event_store: EventStore,
        log_sink: LogSink,
        projector: EventProjector,
        retry: RetryPolicy,
        clock: Clock | None = None,
        identity_factory: Callable[[], str] = new_identity,
    ) -> None:
        self._target = target
        self._authorizer = authorizer
        self._row_store = row_store
        self._event_store = event_store
        self._log_sink = log_sink
        self._projector = projector
        self._retry = retry
        self._clock = clock or Clock()
        self._identity_factory = identity_factory
        self._phase = SyncPhase.AUTHORIZE

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    async def run(self) -> SyncOutcome:
        async with RunLog(self._log_sink, clock=self._clock) as run_log:
            assignment: IdentityAssignment | None = None
            try:
                assignment, result = await self._run_phases(run_log)
            except SyncError as exc:
                logger.error("Sync failed during %s [%s]: %s", self._phase, exc.kind, exc)
                run_log.record(f"Error: {exc}", level=logging.DEBUG)
                return SyncOutcome(
                    success=False,
                    phase=self._phase,
                    error_kind=exc.kind,
                    error=str(exc),
                )
            except Exception as exc:
                logger.exception("Sync failed during %s with an unexpected error", self._phase)
                run_log.record(f"Error: {exc!r}", level=logging.DEBUG)
                return SyncOutcome(success=False, phase=self._phase, error=repr(exc))

            self._phase = SyncPhase.DONE
            return SyncOutcome(
                success=True,
                phase=SyncPhase.DONE,
                identities_written=len(assignment.written),
                result=result,
            )

    async def _run_phases(self, run_log: RunLog) -> tuple[IdentityAssignment, ReconcileResult]:
        assigner = IdentityAssigner(
            self._row_store,
            range_name=self._target.range_name,
            retry=self._retry,
            run_log=run_log,
            identity_factory=self._identity_factory,
        )

        self._phase = SyncPhase.AUTHORIZE
        with phase_span(self._phase):
            await self._retry.run(self._authorizer.authorize, description="authorize")

        self._phase = SyncPhase.READ_ROWS
        with phase_span(self._phase, range=self._target.range_name):
            snapshot: list[RawRow] = await assigner.read_rows()

        self._phase = SyncPhase.ASSIGN_IDENTITIES
        with phase_span(self._phase, rows=len(snapshot)):
            assignment = await assigner.assign(snapshot)

        self._phase = SyncPhase.LIST_EVENTS
        with phase_span(self._phase, calendar_id=self._target.calendar_id):
            events: list[TargetEvent] = await self._retry.run(
                lambda: self._event_store.list_events(calendar_id=self._target.calendar_id),
                description=f"list events on {self._target.calendar_id}",
            )

        self._phase = SyncPhase.RECONCILE
        reconciler = Reconciler(
            self._event_store,
            calendar_id=self._target.calendar_id,
            projector=self._projector,
            retry=self._retry,
            run_log=run_log,
        )
        with phase_span(self._phase, tasks=len(assignment.tasks), events=len(events)):
            result = await reconciler.reconcile(assignment.tasks, events)

        self._phase = SyncPhase.FINALIZE
        with phase_span(self._phase):
            await self._write_last_sync()
            run_log.record(
                f"Sync complete: {len(result.created)} created, {len(result.updated)} updated, "
                f"{len(result.deleted)} deleted"
            )
        return assignment, result

    async def _write_last_sync(self) -> None:
        cell_ref = self._target.last_sync_cell
        if not cell_ref:
            return
        zone = self._clock.zone(self._projector.timezone)
        stamp = self._clock.now().astimezone(zone).isoformat(timespec="seconds")
        await self._retry.run(
            lambda: self._row_store.write_cell(cell_ref, stamp),
            description=f"write {cell_ref}",
        )
