"""Identity-keyed diff/apply between tasks and calendar events.

For each task, in source order, the projected event is compared with the
stored event sharing its identity: equal events are left alone, differing
ones are replaced wholesale, missing ones are created.  Stored events whose
identity no longer matches any task are deleted afterwards.  Events without
an identity are never touched.  Any failed remote call aborts the pass.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tasksync.core.retry import RetryPolicy
from tasksync.errors import TransportError
from tasksync.sync.comparator import events_equal
from tasksync.sync.models import ReconcileResult, Task, TargetEvent
from tasksync.sync.projector import EventProjector
from tasksync.sync.run_log import RunLog
from tasksync.sync.stores import EventStore

logger = logging.getLogger(__name__)


def build_sync_index(
    events: Sequence[TargetEvent],
) -> tuple[dict[str, TargetEvent], list[TargetEvent]]:
    """Index events by identity.

    Returns the index and the list of surplus events that share an identity
    with an earlier-listed event.  Events without an identity are dropped.
    """
    index: dict[str, TargetEvent] = {}
    duplicates: list[TargetEvent] = []
    for event in events:
        if not event.identity:
            continue
        if event.identity in index:
            duplicates.append(event)
            continue
        index[event.identity] = event
    return index, duplicates


class Reconciler:
    def __init__(
        self,
        event_store: EventStore,
        *,
        calendar_id: str,
        projector: EventProjector,
        retry: RetryPolicy,
        run_log: RunLog,
    ) -> None:
        self._event_store = event_store
        self._calendar_id = calendar_id
        self._projector = projector
        self._retry = retry
        self._run_log = run_log

    async def reconcile(
        self,
        tasks: Sequence[Task],
        existing_events: Sequence[TargetEvent],
    ) -> ReconcileResult:
        index, duplicates = build_sync_index(existing_events)
        if duplicates:
            logger.warning(
                "%d event(s) share an identity with another event; extras will be deleted",
                len(duplicates),
            )

        result = ReconcileResult()
        for task in tasks:
            projected = self._projector.project(task)
            existing = index.pop(task.identity, None)

            if existing is None:
                await self._create(task, projected)
                result.created.append(task.identity)
            elif events_equal(existing, projected):
                result.unchanged.append(task.identity)
            else:
                await self._update(task, existing, projected)
                result.updated.append(task.identity)

        for orphan in [*index.values(), *duplicates]:
            await self._delete(orphan)
            result.deleted.append(orphan.identity or "")

        logger.info(
            "Reconciled %d task(s): %d created, %d updated, %d unchanged, %d deleted",
            len(tasks),
            len(result.created),
            len(result.updated),
            len(result.unchanged),
            len(result.deleted),
        )
        return result

    async def _create(self, task: Task, projected: TargetEvent) -> None:
        await self._retry.run(
            lambda: self._event_store.create_event(
                calendar_id=self._calendar_id,
                event=projected,
            ),
            description=f"create event for {task.identity}",
        )
        self._run_log.record(f"Created event: {task.name}")

    async def _update(self, task: Task, existing: TargetEvent, projected: TargetEvent) -> None:
        event_id = _require_event_id(existing, "update")
        await self._retry.run(
            lambda: self._event_store.update_event(
                calendar_id=self._calendar_id,
                event_id=event_id,
                event=projected,
            ),
            description=f"update event {event_id}",
        )
        self._run_log.record(f"Updated event: {task.name}")

    async def _delete(self, orphan: TargetEvent) -> None:
        event_id = _require_event_id(orphan, "delete")
        await self._retry.run(
            lambda: self._event_store.delete_event(
                calendar_id=self._calendar_id,
                event_id=event_id,
            ),
            description=f"delete event {event_id}",
        )
        self._run_log.record(f"Deleted event: {orphan.summary}")


def _require_event_id(event: TargetEvent, action: str) -> str:
    if event.event_id is None:
        raise TransportError(
            f"Cannot {action} event {event.identity!r}: the event store returned it without an id"
        )
    return event.event_id
