"""Reconciliation pipeline: rows -> tasks -> events."""

from tasksync.sync.identity import IdentityAssigner, IdentityAssignment
from tasksync.sync.models import RawRow, ReconcileResult, Task, TargetEvent
from tasksync.sync.orchestrator import SyncOrchestrator, SyncOutcome, SyncPhase, SyncTarget
from tasksync.sync.projector import EventProjector
from tasksync.sync.reconciler import Reconciler

__all__ = [
    "EventProjector",
    "IdentityAssigner",
    "IdentityAssignment",
    "RawRow",
    "ReconcileResult",
    "Reconciler",
    "SyncOrchestrator",
    "SyncOutcome",
    "SyncPhase",
    "SyncTarget",
    "Task",
    "TargetEvent",
]
