"""Reconciliation core: plan, apply and record one cycle per cluster.

Stage flow for one cycle:
1) pull the repository
2) list every kind from the desired and the target source
3) plan per kind, then interleave into one ordered change set
4) apply the change set to the target source
5) fold outcomes into the snapshot and, in capture mode, commit
"""

from __future__ import annotations

from .apply import ChangeApplier, RetriesExhausted
from .contracts import (
    Applied,
    ApplyOutcome,
    ChangeItem,
    ChangeOperation,
    ChangeSet,
    CreateChange,
    CycleResult,
    CycleSummary,
    DeleteChange,
    Failed,
    KindCounts,
    PatchOp,
    PatchOperation,
    Skipped,
    UpdateChange,
)
from .engine import ReconciliationEngine
from .patch import apply_patch, diff
from .persist import CyclePersister, PersistenceResult, advance_snapshot
from .plan import DiffPlanner, KindPlan, build_change_set
from .snapshot import Snapshot, SnapshotEntry

__all__ = [
    "Applied",
    "ApplyOutcome",
    "ChangeApplier",
    "ChangeItem",
    "ChangeOperation",
    "ChangeSet",
    "CreateChange",
    "CyclePersister",
    "CycleResult",
    "CycleSummary",
    "DeleteChange",
    "DiffPlanner",
    "Failed",
    "KindCounts",
    "KindPlan",
    "PatchOp",
    "PatchOperation",
    "PersistenceResult",
    "ReconciliationEngine",
    "RetriesExhausted",
    "Skipped",
    "Snapshot",
    "SnapshotEntry",
    "UpdateChange",
    "advance_snapshot",
    "apply_patch",
    "build_change_set",
    "diff",
]
