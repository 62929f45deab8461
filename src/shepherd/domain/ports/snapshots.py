"""Port for persisting per-cluster snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from shepherd.domain.reconciliation.snapshot import Snapshot


@runtime_checkable
class SnapshotStore(Protocol):
    def load(self, cluster_name: str) -> Snapshot:
        """Return the stored snapshot, or an empty one on first run."""
        ...

    def save(self, snapshot: Snapshot) -> None: ...
