"""Snapshot files kept next to the git history (inside the git directory)."""

from __future__ import annotations

import json
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.ports import SnapshotStore
from shepherd.domain.reconciliation import Snapshot

from .documents import FileDocumentStore

if TYPE_CHECKING:
    from pathlib import Path

log = getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JsonSnapshotStore:
    """One ``<cluster>.json`` file per cluster under ``directory``."""

    directory: Path
    store: FileDocumentStore = FileDocumentStore()

    def path(self, cluster_name: str) -> Path:
        return self.directory / f"{cluster_name}.json"

    def load(self, cluster_name: str) -> Snapshot:
        path = self.path(cluster_name)
        if not path.is_file():
            return Snapshot(cluster_name=cluster_name)
        try:
            snapshot = Snapshot.from_document(json.loads(path.read_text(encoding="utf-8")))
        except (ValueError, KeyError, TypeError) as exc:
            log.warning("Ignoring unreadable snapshot %s: %s", path, exc)
            return Snapshot(cluster_name=cluster_name)
        if snapshot.cluster_name != cluster_name:
            log.warning("Ignoring snapshot %s: it belongs to %r", path, snapshot.cluster_name)
            return Snapshot(cluster_name=cluster_name)
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        self.store.save_resource(self.path(snapshot.cluster_name), snapshot.to_document())

    def discard(self, cluster_name: str) -> None:
        self.path(cluster_name).unlink(missing_ok=True)


if TYPE_CHECKING:
    _store_check: SnapshotStore = JsonSnapshotStore(directory=None)  # type: ignore[arg-type]
