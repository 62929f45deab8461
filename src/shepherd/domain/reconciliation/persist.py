"""Record a cycle's results: snapshot update and, in capture mode, a git commit.

The commit is all-or-nothing for a cycle. When it fails the written files are
restored, the previous snapshot is kept and the cycle is reported unclean; the
next cycle re-derives everything from the sources.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.errors import HistoryCommitFailed
from shepherd.domain.model import SyncDirection

from .contracts import Applied, ChangeOperation, DeleteChange

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from pathlib import Path

    from shepherd.domain.model import Resource
    from shepherd.domain.ports import DocumentLocator, GitHistory, SnapshotStore

    from .contracts import ApplyOutcome
    from .snapshot import Snapshot

log = getLogger(__name__)


@dataclass(slots=True)
class PersistenceResult:
    snapshot: Snapshot
    revision: str | None = None
    error: HistoryCommitFailed | None = None

    @property
    def clean(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class CyclePersister:
    history: GitHistory
    store: SnapshotStore
    locator: DocumentLocator

    async def __call__(
        self,
        *,
        snapshot: Snapshot,
        direction: SyncDirection,
        outcomes: Sequence[ApplyOutcome],
        converged: Iterable[Resource] = (),
    ) -> PersistenceResult:
        updated = advance_snapshot(snapshot, outcomes, converged)

        revision: str | None = None
        if direction is SyncDirection.CAPTURE:
            applied = [outcome for outcome in outcomes if isinstance(outcome, Applied)]
            paths = self._paths_for(applied)
            if paths:
                message = commit_message(snapshot.cluster_name, applied)
                try:
                    revision = await self.history.commit(paths, message)
                except HistoryCommitFailed as exc:
                    log.error("Commit for cluster %s failed: %s", snapshot.cluster_name, exc)
                    await self.history.discard(paths)
                    return PersistenceResult(snapshot=snapshot, error=exc)
                if revision is not None and self.history.has_remote:
                    try:
                        await self.history.push()
                    except HistoryCommitFailed as exc:
                        # the local commit stays; the next successful push carries it
                        log.error("Push for cluster %s failed: %s", snapshot.cluster_name, exc)
                        self.store.save(updated)
                        return PersistenceResult(snapshot=updated, revision=revision, error=exc)

        self.store.save(updated)
        return PersistenceResult(snapshot=updated, revision=revision)

    def _paths_for(self, applied: Iterable[Applied]) -> list[Path]:
        paths: set[Path] = set()
        for outcome in applied:
            change = outcome.change
            resource = change.resource if isinstance(change, DeleteChange) else outcome.resource
            if resource is not None:
                paths.add(self.locator.path_for(resource))
        return sorted(paths)


def advance_snapshot(
    snapshot: Snapshot,
    outcomes: Iterable[ApplyOutcome],
    converged: Iterable[Resource] = (),
) -> Snapshot:
    """Return a copy of ``snapshot`` with confirmed and applied state folded in."""

    updated = snapshot.copy()
    for resource in converged:
        updated.record(resource)
    for outcome in outcomes:
        if not isinstance(outcome, Applied):
            continue
        if isinstance(outcome.change, DeleteChange):
            updated.forget(outcome.change.key)
        elif outcome.resource is not None:
            updated.record(outcome.resource)
    return updated


def commit_message(cluster_name: str, applied: Sequence[Applied]) -> str:
    counts: Counter[tuple[str, ChangeOperation]] = Counter(
        (outcome.change.kind.value, outcome.change.operation) for outcome in applied
    )
    summary = ", ".join(
        f"{kind} {operation}={count}" for (kind, operation), count in sorted(counts.items())
    )
    lines = [f"shepherd: capture {cluster_name} ({summary})", ""]
    lines.extend(
        f"{outcome.change.operation} {_label(outcome)}"
        for outcome in sorted(applied, key=lambda outcome: (outcome.change.kind, _label(outcome)))
    )
    return "\n".join(lines) + "\n"


def _label(outcome: Applied) -> str:
    if outcome.resource is not None:
        return outcome.resource.label
    return outcome.change.label
