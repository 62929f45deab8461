"""One reconciliation cycle for one cluster.

The engine composes the planner, applier and persister with the two state
sources. Which source is desired and which is the convergence target follows
from the cluster's sync direction:

- enforce: repository is desired, the live cluster is changed
- capture: the live cluster is desired, the repository is changed and committed
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.errors import AmbiguousMatch, HistorySyncFailed, ShepherdError
from shepherd.domain.model import KINDS_IN_ORDER, SyncDirection

from .contracts import ChangeSet, CycleResult, CycleSummary, KindCounts
from .plan import DiffPlanner, KindPlan, build_change_set

if TYPE_CHECKING:
    from shepherd.domain.model import ResourceKind
    from shepherd.domain.ports import GitHistory, SnapshotStore, SourceListing, StateSource

    from .apply import ChangeApplier
    from .contracts import ApplyOutcome
    from .persist import CyclePersister
    from .snapshot import Snapshot

log = getLogger(__name__)


@dataclass(slots=True)
class ReconciliationEngine:
    cluster_name: str
    repo: StateSource
    live: StateSource
    history: GitHistory
    snapshots: SnapshotStore
    applier: ChangeApplier
    persister: CyclePersister
    planner: DiffPlanner = field(default_factory=DiffPlanner)
    direction: SyncDirection = SyncDirection.ENFORCE
    prune: bool = True
    kinds: tuple[ResourceKind, ...] = KINDS_IN_ORDER
    _snapshot: Snapshot | None = field(default=None, init=False, repr=False)

    @property
    def desired(self) -> StateSource:
        return self.repo if self.direction is SyncDirection.ENFORCE else self.live

    @property
    def target(self) -> StateSource:
        return self.live if self.direction is SyncDirection.ENFORCE else self.repo

    @property
    def snapshot(self) -> Snapshot:
        if self._snapshot is None:
            self._snapshot = self.snapshots.load(self.cluster_name)
        return self._snapshot

    def close(self) -> None:
        """Drop in-memory state; the stored snapshot was flushed after the last cycle."""

        self._snapshot = None

    async def run_cycle(
        self, stop: asyncio.Event | None = None, *, dry_run: bool = False
    ) -> CycleResult:
        snapshot = self.snapshot
        try:
            await self.history.pull()
        except HistorySyncFailed as exc:
            log.error("Cluster %s: pulling the repository failed: %s", self.cluster_name, exc)
            summary = CycleSummary(
                self.cluster_name, self._empty_counts(), dry_run=dry_run, clean=False
            )
            return CycleResult(self.cluster_name, ChangeSet(), [], summary)

        listings = await asyncio.gather(*(self._collect(kind, stop) for kind in self.kinds))

        plans: list[KindPlan] = []
        failed_kinds: list[ResourceKind] = []
        malformed = 0
        for kind, listing in zip(self.kinds, listings, strict=True):
            if listing is None:
                failed_kinds.append(kind)
                continue
            desired, observed = listing
            malformed += self._report_malformed(desired) + self._report_malformed(observed)
            try:
                plans.append(
                    self.planner.plan_kind(
                        kind,
                        desired.resources,
                        observed.resources,
                        prune=self.prune,
                        protected_ids=desired.malformed_ids,
                        snapshot=snapshot,
                    )
                )
            except AmbiguousMatch as exc:
                log.warning("Cluster %s: planning %s failed: %s", self.cluster_name, kind, exc)
                failed_kinds.append(kind)

        change_set = build_change_set(plans)
        skipped: list[ApplyOutcome] = [item for plan in plans for item in plan.skipped]
        drift = sum(1 for plan in plans for update in plan.updates if update.drift)
        details = {
            "counts": self._empty_counts(),
            "drift": drift,
            "malformed": malformed,
            "failed_kinds": tuple(failed_kinds),
            "dry_run": dry_run,
        }

        if dry_run:
            for line in change_set.describe():
                log.info("Cluster %s [dry-run]: %s", self.cluster_name, line)
            summary = CycleSummary.from_outcomes(self.cluster_name, skipped, **details)
            summary.clean = not failed_kinds
            return CycleResult(self.cluster_name, change_set, skipped, summary)

        outcomes = await self.applier.apply(change_set, self.target, stop=stop)
        persisted = await self.persister(
            snapshot=snapshot,
            direction=self.direction,
            outcomes=outcomes,
            converged=[resource for plan in plans for resource in plan.converged],
        )
        self._snapshot = persisted.snapshot

        all_outcomes = [*outcomes, *skipped]
        summary = CycleSummary.from_outcomes(
            self.cluster_name, all_outcomes, committed=persisted.revision, **details
        )
        if failed_kinds or not persisted.clean:
            summary.clean = False
        return CycleResult(self.cluster_name, change_set, all_outcomes, summary)

    async def _collect(
        self, kind: ResourceKind, stop: asyncio.Event | None
    ) -> tuple[SourceListing, SourceListing] | None:
        desired_source, target_source = self.desired, self.target
        results = await asyncio.gather(
            self.applier.call(
                lambda: desired_source.list(self.cluster_name, kind),
                description=f"list {kind} on {desired_source.name}",
                stop=stop,
            ),
            self.applier.call(
                lambda: target_source.list(self.cluster_name, kind),
                description=f"list {kind} on {target_source.name}",
                stop=stop,
            ),
            return_exceptions=True,
        )
        errors = [result for result in results if isinstance(result, BaseException)]
        for error in errors:
            if not isinstance(error, ShepherdError):
                raise error
            log.warning("Cluster %s: listing %s failed: %s", self.cluster_name, kind, error)
        if errors:
            return None
        (desired, _), (observed, _) = results  # pyright: ignore[reportGeneralTypeIssues]
        return desired, observed

    def _empty_counts(self) -> dict[ResourceKind, KindCounts]:
        return {kind: KindCounts() for kind in self.kinds}

    def _report_malformed(self, listing: SourceListing) -> int:
        for error in listing.malformed:
            where = error.path or error.resource_id or "<unknown>"
            log.warning(
                "Cluster %s: excluding malformed document %s: %s", self.cluster_name, where, error
            )
        return len(listing.malformed)
