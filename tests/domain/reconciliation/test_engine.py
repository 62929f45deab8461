from __future__ import annotations

import asyncio

from shepherd.domain.errors import MalformedResource, RejectedChange
from shepherd.domain.model import ResourceKind, SyncDirection
from shepherd.domain.reconciliation import (
    ChangeApplier,
    CyclePersister,
    ReconciliationEngine,
    Skipped,
    Snapshot,
)
from tests.helpers.sources import (
    FakeHistory,
    FakeLocator,
    InMemorySource,
    MemorySnapshotStore,
    project,
    role_template,
)


def _engine(
    repo: InMemorySource,
    live: InMemorySource,
    applier: ChangeApplier,
    *,
    history: FakeHistory | None = None,
    store: MemorySnapshotStore | None = None,
    direction: SyncDirection = SyncDirection.ENFORCE,
    prune: bool = True,
) -> ReconciliationEngine:
    history = history or FakeHistory()
    store = store or MemorySnapshotStore()
    return ReconciliationEngine(
        cluster_name="c-1",
        repo=repo,
        live=live,
        history=history,
        snapshots=store,
        applier=applier,
        persister=CyclePersister(history, store, FakeLocator()),
        direction=direction,
        prune=prune,
    )


def test_cycle_creates_missing_project_and_records_assigned_id(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="p1")])
    live = InMemorySource("live")
    store = MemorySnapshotStore()
    engine = _engine(repo, live, applier, store=store)

    result = asyncio.run(engine.run_cycle())

    assert result.change_set.describe() == ["create Project/<new>"]
    assert result.clean
    (created,) = live.of_kind(ResourceKind.PROJECT)
    assert created.id == "project-1"
    assert (ResourceKind.PROJECT, "project-1") in store.saved["c-1"]
    assert result.summary.counts[ResourceKind.PROJECT].created == 1


def test_second_cycle_after_convergence_is_empty(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="p1"), role_template("rt1", name="dev")])
    live = InMemorySource("live")
    engine = _engine(repo, live, applier)

    first = asyncio.run(engine.run_cycle())
    second = asyncio.run(engine.run_cycle())

    assert len(first.change_set) == 2
    assert not second.change_set
    assert second.clean
    assert live.operations("create") == ["p1", "rt1"]


def test_drift_on_live_side_is_reverted_and_counted(applier: ChangeApplier) -> None:
    desired = project("p1", name="payments", description="managed")
    repo = InMemorySource("repository", [desired])
    observed = project("p1", name="payments", description="manual", revision="8")
    live = InMemorySource("live", [observed])
    store = MemorySnapshotStore()
    store.saved["c-1"] = Snapshot(cluster_name="c-1")
    store.saved["c-1"].record(project("p1", name="payments", description="managed", revision="7"))

    result = asyncio.run(_engine(repo, live, applier, store=store).run_cycle())

    assert result.summary.drift == 1
    assert result.summary.counts[ResourceKind.PROJECT].updated == 1
    assert live.of_kind(ResourceKind.PROJECT)[0].lookup("spec.description") == "managed"


def test_prune_disabled_leaves_unknown_live_resources(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository")
    live = InMemorySource("live", [project("p2", name="stray")])

    result = asyncio.run(_engine(repo, live, applier, prune=False).run_cycle())

    assert not result.change_set
    assert [type(outcome) for outcome in result.outcomes] == [Skipped]
    assert result.summary.counts[ResourceKind.PROJECT].skipped == 1
    assert live.operations("delete") == []


def test_malformed_desired_document_is_reported_and_protects_live_resource(
    applier: ChangeApplier,
) -> None:
    repo = InMemorySource("repository")
    repo.malformed[("c-1", ResourceKind.PROJECT)] = [
        MalformedResource("bad yaml", kind=ResourceKind.PROJECT, resource_id="p2")
    ]
    live = InMemorySource("live", [project("p2", name="kept")])

    result = asyncio.run(_engine(repo, live, applier).run_cycle())

    assert result.summary.malformed == 1
    assert live.operations("delete") == []
    assert result.clean


def test_ambiguous_kind_is_isolated_from_other_kinds(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="twin"), role_template(name="dev")])
    live = InMemorySource("live", [project("p-a", name="twin"), project("p-b", name="twin")])

    result = asyncio.run(_engine(repo, live, applier).run_cycle())

    assert result.summary.failed_kinds == (ResourceKind.PROJECT,)
    assert not result.clean
    assert live.operations("create") == ["dev"]
    assert live.operations("delete") == []


def test_listing_failure_is_isolated_to_its_kind(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="p1"), role_template(name="dev")])
    live = InMemorySource("live")
    live.fail("list", ResourceKind.ROLE_TEMPLATE.value, RejectedChange("forbidden"))

    result = asyncio.run(_engine(repo, live, applier).run_cycle())

    assert result.summary.failed_kinds == (ResourceKind.ROLE_TEMPLATE,)
    assert live.operations("create") == ["p1"]


def test_pull_failure_skips_the_cycle(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="p1")])
    live = InMemorySource("live")

    result = asyncio.run(
        _engine(repo, live, applier, history=FakeHistory(fail_pull=True)).run_cycle()
    )

    assert not result.clean
    assert live.calls == []


def test_dry_run_plans_without_applying(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository", [project(name="p1")])
    live = InMemorySource("live", [project("p9", name="stray")])
    store = MemorySnapshotStore()

    result = asyncio.run(_engine(repo, live, applier, store=store).run_cycle(dry_run=True))

    assert result.change_set.describe() == ["create Project/<new>", "delete Project/p9"]
    assert result.summary.dry_run
    assert live.operations("create") == []
    assert live.operations("delete") == []
    assert store.saves == 0


def test_capture_mode_writes_live_state_into_repository(applier: ChangeApplier) -> None:
    repo = InMemorySource("repository")
    live = InMemorySource("live", [project("p-1", name="payments", revision="3")])
    history = FakeHistory()

    result = asyncio.run(
        _engine(repo, live, applier, history=history, direction=SyncDirection.CAPTURE).run_cycle()
    )

    assert repo.operations("create") == ["p-1"]
    assert live.operations("create") == []
    assert len(history.commits) == 1
    assert result.summary.committed == f"{1:040x}"
