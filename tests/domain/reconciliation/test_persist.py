from __future__ import annotations

import asyncio
from pathlib import Path

from shepherd.domain.errors import RejectedChange
from shepherd.domain.model import ResourceKind, SyncDirection
from shepherd.domain.reconciliation import (
    Applied,
    CreateChange,
    CyclePersister,
    DeleteChange,
    Failed,
    Snapshot,
    advance_snapshot,
)
from shepherd.domain.reconciliation.persist import commit_message
from tests.helpers.sources import (
    FakeHistory,
    FakeLocator,
    MemorySnapshotStore,
    project,
    role_template,
)


def _outcomes() -> list[Applied | Failed]:
    created = project("p-new", name="new", revision="1")
    return [
        Applied(CreateChange(project(name="new")), created),
        Applied(DeleteChange(project("p-old", name="old"))),
        Failed(CreateChange(role_template(name="bad")), RejectedChange("no")),
    ]


def _snapshot() -> Snapshot:
    snapshot = Snapshot(cluster_name="c-1")
    snapshot.record(project("p-old", name="old"))
    return snapshot


def test_advance_snapshot_folds_applied_and_converged_state() -> None:
    snapshot = _snapshot()
    converged = role_template("rt1", name="dev")

    updated = advance_snapshot(snapshot, _outcomes(), [converged])

    assert set(updated.entries) == {
        (ResourceKind.PROJECT, "p-new"),
        (ResourceKind.ROLE_TEMPLATE, "rt1"),
    }
    assert (ResourceKind.PROJECT, "p-old") in snapshot


def test_enforce_mode_saves_snapshot_without_committing() -> None:
    history = FakeHistory()
    store = MemorySnapshotStore()
    persister = CyclePersister(history, store, FakeLocator())

    result = asyncio.run(
        persister(snapshot=_snapshot(), direction=SyncDirection.ENFORCE, outcomes=_outcomes())
    )

    assert result.clean
    assert result.revision is None
    assert history.commits == []
    assert (ResourceKind.PROJECT, "p-new") in store.saved["c-1"]


def test_capture_mode_commits_touched_documents_and_pushes() -> None:
    history = FakeHistory(has_remote=True)
    store = MemorySnapshotStore()
    persister = CyclePersister(history, store, FakeLocator(Path("/work")))

    result = asyncio.run(
        persister(snapshot=_snapshot(), direction=SyncDirection.CAPTURE, outcomes=_outcomes())
    )

    assert result.clean
    assert result.revision == f"{1:040x}"
    ((paths, message),) = history.commits
    assert paths == (
        Path("/work/c-1/projects/p-new.yaml"),
        Path("/work/c-1/projects/p-old.yaml"),
    )
    assert message.startswith("shepherd: capture c-1 (Project create=1, Project delete=1)")
    assert history.pushes == 1
    assert store.saves == 1


def test_failed_commit_restores_files_and_keeps_previous_snapshot() -> None:
    history = FakeHistory(fail_commit=True)
    store = MemorySnapshotStore()
    snapshot = _snapshot()
    persister = CyclePersister(history, store, FakeLocator())

    result = asyncio.run(
        persister(snapshot=snapshot, direction=SyncDirection.CAPTURE, outcomes=_outcomes())
    )

    assert not result.clean
    assert result.snapshot is snapshot
    assert len(history.discarded) == 2
    assert store.saves == 0


def test_failed_push_keeps_commit_and_reports_unclean() -> None:
    history = FakeHistory(has_remote=True, fail_push=True)
    store = MemorySnapshotStore()
    persister = CyclePersister(history, store, FakeLocator())

    result = asyncio.run(
        persister(snapshot=_snapshot(), direction=SyncDirection.CAPTURE, outcomes=_outcomes())
    )

    assert not result.clean
    assert result.revision is not None
    assert store.saves == 1
    assert history.discarded == []


def test_capture_without_applied_changes_does_not_commit() -> None:
    history = FakeHistory(has_remote=True)
    persister = CyclePersister(history, MemorySnapshotStore(), FakeLocator())

    result = asyncio.run(
        persister(snapshot=_snapshot(), direction=SyncDirection.CAPTURE, outcomes=[])
    )

    assert result.clean
    assert history.commits == []
    assert history.pushes == 0


def test_commit_message_lists_every_change() -> None:
    outcomes = [outcome for outcome in _outcomes() if isinstance(outcome, Applied)]

    assert commit_message("c-1", outcomes) == (
        "shepherd: capture c-1 (Project create=1, Project delete=1)\n"
        "\n"
        "create Project/p-new\n"
        "delete Project/p-old\n"
    )
