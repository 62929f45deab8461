from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest
from git import GitCommandError, Remote, Repo

from shepherd.adapters.git import (
    INITIAL_COMMIT_MESSAGE,
    GitPythonHistory,
    credential_environment,
)
from shepherd.config import GitCredential
from shepherd.domain.errors import HistoryCommitFailed, HistorySyncFailed

pytestmark = pytest.mark.integration


def _write(history: GitPythonHistory, relative: str, text: str) -> Path:
    path = history.working_tree / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


def test_initialize_creates_repository_with_initial_commit(tmp_path: Path) -> None:
    history = GitPythonHistory.initialize(tmp_path / "work")

    assert not history.has_remote
    assert history.repo.head.commit.message == INITIAL_COMMIT_MESSAGE
    assert asyncio.run(history.current_revision()) == history.repo.head.commit.hexsha


def test_commit_records_only_given_paths(tmp_path: Path) -> None:
    history = GitPythonHistory.initialize(tmp_path / "work")
    kept = _write(history, "c-1/projects/p-a.yaml", "kind: Project\n")
    _write(history, "c-2/projects/p-b.yaml", "kind: Project\n")

    revision = asyncio.run(history.commit([kept], "shepherd: capture c-1"))

    assert revision == history.repo.head.commit.hexsha
    assert [item.path for item in history.repo.head.commit.tree.traverse()] == [
        "c-1",
        "c-1/projects",
        "c-1/projects/p-a.yaml",
    ]
    assert asyncio.run(history.commit([kept], "again")) is None


def test_commit_records_deletions(tmp_path: Path) -> None:
    history = GitPythonHistory.initialize(tmp_path / "work")
    path = _write(history, "c-1/projects/p-a.yaml", "kind: Project\n")
    asyncio.run(history.commit([path], "add"))
    path.unlink()

    asyncio.run(history.commit([path], "remove"))

    assert list(history.repo.head.commit.tree.traverse()) == []


def test_discard_restores_tracked_and_removes_new_files(tmp_path: Path) -> None:
    history = GitPythonHistory.initialize(tmp_path / "work")
    tracked = _write(history, "c-1/projects/p-a.yaml", "original\n")
    asyncio.run(history.commit([tracked], "add"))
    tracked.write_text("changed\n")
    created = _write(history, "c-1/projects/p-b.yaml", "new\n")

    asyncio.run(history.discard([tracked, created]))

    assert tracked.read_text() == "original\n"
    assert not created.exists()


def test_push_and_pull_through_a_shared_remote(tmp_path: Path) -> None:
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    writer = GitPythonHistory.initialize(tmp_path / "writer", remote_url=str(remote))
    asyncio.run(writer.push())
    reader = GitPythonHistory.open(tmp_path / "reader", remote_url=str(remote))

    path = _write(writer, "_global/roletemplates/rt-dev.yaml", "kind: RoleTemplate\n")
    asyncio.run(writer.commit([path], "shepherd: capture _global"))
    asyncio.run(writer.push())
    asyncio.run(reader.pull())

    assert (reader.working_tree / "_global/roletemplates/rt-dev.yaml").is_file()
    assert asyncio.run(reader.current_revision()) == asyncio.run(writer.current_revision())


def _diverged(tmp_path: Path) -> tuple[GitPythonHistory, GitPythonHistory, Path]:
    """A clone whose push was rejected and a peer that published in the meantime."""

    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    local = GitPythonHistory.initialize(tmp_path / "local", remote_url=str(remote))
    asyncio.run(local.push())
    peer = GitPythonHistory.open(tmp_path / "peer", remote_url=str(remote))

    shared = _write(peer, "_global/roletemplates/rt-dev.yaml", "displayName: Peer\n")
    asyncio.run(peer.commit([shared], "shepherd: capture _global"))
    asyncio.run(peer.push())

    mine = _write(local, "c-1/projects/p-a.yaml", "kind: Project\n")
    asyncio.run(local.commit([mine], "shepherd: capture c-1"))
    with pytest.raises(HistoryCommitFailed):
        asyncio.run(local.push())
    return local, peer, remote


def test_pull_merges_diverged_history_and_publishes_it(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    local, peer, remote = _diverged(tmp_path)

    with caplog.at_level(logging.WARNING, logger="shepherd.adapters.git"):
        asyncio.run(local.pull())

    head = local.repo.head.commit
    assert len(head.parents) == 2
    assert (local.working_tree / "c-1/projects/p-a.yaml").is_file()
    assert (local.working_tree / "_global/roletemplates/rt-dev.yaml").is_file()
    assert Repo(remote).commit("main") == head
    asyncio.run(peer.pull())
    assert asyncio.run(peer.current_revision()) == head.hexsha
    (record,) = [r for r in caplog.records if r.name == "shepherd.adapters.git"]
    assert record.args == ("main", "origin/main")


def test_conflicting_divergence_prefers_the_remote_side(tmp_path: Path) -> None:
    local, peer, _remote = _diverged(tmp_path)
    clash = _write(local, "_global/roletemplates/rt-dev.yaml", "displayName: Local\n")
    asyncio.run(local.commit([clash], "shepherd: capture _global"))

    asyncio.run(local.pull())

    assert clash.read_text() == "displayName: Peer\n"
    assert (local.working_tree / "c-1/projects/p-a.yaml").is_file()
    assert not local.repo.is_dirty()
    assert local.repo.is_ancestor(peer.repo.head.commit.hexsha, "HEAD")


def test_pull_with_unpublished_commits_pushes_them(tmp_path: Path) -> None:
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    history = GitPythonHistory.initialize(tmp_path / "work", remote_url=str(remote))
    asyncio.run(history.push())
    path = _write(history, "c-1/projects/p-a.yaml", "kind: Project\n")
    revision = asyncio.run(history.commit([path], "shepherd: capture c-1"))

    asyncio.run(history.pull())

    assert Repo(remote).commit("main").hexsha == revision


def test_fetch_timeout_is_a_sync_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    history = GitPythonHistory.initialize(tmp_path / "work", remote_url=str(remote), timeout=2.5)
    seen: dict[str, object] = {}

    def hanging_fetch(self: Remote, *args: object, **kwargs: object) -> None:
        seen.update(kwargs)
        raise GitCommandError(["git", "fetch"], -9, "Timeout: the command did not complete")

    monkeypatch.setattr(Remote, "fetch", hanging_fetch)

    with pytest.raises(HistorySyncFailed, match="Timeout"):
        asyncio.run(history.pull())
    assert seen["kill_after_timeout"] == 2.5


def test_push_timeout_is_a_commit_failure(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    history = GitPythonHistory.initialize(tmp_path / "work", remote_url=str(remote), timeout=2.5)
    seen: dict[str, object] = {}

    def hanging_push(self: Remote, *args: object, **kwargs: object) -> None:
        seen.update(kwargs)
        raise GitCommandError(["git", "push"], -9, "Timeout: the command did not complete")

    monkeypatch.setattr(Remote, "push", hanging_push)

    with pytest.raises(HistoryCommitFailed, match="Timeout"):
        asyncio.run(history.push())
    assert seen["kill_after_timeout"] == 2.5


def test_pull_from_empty_remote_is_a_no_op(tmp_path: Path) -> None:
    remote = tmp_path / "remote.git"
    Repo.init(remote, bare=True, initial_branch="main")
    history = GitPythonHistory.initialize(tmp_path / "work", remote_url=str(remote))

    asyncio.run(history.pull())

    assert history.has_remote


def test_open_without_repository_or_remote_fails(tmp_path: Path) -> None:
    with pytest.raises(HistorySyncFailed):
        GitPythonHistory.open(tmp_path / "missing")


def test_credential_environment() -> None:
    assert credential_environment(None) == {}
    ssh = credential_environment(GitCredential(ssh_key_path=Path("/keys/id_ed25519")))
    assert ssh["GIT_SSH_COMMAND"].startswith("ssh -i /keys/id_ed25519 ")
    token = credential_environment(GitCredential(token="s3cret"))
    assert token["GIT_CONFIG_VALUE_0"] == "Authorization: Bearer s3cret"
