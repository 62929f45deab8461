"""Git history collaborator backed by GitPython.

Blocking git calls run in a worker thread. All cluster tasks share one working
tree, so operations are serialised with a lock; the file paths themselves are
partitioned by cluster.

Network-bound commands (fetch, push, merge) are killed after ``timeout``
seconds, so a hung remote cannot hold the lock forever.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING, Final

from git import Actor, GitCommandError, InvalidGitRepositoryError, NoSuchPathError, Repo

from shepherd.domain.errors import HistoryCommitFailed, HistorySyncFailed
from shepherd.domain.ports import GitHistory

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence

    from git import Remote

    from shepherd.config import GitCredential

log = getLogger(__name__)

REMOTE_NAME: Final[str] = "origin"
AUTHOR_NAME: Final[str] = "shepherd"
AUTHOR_EMAIL: Final[str] = "shepherd@localhost"
AUTHOR: Final[Actor] = Actor(AUTHOR_NAME, AUTHOR_EMAIL)
INITIAL_COMMIT_MESSAGE: Final[str] = "shepherd: initialise repository"


def credential_environment(credential: GitCredential | None) -> dict[str, str]:
    """Environment for git subprocesses; empty means ambient config / ssh-agent."""

    if credential is None:
        return {}
    if credential.ssh_key_path is not None:
        return {
            "GIT_SSH_COMMAND": (
                f"ssh -i {credential.ssh_key_path} -o IdentitiesOnly=yes "
                "-o StrictHostKeyChecking=accept-new"
            )
        }
    if credential.token is not None:
        return {
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "http.extraHeader",
            "GIT_CONFIG_VALUE_0": f"Authorization: Bearer {credential.token}",
        }
    return {}


@dataclass(slots=True)
class GitPythonHistory:
    repo: Repo
    branch: str = "main"
    environment: Mapping[str, str] = field(default_factory=dict["str", "str"])
    timeout: float | None = None
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    @classmethod
    def open(
        cls,
        path: Path,
        *,
        remote_url: str | None = None,
        branch: str = "main",
        credential: GitCredential | None = None,
        timeout: float | None = None,
    ) -> GitPythonHistory:
        """Open the repository at ``path``, cloning ``remote_url`` when it does not exist yet."""

        environment = credential_environment(credential)
        try:
            return cls(Repo(path), branch=branch, environment=environment, timeout=timeout)
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            if remote_url is None:
                raise HistorySyncFailed(
                    f"{path} is not a git repository; run bootstrap or configure a remote"
                ) from exc
        log.info("Cloning %s into %s", remote_url, path)
        try:
            repo = Repo.clone_from(remote_url, path, branch=branch, env=environment)
        except GitCommandError as exc:
            raise HistorySyncFailed(f"Cloning {remote_url} failed: {_describe(exc)}") from exc
        return cls(repo, branch=branch, environment=environment, timeout=timeout)

    @classmethod
    def initialize(
        cls,
        path: Path,
        *,
        remote_url: str | None = None,
        branch: str = "main",
        credential: GitCredential | None = None,
        timeout: float | None = None,
    ) -> GitPythonHistory:
        """Open or create the repository with ``branch`` and an initial commit."""

        environment = credential_environment(credential)
        try:
            repo = Repo(path)
        except (InvalidGitRepositoryError, NoSuchPathError):
            repo = _clone_or_init(path, remote_url=remote_url, branch=branch, env=environment)
        if remote_url is not None and REMOTE_NAME not in [remote.name for remote in repo.remotes]:
            repo.create_remote(REMOTE_NAME, remote_url)
        if not repo.head.is_valid():
            # an unborn HEAD may still name the default branch of the local git config
            repo.git.symbolic_ref("HEAD", f"refs/heads/{branch}")
            repo.index.commit(INITIAL_COMMIT_MESSAGE, author=AUTHOR, committer=AUTHOR)
        return cls(repo, branch=branch, environment=environment, timeout=timeout)

    @property
    def working_tree(self) -> Path:
        return Path(self.repo.working_tree_dir or self.repo.git_dir)

    @property
    def git_dir(self) -> Path:
        return Path(self.repo.git_dir)

    @property
    def has_remote(self) -> bool:
        return bool(self.repo.remotes)

    async def pull(self) -> None:
        await self._run(self._pull)

    async def commit(self, paths: Sequence[Path], message: str) -> str | None:
        return await self._run(lambda: self._commit(paths, message))

    async def push(self) -> None:
        await self._run(self._push)

    async def current_revision(self) -> str | None:
        return await self._run(self._current_revision)

    async def discard(self, paths: Sequence[Path]) -> None:
        await self._run(lambda: self._discard(paths))

    async def _run[T](self, func: Callable[[], T]) -> T:
        async with self._lock:
            return await asyncio.to_thread(func)

    def _pull(self) -> None:
        if not self.has_remote:
            return
        remote = self.repo.remote(REMOTE_NAME)
        tracking = f"{REMOTE_NAME}/{self.branch}"
        try:
            with self.repo.git.custom_environment(**self.environment):
                remote.fetch(kill_after_timeout=self.timeout)
                if tracking not in [ref.name for ref in remote.refs]:
                    log.debug("%s does not exist yet; nothing to pull", tracking)
                    return
                if self.repo.is_ancestor("HEAD", tracking):
                    self.repo.git.merge("--ff-only", tracking, kill_after_timeout=self.timeout)
                    return
                if not self.repo.is_ancestor(tracking, "HEAD"):
                    self._merge_diverged(tracking)
                self._push_pending(remote, tracking)
        except (GitCommandError, ValueError) as exc:
            raise HistorySyncFailed(f"Pulling {self.branch} failed: {_describe(exc)}") from exc

    def _merge_diverged(self, tracking: str) -> None:
        """Merge ``tracking`` into a diverged branch; the remote side wins conflicting hunks.

        When even that merge fails the branch is reset to ``tracking`` and the
        unpublished local commits are dropped.
        """

        log.warning(
            "%s diverged from %s; merging with remote changes preferred", self.branch, tracking
        )
        try:
            with self.repo.git.custom_environment(**_identity_environment()):
                self.repo.git.merge(
                    "--no-edit",
                    "-X",
                    "theirs",
                    "-m",
                    f"shepherd: merge {tracking}",
                    tracking,
                    kill_after_timeout=self.timeout,
                )
        except GitCommandError as exc:
            log.warning("Merging %s failed (%s); resetting to it", tracking, _describe(exc))
            if (self.git_dir / "MERGE_HEAD").exists():
                self.repo.git.merge("--abort")
            self.repo.git.reset("--hard", tracking)

    def _push_pending(self, remote: Remote, tracking: str) -> None:
        if self.repo.head.commit == self.repo.commit(tracking):
            return
        try:
            remote.push(
                refspec=f"{self.branch}:{self.branch}", kill_after_timeout=self.timeout
            ).raise_if_error()
        except GitCommandError as exc:
            log.warning("Local commits are still unpublished: %s", _describe(exc))
        else:
            log.info("Published local commits to %s", tracking)

    def _commit(self, paths: Sequence[Path], message: str) -> str | None:
        relative = self._relative(paths)
        if not relative:
            return None
        try:
            self.repo.git.add("--all", "--", *relative)
            if not self.repo.git.diff("--cached", "--name-only", "--", *relative):
                log.debug("Nothing to commit")
                return None
            commit = self.repo.index.commit(message, author=AUTHOR, committer=AUTHOR)
        except (GitCommandError, OSError, ValueError) as exc:
            raise HistoryCommitFailed(f"Commit failed: {_describe(exc)}") from exc
        log.info("Committed %s: %s", commit.hexsha[:12], message.splitlines()[0])
        return commit.hexsha

    def _push(self) -> None:
        if not self.has_remote:
            return
        remote = self.repo.remote(REMOTE_NAME)
        try:
            with self.repo.git.custom_environment(**self.environment):
                remote.push(
                    refspec=f"{self.branch}:{self.branch}", kill_after_timeout=self.timeout
                ).raise_if_error()
        except (GitCommandError, ValueError) as exc:
            raise HistoryCommitFailed(f"Push to {REMOTE_NAME} failed: {_describe(exc)}") from exc

    def _current_revision(self) -> str | None:
        if not self.repo.head.is_valid():
            return None
        return self.repo.head.commit.hexsha

    def _discard(self, paths: Sequence[Path]) -> None:
        relative = self._relative(paths)
        if not relative:
            return
        try:
            self.repo.git.reset("-q", "HEAD", "--", *relative)
        except GitCommandError as exc:
            log.debug("Unstaging failed: %s", _describe(exc))
        for name in relative:
            if self.repo.git.ls_tree("HEAD", "--name-only", "--", name):
                self.repo.git.checkout("HEAD", "--", name)
            else:
                (self.working_tree / name).unlink(missing_ok=True)
        log.info("Restored %d paths after a failed commit", len(relative))

    def _relative(self, paths: Sequence[Path]) -> list[str]:
        root = self.working_tree.resolve()
        return sorted({Path(path).resolve().relative_to(root).as_posix() for path in paths})


def _describe(exc: Exception) -> str:
    if isinstance(exc, GitCommandError):
        return (exc.stderr or str(exc)).strip()
    return str(exc)


def _identity_environment() -> dict[str, str]:
    return {
        "GIT_AUTHOR_NAME": AUTHOR_NAME,
        "GIT_AUTHOR_EMAIL": AUTHOR_EMAIL,
        "GIT_COMMITTER_NAME": AUTHOR_NAME,
        "GIT_COMMITTER_EMAIL": AUTHOR_EMAIL,
    }


def _clone_or_init(
    path: Path, *, remote_url: str | None, branch: str, env: Mapping[str, str]
) -> Repo:
    if remote_url is not None:
        try:
            return Repo.clone_from(remote_url, path, branch=branch, env=dict(env))
        except GitCommandError as exc:
            # an empty remote has no branch to clone yet
            log.info("Cloning %s failed (%s); initialising instead", remote_url, _describe(exc))
    log.info("Initialising git repository at %s on branch %s", path, branch)
    path.mkdir(parents=True, exist_ok=True)
    return Repo.init(path, initial_branch=branch)


if TYPE_CHECKING:
    _history_check: GitHistory = GitPythonHistory(repo=Repo())
