"""Port for the git history collaborator."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path


@runtime_checkable
class GitHistory(Protocol):
    """Version control operations the reconciliation cycle relies on.

    Implementations raise ``HistorySyncFailed`` from ``pull`` and
    ``HistoryCommitFailed`` from ``commit``/``push``.
    """

    @property
    def has_remote(self) -> bool: ...

    async def pull(self) -> None: ...

    async def commit(self, paths: Sequence[Path], message: str) -> str | None:
        """Commit ``paths`` (including removals); ``None`` when nothing changed."""
        ...

    async def push(self) -> None: ...

    async def current_revision(self) -> str | None: ...

    async def discard(self, paths: Sequence[Path]) -> None:
        """Restore ``paths`` to the last committed state."""
        ...
