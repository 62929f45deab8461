"""Error taxonomy shared by the reconciliation engine and its adapters.

Adapters translate transport specific failures (HTTP status codes, git errors,
decode errors) into these types so the engine can decide on retries without
knowing which backend it talks to.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from pathlib import Path

    from shepherd.domain.model.enums import ResourceKind


class ShepherdError(RuntimeError):
    """Base class for all domain errors."""


class MalformedResource(ShepherdError):
    """A document could not be normalised into a resource."""

    def __init__(
        self,
        message: str,
        *,
        path: Path | None = None,
        kind: ResourceKind | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.kind = kind
        self.resource_id = resource_id


class AmbiguousMatch(ShepherdError):
    """Desired and observed resources of a kind cannot be paired uniquely."""

    def __init__(
        self, message: str, *, kind: ResourceKind, natural_key: tuple[object, ...]
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.natural_key = natural_key


class SourceError(ShepherdError):
    """A state source call failed."""

    retriable: ClassVar[bool] = False

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class Unavailable(SourceError):
    """Network failure, 5xx or throttling: worth another attempt."""

    retriable = True


class CallTimeout(Unavailable):
    """A single call exceeded its per-call timeout."""


class Unauthorized(SourceError):
    retriable = True


class NotFound(SourceError):
    pass


class ConflictingRevision(SourceError):
    """The resource changed since it was read during this cycle."""


class RejectedChange(SourceError):
    """The target refused the change (validation or another 4xx)."""


class ShutdownRequested(SourceError):
    """Retries were abandoned because the process is shutting down."""

    retriable = True


class HistoryError(ShepherdError):
    """Git plumbing failed."""


class HistorySyncFailed(HistoryError):
    """Pulling the repository failed."""


class HistoryCommitFailed(HistoryError):
    """Committing or pushing a cycle's results failed."""
