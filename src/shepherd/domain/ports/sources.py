"""State source port: the capability both the live API and the repository expose."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from shepherd.domain.errors import MalformedResource
    from shepherd.domain.model import Resource, ResourceKind
    from shepherd.domain.reconciliation.contracts import PatchOperation


@dataclass(slots=True)
class SourceListing:
    """Resources of one kind plus the documents that could not be normalised."""

    resources: list[Resource] = field(default_factory=list["Resource"])
    malformed: list[MalformedResource] = field(default_factory=list["MalformedResource"])

    @property
    def malformed_ids(self) -> frozenset[str]:
        return frozenset(error.resource_id for error in self.malformed if error.resource_id)


@runtime_checkable
class StateSource(Protocol):
    """CRUD + list over the three tracked kinds.

    ``update`` receives the resource as it was observed during this cycle so
    implementations can guard against concurrent modification using its revision.
    """

    name: str

    async def list(self, cluster_name: str, kind: ResourceKind) -> SourceListing: ...

    async def get(self, cluster_name: str, kind: ResourceKind, id: str) -> Resource: ...  # noqa: A002

    async def create(self, resource: Resource) -> Resource: ...

    async def update(self, resource: Resource, patch: Sequence[PatchOperation]) -> Resource: ...

    async def delete(self, resource: Resource) -> None: ...


@runtime_checkable
class DocumentLocator(Protocol):
    """Maps a resource onto the repository file that records it."""

    def path_for(self, resource: Resource) -> Path: ...
