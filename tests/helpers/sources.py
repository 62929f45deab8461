"""In-memory fakes for the state source, git history and snapshot ports."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from shepherd.domain.errors import (
    ConflictingRevision,
    HistoryCommitFailed,
    HistorySyncFailed,
    MalformedResource,
    NotFound,
)
from shepherd.domain.model import Resource, ResourceKind, traits_for
from shepherd.domain.ports import SourceListing
from shepherd.domain.reconciliation import Snapshot, apply_patch

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from shepherd.domain.model import Attributes
    from shepherd.domain.reconciliation import PatchOperation

CLUSTER = "c-1"


def project(
    id: str = "",  # noqa: A002
    *,
    name: str = "p1",
    cluster: str = CLUSTER,
    revision: str | None = None,
    **spec: object,
) -> Resource:
    return Resource(
        kind=ResourceKind.PROJECT,
        cluster_name=cluster,
        id=id,
        attributes={"spec": {"displayName": name, **spec}},
        revision=revision,
    )


def role_template(
    id: str = "",  # noqa: A002
    *,
    name: str = "rt",
    cluster: str = CLUSTER,
    revision: str | None = None,
    rules: list[object] | None = None,
) -> Resource:
    attributes: Attributes = {"displayName": name}
    if rules is not None:
        attributes["rules"] = rules  # pyright: ignore[reportArgumentType]
    return Resource(
        kind=ResourceKind.ROLE_TEMPLATE,
        cluster_name=cluster,
        id=id,
        attributes=attributes,
        revision=revision,
    )


def binding(
    id: str = "",  # noqa: A002
    *,
    project_id: str,
    role: str = "project-member",
    user: str = "u-1",
    cluster: str = CLUSTER,
    revision: str | None = None,
) -> Resource:
    attributes: Attributes = {
        "projectName": f"{cluster}:{project_id}",
        "roleTemplateName": role,
        "userName": user,
    }
    return Resource(
        kind=ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
        cluster_name=cluster,
        id=id,
        parent_refs=traits_for(ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING).parents(
            cluster, attributes
        ),
        attributes=attributes,
        revision=revision,
    )


class InMemorySource:
    """State source keeping resources in a dict; failures are queued per operation and name."""

    def __init__(self, name: str = "fake", resources: Iterable[Resource] = ()) -> None:
        self.name = name
        self.resources: dict[tuple[str, ResourceKind, str], Resource] = {}
        self.malformed: dict[tuple[str, ResourceKind], list[MalformedResource]] = {}
        self.failures: dict[tuple[str, str], list[Exception]] = {}
        self.calls: list[tuple[str, str]] = []
        self._next_id = 0
        for resource in resources:
            self.put(resource)

    def put(self, resource: Resource) -> None:
        self.resources[(resource.cluster_name, resource.kind, resource.id)] = resource

    def fail(self, operation: str, name: str, *errors: Exception) -> None:
        self.failures.setdefault((operation, name), []).extend(errors)

    def of_kind(self, kind: ResourceKind, cluster: str = CLUSTER) -> list[Resource]:
        return sorted(
            (r for (c, k, _), r in self.resources.items() if c == cluster and k is kind),
            key=lambda resource: resource.id,
        )

    def operations(self, operation: str) -> list[str]:
        return [name for op, name in self.calls if op == operation]

    async def list(self, cluster_name: str, kind: ResourceKind) -> SourceListing:
        self._record("list", kind.value)
        return SourceListing(
            resources=self.of_kind(kind, cluster_name),
            malformed=list(self.malformed.get((cluster_name, kind), [])),
        )

    async def get(self, cluster_name: str, kind: ResourceKind, id: str) -> Resource:  # noqa: A002
        self._record("get", id)
        try:
            return self.resources[(cluster_name, kind, id)]
        except KeyError:
            raise NotFound(f"{kind} {id} not found", status_code=404) from None

    async def create(self, resource: Resource) -> Resource:
        self._record("create", _name_of(resource))
        if not resource.id:
            self._next_id += 1
            resource = resource.with_identity(
                id=f"{resource.kind.value.lower()}-{self._next_id}", revision="1"
            )
        else:
            resource = resource.with_identity(id=resource.id, revision="1")
        self.put(resource)
        return resource

    async def update(self, resource: Resource, patch: Sequence[PatchOperation]) -> Resource:
        self._record("update", resource.id)
        current = self.resources.get((resource.cluster_name, resource.kind, resource.id))
        if current is None:
            raise NotFound(f"{resource.label} not found", status_code=404)
        if resource.revision is not None and current.revision != resource.revision:
            raise ConflictingRevision(f"{resource.label} changed", status_code=409)
        revision = str(int(current.revision or "0") + 1)
        updated = current.with_attributes(apply_patch(current.attributes, patch))
        updated = updated.with_identity(id=current.id, revision=revision)
        self.put(updated)
        return updated

    async def delete(self, resource: Resource) -> None:
        self._record("delete", resource.id)
        if self.resources.pop((resource.cluster_name, resource.kind, resource.id), None) is None:
            raise NotFound(f"{resource.label} not found", status_code=404)

    def _record(self, operation: str, name: str) -> None:
        self.calls.append((operation, name))
        queued = self.failures.get((operation, name))
        if queued:
            raise queued.pop(0)


def _name_of(resource: Resource) -> str:
    if resource.id:
        return resource.id
    key = traits_for(resource.kind).natural_key_of(resource)
    return str(key[0]) if key else ""


@dataclass(slots=True)
class FakeHistory:
    has_remote: bool = False
    fail_pull: bool = False
    fail_commit: bool = False
    fail_push: bool = False
    pulls: int = 0
    pushes: int = 0
    commits: list[tuple[tuple[Path, ...], str]] = field(
        default_factory=list["tuple[tuple[Path, ...], str]"]
    )
    discarded: list[Path] = field(default_factory=list["Path"])

    async def pull(self) -> None:
        self.pulls += 1
        if self.fail_pull:
            raise HistorySyncFailed("remote unreachable")

    async def commit(self, paths: Sequence[Path], message: str) -> str | None:
        if self.fail_commit:
            raise HistoryCommitFailed("index.lock exists")
        self.commits.append((tuple(paths), message))
        return f"{len(self.commits):040x}"

    async def push(self) -> None:
        if self.fail_push:
            raise HistoryCommitFailed("rejected")
        self.pushes += 1

    async def current_revision(self) -> str | None:
        return f"{len(self.commits):040x}" if self.commits else None

    async def discard(self, paths: Sequence[Path]) -> None:
        self.discarded.extend(paths)


@dataclass(slots=True)
class MemorySnapshotStore:
    saved: dict[str, Snapshot] = field(default_factory=dict["str", "Snapshot"])
    saves: int = 0

    def load(self, cluster_name: str) -> Snapshot:
        stored = self.saved.get(cluster_name)
        return stored.copy() if stored is not None else Snapshot(cluster_name=cluster_name)

    def save(self, snapshot: Snapshot) -> None:
        self.saves += 1
        self.saved[snapshot.cluster_name] = snapshot.copy()


@dataclass(frozen=True, slots=True)
class FakeLocator:
    root: Path = Path("/repo")

    def path_for(self, resource: Resource) -> Path:
        directory = traits_for(resource.kind).directory
        return self.root / resource.cluster_name / directory / f"{resource.id}.yaml"


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
