"""State source over the repository working tree.

Layout: ``<root>/<cluster>/<kind directory>/<id>.<ext>``, one document per
resource. Role templates are server-wide and live under
``<root>/_global/roletemplates/``. Desired documents may omit the id (resources
not created yet); their file name is then free-form.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.errors import MalformedResource, NotFound, RejectedChange
from shepherd.domain.model import (
    GLOBAL_SCOPE,
    FileFormat,
    in_scope,
    normalize,
    serialize,
    traits_for,
)
from shepherd.domain.ports import DocumentLocator, SourceListing, StateSource
from shepherd.domain.reconciliation import apply_patch

from .documents import FileDocumentStore

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from shepherd.domain.model import Resource, ResourceKind
    from shepherd.domain.reconciliation import PatchOperation

log = getLogger(__name__)

type _Slot = tuple[str, ResourceKind]


@dataclass(slots=True)
class RepoSource:
    root: Path
    file_format: FileFormat = FileFormat.YAML
    store: FileDocumentStore = field(default_factory=FileDocumentStore)
    name: str = "repository"
    _paths: dict[_Slot, dict[str, Path]] = field(
        default_factory=dict["_Slot", "dict[str, Path]"], init=False, repr=False
    )
    _anonymous: dict[_Slot, list[tuple[Resource, Path]]] = field(
        default_factory=dict["_Slot", "list[tuple[Resource, Path]]"], init=False, repr=False
    )

    def directory(self, cluster_name: str, kind: ResourceKind) -> Path:
        return self.root / cluster_name / traits_for(kind).directory

    def path_for(self, resource: Resource) -> Path:
        slot = (resource.cluster_name, resource.kind)
        if resource.id:
            known = self._paths.get(slot, {}).get(resource.id)
            if known is not None:
                return known
            return self.directory(*slot) / f"{resource.id}.{self.file_format.extension}"
        for candidate, path in self._anonymous.get(slot, []):
            if candidate == resource:
                return path
        raise MalformedResource(
            f"{resource.label} has no id and no known document", kind=resource.kind
        )

    async def list(self, cluster_name: str, kind: ResourceKind) -> SourceListing:
        slot = (cluster_name, kind)
        listing = SourceListing()
        if not in_scope(kind, cluster_name):
            if self._document_paths(cluster_name, kind):
                log.warning(
                    "Ignoring %s: %s documents are reconciled from %s",
                    self.directory(cluster_name, kind),
                    kind,
                    self.directory(GLOBAL_SCOPE, kind),
                )
            return listing
        paths: dict[str, Path] = {}
        anonymous: list[tuple[Resource, Path]] = []

        for path in self._document_paths(cluster_name, kind):
            try:
                resource = self._read(path, cluster_name, kind)
                if resource.id in paths:
                    raise MalformedResource(
                        f"Duplicate {kind} id {resource.id!r} (also in {paths[resource.id].name})",
                        path=path,
                        kind=kind,
                        resource_id=resource.id,
                    )
            except MalformedResource as exc:
                exc.path = path
                exc.resource_id = exc.resource_id or path.stem
                listing.malformed.append(exc)
                continue
            if resource.id:
                paths[resource.id] = path
            else:
                anonymous.append((resource, path))
            listing.resources.append(resource)

        self._paths[slot] = paths
        self._anonymous[slot] = anonymous
        return listing

    async def get(self, cluster_name: str, kind: ResourceKind, id: str) -> Resource:  # noqa: A002
        for extension in self.file_format.extensions:
            path = self.directory(cluster_name, kind) / f"{id}.{extension}"
            if path.is_file():
                return self._read(path, cluster_name, kind)
        raise NotFound(f"{kind} {id!r} has no document for cluster {cluster_name}")

    async def create(self, resource: Resource) -> Resource:
        if not resource.id:
            resource = resource.with_identity(
                id=f"{resource.kind.value.lower()}-{uuid.uuid4().hex[:8]}",
                revision=resource.revision,
            )
        path = self.path_for(resource)
        if path.exists():
            raise RejectedChange(f"{resource.label} already has a document at {path}")
        self.store.save_resource(path, serialize(resource))
        self._paths.setdefault((resource.cluster_name, resource.kind), {})[resource.id] = path
        log.debug("Wrote %s", path)
        return resource

    async def update(self, resource: Resource, patch: Sequence[PatchOperation]) -> Resource:
        path = self.path_for(resource)
        if not path.is_file():
            raise NotFound(f"{resource.label} has no document at {path}")
        current = self._read(path, resource.cluster_name, resource.kind)
        try:
            attributes = apply_patch(current.attributes, patch)
        except ValueError as exc:
            raise RejectedChange(f"Cannot patch {resource.label}: {exc}") from exc
        updated = current.with_attributes(attributes)
        self.store.save_resource(path, serialize(updated))
        log.debug("Rewrote %s", path)
        return updated

    async def delete(self, resource: Resource) -> None:
        path = self.path_for(resource)
        if not self.store.remove(path):
            raise NotFound(f"{resource.label} has no document at {path}")
        self._paths.get((resource.cluster_name, resource.kind), {}).pop(resource.id, None)
        log.debug("Removed %s", path)

    def _document_paths(self, cluster_name: str, kind: ResourceKind) -> list[Path]:
        directory = self.directory(cluster_name, kind)
        if not directory.is_dir():
            return []
        extensions = {f".{extension}" for extension in self.file_format.extensions}
        paths: list[Path] = []
        for path in sorted(directory.iterdir()):
            if path.name.startswith(".") or not path.is_file():
                continue
            if path.suffix.lower() not in extensions:
                log.debug("Ignoring %s: not a %s document", path, self.file_format)
                continue
            paths.append(path)
        return paths

    def _read(self, path: Path, cluster_name: str, kind: ResourceKind) -> Resource:
        resource = normalize(self.store.load_resource(path), path=path)
        if resource.kind is not kind:
            raise MalformedResource(
                f"{path.name} holds a {resource.kind}, expected {kind}",
                path=path,
                kind=resource.kind,
                resource_id=resource.id or None,
            )
        if resource.cluster_name != cluster_name:
            raise MalformedResource(
                f"{path.name} belongs to cluster {resource.cluster_name!r}, "
                f"but lives under {cluster_name!r}",
                path=path,
                kind=kind,
                resource_id=resource.id or None,
            )
        if resource.id and resource.id != path.stem:
            raise MalformedResource(
                f"{path.name} declares id {resource.id!r}; file name must match",
                path=path,
                kind=kind,
                resource_id=resource.id,
            )
        return resource


if TYPE_CHECKING:
    _source_check: StateSource = RepoSource(root=Path())
    _locator_check: DocumentLocator = RepoSource(root=Path())
