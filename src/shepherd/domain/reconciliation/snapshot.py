"""Last-known applied state per cluster.

The snapshot only tells "already converged" apart from "changed since the last
cycle". Losing it costs redundant drift reports, never correctness, so a missing
or unreadable snapshot is simply treated as empty.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from shepherd.domain.model import ResourceKind, attributes_digest

if TYPE_CHECKING:
    from shepherd.domain.model import Attributes, Resource, ResourceKey

SNAPSHOT_FORMAT_VERSION = 1


@dataclass(frozen=True, slots=True)
class SnapshotEntry:
    kind: ResourceKind
    id: str
    attributes: Attributes
    digest: str
    revision: str | None = None

    @classmethod
    def of(cls, resource: Resource) -> SnapshotEntry:
        return cls(
            kind=resource.kind,
            id=resource.id,
            attributes=copy.deepcopy(resource.attributes),
            digest=attributes_digest(resource.attributes),
            revision=resource.revision,
        )

    def matches(self, resource: Resource) -> bool:
        return self.digest == attributes_digest(resource.attributes)


@dataclass(slots=True)
class Snapshot:
    cluster_name: str
    entries: dict[ResourceKey, SnapshotEntry] = field(
        default_factory=dict["ResourceKey", "SnapshotEntry"]
    )

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    def get(self, key: ResourceKey) -> SnapshotEntry | None:
        return self.entries.get(key)

    def record(self, resource: Resource) -> None:
        if not resource.id:
            return
        self.entries[resource.key] = SnapshotEntry.of(resource)

    def forget(self, key: ResourceKey) -> None:
        self.entries.pop(key, None)

    def is_drifted(self, observed: Resource) -> bool:
        """True when ``observed`` differs from what this engine last wrote or confirmed."""

        entry = self.entries.get(observed.key)
        return entry is None or not entry.matches(observed)

    def copy(self) -> Snapshot:
        return Snapshot(cluster_name=self.cluster_name, entries=dict(self.entries))

    def to_document(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_FORMAT_VERSION,
            "clusterName": self.cluster_name,
            "entries": [
                {
                    "kind": entry.kind.value,
                    "id": entry.id,
                    "revision": entry.revision,
                    "digest": entry.digest,
                    "attributes": entry.attributes,
                }
                for _, entry in sorted(self.entries.items())
            ],
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Snapshot:
        if document.get("version") != SNAPSHOT_FORMAT_VERSION:
            raise ValueError(f"Unsupported snapshot version: {document.get('version')!r}")
        snapshot = cls(cluster_name=str(document["clusterName"]))
        for raw in document.get("entries", []):
            entry = SnapshotEntry(
                kind=ResourceKind(raw["kind"]),
                id=str(raw["id"]),
                attributes=raw.get("attributes") or {},
                digest=str(raw["digest"]),
                revision=raw.get("revision"),
            )
            snapshot.entries[(entry.kind, entry.id)] = entry
        return snapshot
