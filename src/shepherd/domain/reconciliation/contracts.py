"""Data passed between the reconciliation stages.

- patch operations and the change items built from them
- the ordered, cluster-wide change set
- per-item apply outcomes and the per-cycle summary
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from shepherd.domain.model import KINDS_IN_ORDER, ResourceKind

if TYPE_CHECKING:
    from collections.abc import Iterator

    from shepherd.domain.errors import ShepherdError
    from shepherd.domain.model import AttributeValue, Resource, ResourceKey


class PatchOp(StrEnum):
    ADD = "add"
    REMOVE = "remove"
    REPLACE = "replace"


@dataclass(frozen=True, slots=True)
class PatchOperation:
    """One RFC 6902 operation; ``path`` is a JSON pointer into the attribute tree."""

    op: PatchOp
    path: str
    value: AttributeValue = None

    def as_json(self) -> dict[str, object]:
        if self.op is PatchOp.REMOVE:
            return {"op": self.op.value, "path": self.path}
        return {"op": self.op.value, "path": self.path, "value": self.value}


class ChangeOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class CreateChange:
    resource: Resource
    operation: Literal[ChangeOperation.CREATE] = ChangeOperation.CREATE

    @property
    def kind(self) -> ResourceKind:
        return self.resource.kind

    @property
    def key(self) -> ResourceKey:
        return self.resource.key

    @property
    def label(self) -> str:
        return self.resource.label


@dataclass(frozen=True, slots=True)
class UpdateChange:
    """Patch turning ``observed`` into ``desired``.

    ``drift`` is set when the observed side no longer matches what this engine
    last wrote or confirmed.
    """

    desired: Resource
    observed: Resource
    patch: tuple[PatchOperation, ...]
    drift: bool = False
    operation: Literal[ChangeOperation.UPDATE] = ChangeOperation.UPDATE

    @property
    def kind(self) -> ResourceKind:
        return self.observed.kind

    @property
    def key(self) -> ResourceKey:
        return self.observed.key

    @property
    def label(self) -> str:
        return self.observed.label


@dataclass(frozen=True, slots=True)
class DeleteChange:
    resource: Resource
    operation: Literal[ChangeOperation.DELETE] = ChangeOperation.DELETE

    @property
    def kind(self) -> ResourceKind:
        return self.resource.kind

    @property
    def key(self) -> ResourceKey:
        return self.resource.key

    @property
    def label(self) -> str:
        return self.resource.label


type ChangeItem = CreateChange | UpdateChange | DeleteChange


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Ordered change items for one cluster; an identity appears at most once."""

    items: tuple[ChangeItem, ...] = ()

    def __post_init__(self) -> None:
        seen: set[ResourceKey] = set()
        for item in self.items:
            if not item.key[1]:
                continue
            if item.key in seen:
                raise ValueError(f"{item.label} appears more than once in the change set")
            seen.add(item.key)

    def __iter__(self) -> Iterator[ChangeItem]:
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __bool__(self) -> bool:
        return bool(self.items)

    def describe(self) -> list[str]:
        return [f"{item.operation} {item.label}" for item in self.items]


@dataclass(frozen=True, slots=True)
class Applied:
    change: ChangeItem
    resource: Resource | None = None
    attempts: int = 1


@dataclass(frozen=True, slots=True)
class Skipped:
    change: ChangeItem
    reason: str


@dataclass(frozen=True, slots=True)
class Failed:
    change: ChangeItem
    error: ShepherdError
    retriable: bool = False
    attempts: int = 1


type ApplyOutcome = Applied | Skipped | Failed


@dataclass(slots=True)
class KindCounts:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "skipped": self.skipped,
            "failed": self.failed,
        }


@dataclass(slots=True)
class CycleSummary:
    """Structured per-cycle report, logged once per cluster and tick."""

    cluster_name: str
    counts: dict[ResourceKind, KindCounts] = field(
        default_factory=lambda: {kind: KindCounts() for kind in KINDS_IN_ORDER}
    )
    drift: int = 0
    malformed: int = 0
    failed_kinds: tuple[ResourceKind, ...] = ()
    committed: str | None = None
    dry_run: bool = False
    clean: bool = True

    @classmethod
    def from_outcomes(
        cls, cluster_name: str, outcomes: list[ApplyOutcome], **kwargs: object
    ) -> CycleSummary:
        summary = cls(cluster_name, **kwargs)  # pyright: ignore[reportArgumentType]
        for outcome in outcomes:
            counts = summary.counts[outcome.change.kind]
            match outcome:
                case Applied(change=CreateChange()):
                    counts.created += 1
                case Applied(change=UpdateChange()):
                    counts.updated += 1
                case Applied(change=DeleteChange()):
                    counts.deleted += 1
                case Skipped():
                    counts.skipped += 1
                case Failed():
                    counts.failed += 1
        if any(isinstance(outcome, Failed) for outcome in outcomes):
            summary.clean = False
        return summary

    @property
    def totals(self) -> KindCounts:
        totals: Counter[str] = Counter()
        for counts in self.counts.values():
            totals.update(counts.as_dict())
        return KindCounts(**totals)

    def as_dict(self) -> dict[str, object]:
        return {
            "cluster": self.cluster_name,
            "clean": self.clean,
            "dry_run": self.dry_run,
            "drift": self.drift,
            "malformed": self.malformed,
            "failed_kinds": [kind.value for kind in self.failed_kinds],
            "committed": self.committed,
            "kinds": {kind.value: counts.as_dict() for kind, counts in self.counts.items()},
        }

    def format(self) -> str:
        parts = [
            f"cluster={self.cluster_name}",
            f"clean={str(self.clean).lower()}",
            f"drift={self.drift}",
            f"malformed={self.malformed}",
        ]
        if self.dry_run:
            parts.append("dry_run=true")
        if self.failed_kinds:
            parts.append("failed_kinds=" + ",".join(kind.value for kind in self.failed_kinds))
        for kind, counts in self.counts.items():
            values = " ".join(f"{name}={value}" for name, value in counts.as_dict().items())
            parts.append(f"{kind.value}: {values}")
        if self.committed:
            parts.append(f"commit={self.committed[:12]}")
        return " ".join(parts)


@dataclass(slots=True)
class CycleResult:
    cluster_name: str
    change_set: ChangeSet
    outcomes: list[ApplyOutcome]
    summary: CycleSummary

    @property
    def clean(self) -> bool:
        return self.summary.clean
