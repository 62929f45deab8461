"""Diff planning: pair desired and observed resources and derive change items.

Pairing happens by id first. Desired resources without an id are then matched
against the still unpaired observed resources by the kind's natural key. The
planner never relies on input order, so identical inputs give identical plans.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from shepherd.domain.errors import AmbiguousMatch
from shepherd.domain.model import attributes_digest, traits_for

from .contracts import ChangeSet, CreateChange, DeleteChange, Skipped, UpdateChange
from .patch import diff

if TYPE_CHECKING:
    from collections.abc import Callable, Collection, Iterable, Mapping

    from shepherd.domain.model import NaturalKey, Resource, ResourceKind

    from .contracts import ChangeItem
    from .snapshot import Snapshot

log = getLogger(__name__)

PRUNE_DISABLED = "prune disabled"
PROTECTED_MALFORMED = "desired document is malformed"


@dataclass(slots=True)
class KindPlan:
    """Planning result for one kind in one cluster."""

    kind: ResourceKind
    creates: list[CreateChange] = field(default_factory=list["CreateChange"])
    updates: list[UpdateChange] = field(default_factory=list["UpdateChange"])
    deletes: list[DeleteChange] = field(default_factory=list["DeleteChange"])
    skipped: list[Skipped] = field(default_factory=list["Skipped"])
    converged: list[Resource] = field(default_factory=list["Resource"])

    @property
    def is_empty(self) -> bool:
        return not (self.creates or self.updates or self.deletes)


@dataclass(frozen=True, slots=True)
class DiffPlanner:
    natural_keys: Mapping[ResourceKind, tuple[str, ...]] = field(
        default_factory=dict["ResourceKind", "tuple[str, ...]"]
    )

    def natural_key(self, resource: Resource) -> NaturalKey | None:
        traits = traits_for(resource.kind)
        return traits.natural_key_of(resource, self.natural_keys.get(resource.kind))

    def plan_kind(
        self,
        kind: ResourceKind,
        desired: Iterable[Resource],
        observed: Iterable[Resource],
        *,
        prune: bool = True,
        protected_ids: Collection[str] = frozenset(),
        snapshot: Snapshot | None = None,
    ) -> KindPlan:
        """Plan the changes that turn ``observed`` into ``desired`` for one kind.

        Raises ``AmbiguousMatch`` when a pairing cannot be decided.
        """

        plan = KindPlan(kind=kind)
        by_id, anonymous = self._index_observed(kind, observed)

        pairs: list[tuple[Resource, Resource]] = []
        pending: list[Resource] = []
        for resource in sorted(desired, key=self._order_key):
            if not resource.id:
                pending.append(resource)
                continue
            match = by_id.pop(resource.id, None)
            if match is None:
                plan.creates.append(CreateChange(resource))
            else:
                pairs.append((resource, match))

        remaining = sorted([*by_id.values(), *anonymous], key=self._order_key)
        self._check_unique_natural_keys(kind, pending)
        for resource in pending:
            match = self._match_by_natural_key(kind, resource, remaining)
            if match is None:
                plan.creates.append(CreateChange(resource))
            else:
                remaining = [candidate for candidate in remaining if candidate is not match]
                pairs.append((resource, match))

        for wanted, current in sorted(pairs, key=lambda pair: self._order_key(pair[1])):
            patch = diff(current.attributes, wanted.attributes)
            if not patch:
                plan.converged.append(current)
                continue
            drift = snapshot.is_drifted(current) if snapshot is not None else True
            plan.updates.append(UpdateChange(wanted, current, patch, drift=drift))

        for resource in remaining:
            change = DeleteChange(resource)
            if resource.id and resource.id in protected_ids:
                plan.skipped.append(Skipped(change, PROTECTED_MALFORMED))
            elif not prune:
                plan.skipped.append(Skipped(change, PRUNE_DISABLED))
            else:
                plan.deletes.append(change)

        log.debug(
            "Planned %s: %d create, %d update, %d delete, %d skipped, %d converged",
            kind,
            len(plan.creates),
            len(plan.updates),
            len(plan.deletes),
            len(plan.skipped),
            len(plan.converged),
        )
        return plan

    def _order_key(self, resource: Resource) -> tuple[str, str, str]:
        return (
            resource.id,
            repr(self.natural_key(resource)),
            attributes_digest(resource.attributes),
        )

    def _index_observed(
        self, kind: ResourceKind, observed: Iterable[Resource]
    ) -> tuple[dict[str, Resource], list[Resource]]:
        """Split observed resources into those with an id and those without one."""

        by_id: dict[str, Resource] = {}
        anonymous: list[Resource] = []
        for resource in observed:
            if not resource.id:
                anonymous.append(resource)
                continue
            if resource.id in by_id:
                raise AmbiguousMatch(
                    f"Observed {kind} id {resource.id!r} is listed more than once",
                    kind=kind,
                    natural_key=(resource.id,),
                )
            by_id[resource.id] = resource
        return by_id, anonymous

    def _check_unique_natural_keys(self, kind: ResourceKind, pending: list[Resource]) -> None:
        seen: set[NaturalKey] = set()
        for resource in pending:
            key = self.natural_key(resource)
            if key is None:
                continue
            if key in seen:
                raise AmbiguousMatch(
                    f"Several desired {kind} resources share the natural key {key!r}",
                    kind=kind,
                    natural_key=key,
                )
            seen.add(key)

    def _match_by_natural_key(
        self, kind: ResourceKind, resource: Resource, remaining: list[Resource]
    ) -> Resource | None:
        key = self.natural_key(resource)
        if key is None:
            return None
        candidates = [
            candidate for candidate in remaining if self.natural_key(candidate) == key
        ]
        if not candidates:
            return None
        if len(candidates) == 1:
            return candidates[0]

        rank = _revision_rank(candidates)
        ranked = sorted(candidates, key=rank, reverse=True)
        if rank(ranked[0]) == rank(ranked[1]):
            raise AmbiguousMatch(
                f"{len(candidates)} observed {kind} resources match natural key {key!r} "
                f"and none has a more recent revision",
                kind=kind,
                natural_key=key,
            )
        log.info(
            "Natural key %r matched %d %s resources; picked %s with the most recent revision",
            key,
            len(candidates),
            kind,
            ranked[0].id,
        )
        return ranked[0]


def _revision_rank(
    candidates: list[Resource],
) -> Callable[[Resource], tuple[int, int | str]]:
    """Sort key for "most recently seen" revisions.

    Revisions are opaque, but live revisions are monotonically increasing integers
    in practice; compare numerically when every candidate has one.
    """

    numeric = all(c.revision is not None and c.revision.isdigit() for c in candidates)

    def rank(resource: Resource) -> tuple[int, int | str]:
        if resource.revision is None:
            return (0, 0)
        if numeric:
            return (1, int(resource.revision))
        return (1, resource.revision)

    return rank


def build_change_set(plans: Iterable[KindPlan]) -> ChangeSet:
    """Interleave per-kind plans into one cluster-wide change set.

    Creates and updates run parents first; deletes run children first.
    """

    ordered = sorted(plans, key=lambda plan: traits_for(plan.kind).weight)
    items: list[ChangeItem] = []
    for plan in ordered:
        items.extend(plan.creates)
        items.extend(plan.updates)
    for plan in reversed(ordered):
        items.extend(plan.deletes)
    return ChangeSet(tuple(items))
