"""Per-kind behaviour as a lookup table of plain data and pure functions.

Dependency weight drives change ordering: lower weights are created/updated
first and deleted last. Bindings reference projects and role templates, never
the other way round.

Role templates exist once per Rancher server, not per cluster. They are
reconciled under the reserved :data:`GLOBAL_SCOPE` instead of under every
tracked cluster, so exactly one engine owns them.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from .enums import ResourceKind

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from .resource import Attributes, ParentRef, Resource

type NaturalKey = tuple[object, ...]

GLOBAL_SCOPE: Final[str] = "_global"

_COMMON_VOLATILE_PATHS: Final[tuple[str, ...]] = (
    "metadata.creationTimestamp",
    "metadata.deletionTimestamp",
    "metadata.finalizers",
    "metadata.generateName",
    "metadata.generation",
    "metadata.managedFields",
    "metadata.resourceVersion",
    "metadata.selfLink",
    "metadata.uid",
    "status",
)


@dataclass(frozen=True, slots=True)
class KindTraits:
    kind: ResourceKind
    weight: int
    directory: str
    natural_key: tuple[str, ...]
    volatile_paths: tuple[str, ...]
    parents: Callable[[str, Attributes], tuple[ParentRef, ...]]
    server_wide: bool = False

    def natural_key_of(
        self, resource: Resource, paths: tuple[str, ...] | None = None
    ) -> NaturalKey | None:
        """Values at the natural key paths, or ``None`` when every component is absent."""

        values = tuple(resource.lookup(path) for path in (paths or self.natural_key))
        if all(value is None for value in values):
            return None
        return tuple(_hashable(value) for value in values)


def _no_parents(_cluster: str, _attributes: Attributes) -> tuple[ParentRef, ...]:
    return ()


def _binding_parents(cluster: str, attributes: Attributes) -> tuple[ParentRef, ...]:
    from .resource import ParentRef  # noqa: PLC0415

    refs: list[ParentRef] = []
    project_name = attributes.get("projectName")
    if isinstance(project_name, str) and project_name:
        # "<cluster>:<project>" on the wire; bare ids are accepted too
        _, _, project_id = project_name.rpartition(":")
        refs.append(ParentRef(kind=ResourceKind.PROJECT, name=project_id or cluster))
    role_template = attributes.get("roleTemplateName")
    if isinstance(role_template, str) and role_template:
        refs.append(ParentRef(kind=ResourceKind.ROLE_TEMPLATE, name=role_template))
    return tuple(refs)


KIND_TRAITS: Final[Mapping[ResourceKind, KindTraits]] = {
    ResourceKind.PROJECT: KindTraits(
        kind=ResourceKind.PROJECT,
        weight=0,
        directory="projects",
        natural_key=("spec.displayName",),
        volatile_paths=(*_COMMON_VOLATILE_PATHS, "spec.resourceQuota.usedLimit"),
        parents=_no_parents,
    ),
    ResourceKind.ROLE_TEMPLATE: KindTraits(
        kind=ResourceKind.ROLE_TEMPLATE,
        weight=1,
        directory="roletemplates",
        natural_key=("displayName",),
        volatile_paths=_COMMON_VOLATILE_PATHS,
        parents=_no_parents,
        server_wide=True,
    ),
    ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING: KindTraits(
        kind=ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
        weight=2,
        directory="projectroletemplatebindings",
        natural_key=(
            "projectName",
            "roleTemplateName",
            "userName",
            "userPrincipalName",
            "groupName",
            "groupPrincipalName",
            "serviceAccount",
        ),
        volatile_paths=_COMMON_VOLATILE_PATHS,
        parents=_binding_parents,
    ),
}

KINDS_IN_ORDER: Final[tuple[ResourceKind, ...]] = tuple(
    sorted(KIND_TRAITS, key=lambda kind: KIND_TRAITS[kind].weight)
)
CLUSTER_KINDS: Final[tuple[ResourceKind, ...]] = tuple(
    kind for kind in KINDS_IN_ORDER if not KIND_TRAITS[kind].server_wide
)
GLOBAL_KINDS: Final[tuple[ResourceKind, ...]] = tuple(
    kind for kind in KINDS_IN_ORDER if KIND_TRAITS[kind].server_wide
)


def traits_for(kind: ResourceKind) -> KindTraits:
    return KIND_TRAITS[kind]


def in_scope(kind: ResourceKind, scope: str) -> bool:
    """Whether ``kind`` is reconciled under ``scope`` (a cluster name or the global scope)."""

    return KIND_TRAITS[kind].server_wide == (scope == GLOBAL_SCOPE)


def kind_for_directory(directory: str) -> ResourceKind | None:
    for traits in KIND_TRAITS.values():
        if traits.directory == directory:
            return traits.kind
    return None


def _hashable(value: object) -> object:
    if isinstance(value, dict):
        return tuple(sorted((str(k), _hashable(v)) for k, v in value.items()))  # pyright: ignore[reportUnknownVariableType,reportUnknownArgumentType]
    if isinstance(value, list):
        return tuple(_hashable(item) for item in value)  # pyright: ignore[reportUnknownVariableType]
    return value
