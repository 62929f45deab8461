"""Translate between Rancher management objects and domain resources.

An object's ``metadata.name`` becomes the resource id and ``resourceVersion`` its
revision. ``apiVersion``, ``kind`` and the namespace are structural and rebuilt
from the resource on the way back. Server managed fields never reach the
attribute tree, and neither do ``null`` values (TOML cannot represent them).
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from pydantic import ValidationError

from shepherd.domain.errors import MalformedResource
from shepherd.domain.model import Resource, ResourceKind, in_scope, traits_for
from shepherd.domain.reconciliation import PatchOp
from shepherd.domain.reconciliation.patch import pointer

from .schema import API_VERSION, ManagedObject

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from shepherd.domain.model import AttributeValue
    from shepherd.domain.reconciliation import PatchOperation

API_ROOT: Final[str] = f"/apis/{API_VERSION}"


@dataclass(frozen=True, slots=True)
class Endpoint:
    kind: ResourceKind
    plural: str
    generate_prefix: str
    namespaced: bool


ENDPOINTS: Final[dict[ResourceKind, Endpoint]] = {
    ResourceKind.PROJECT: Endpoint(ResourceKind.PROJECT, "projects", "p-", namespaced=True),
    ResourceKind.ROLE_TEMPLATE: Endpoint(
        ResourceKind.ROLE_TEMPLATE, "roletemplates", "rt-", namespaced=False
    ),
    ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING: Endpoint(
        ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING,
        "projectroletemplatebindings",
        "prtb-",
        namespaced=True,
    ),
}


def collection_path(kind: ResourceKind, namespace: str | None = None) -> str:
    endpoint = ENDPOINTS[kind]
    if endpoint.namespaced and namespace:
        return f"{API_ROOT}/namespaces/{namespace}/{endpoint.plural}"
    return f"{API_ROOT}/{endpoint.plural}"


def object_path(kind: ResourceKind, name: str, namespace: str | None = None) -> str:
    return f"{collection_path(kind, namespace)}/{name}"


def namespace_of(resource: Resource) -> str | None:
    """Namespace the object lives in: the cluster for projects, the project for bindings."""

    match resource.kind:
        case ResourceKind.PROJECT:
            return resource.cluster_name
        case ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING:
            project_name = resource.attributes.get("projectName")
            if isinstance(project_name, str) and project_name:
                return project_name.rpartition(":")[2]
            return None
        case _:
            return None


def belongs_to(cluster_name: str, kind: ResourceKind, payload: Mapping[str, Any]) -> bool:
    """Whether a cluster-wide listing entry is tracked under ``cluster_name``.

    Server-wide kinds belong to the global scope only.
    """

    if not in_scope(kind, cluster_name):
        return False
    if kind is ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING:
        project_name = payload.get("projectName")
        return isinstance(project_name, str) and project_name.startswith(f"{cluster_name}:")
    return True


def to_resource(kind: ResourceKind, cluster_name: str, payload: Mapping[str, Any]) -> Resource:
    try:
        managed = ManagedObject.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResource(f"Invalid {kind} object: {exc}", kind=kind) from exc
    if not managed.name:
        raise MalformedResource(f"{kind} object without metadata.name", kind=kind)

    body = _without_nulls(managed.body)
    for key in ("apiVersion", "kind"):
        body.pop(key, None)
    metadata = body.get("metadata")
    if isinstance(metadata, dict):
        for key in ("name", "namespace"):
            metadata.pop(key, None)

    traits = traits_for(kind)
    for path in traits.volatile_paths:
        _drop_path(body, path.split("."))
    if not body.get("metadata"):
        body.pop("metadata", None)

    return Resource(
        kind=kind,
        cluster_name=cluster_name,
        id=managed.name,
        parent_refs=traits.parents(cluster_name, body),
        attributes=body,
        revision=managed.metadata.resource_version,
    )


def to_object(resource: Resource) -> dict[str, Any]:
    """Full object body for a create call."""

    body: dict[str, Any] = copy.deepcopy(resource.attributes)
    metadata: dict[str, Any] = dict(body.pop("metadata", None) or {})
    if resource.id:
        metadata["name"] = resource.id
    else:
        metadata["generateName"] = ENDPOINTS[resource.kind].generate_prefix
    namespace = namespace_of(resource)
    if ENDPOINTS[resource.kind].namespaced and namespace:
        metadata["namespace"] = namespace
    return {"apiVersion": API_VERSION, "kind": resource.kind.value, "metadata": metadata, **body}


def to_json_patch(
    observed: Resource, patch: Iterable[PatchOperation]
) -> list[dict[str, object]]:
    """JSON patch against the live object, guarded by the observed revision.

    Attribute paths map one to one onto object paths, except that ``/metadata``
    as a whole is never replaced (it carries the object's identity): such
    operations are expanded into per-key operations.
    """

    operations: list[dict[str, object]] = []
    if observed.revision is not None:
        operations.append(
            {"op": "test", "path": "/metadata/resourceVersion", "value": observed.revision}
        )
    observed_metadata = observed.attributes.get("metadata")
    current_keys = sorted(observed_metadata) if isinstance(observed_metadata, dict) else []

    for operation in patch:
        if operation.path != "/metadata":
            operations.append(operation.as_json())
            continue
        wanted: AttributeValue = operation.value if operation.op is not PatchOp.REMOVE else {}
        wanted_map = wanted if isinstance(wanted, dict) else {}
        operations.extend(
            {"op": "remove", "path": pointer(("metadata", key))}
            for key in current_keys
            if key not in wanted_map
        )
        operations.extend(
            {"op": "add", "path": pointer(("metadata", key)), "value": wanted_map[key]}
            for key in sorted(wanted_map)
        )
    return operations


def _drop_path(tree: dict[str, Any], parts: list[str]) -> None:
    head, *rest = parts
    if not rest:
        tree.pop(head, None)
        return
    child = tree.get(head)
    if isinstance(child, dict):
        _drop_path(child, rest)  # pyright: ignore[reportUnknownArgumentType]


def _without_nulls(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: _without_nulls(item) for key, item in value.items() if item is not None}  # pyright: ignore[reportUnknownVariableType]
    if isinstance(value, list):
        return [_without_nulls(item) for item in value if item is not None]  # pyright: ignore[reportUnknownVariableType]
    return value

