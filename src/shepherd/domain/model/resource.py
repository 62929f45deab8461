"""Canonical representation of a tracked resource.

A resource is identity (kind, cluster, id), weak references to the resources it
depends on, an opaque revision token and a format-agnostic attribute tree. The
tree only holds JSON-compatible values so the same resource round-trips through
JSON, YAML and TOML documents.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shepherd.domain.errors import MalformedResource

from .enums import ResourceKind

if TYPE_CHECKING:
    from pathlib import Path

type AttributeValue = (
    None | bool | int | float | str | list[AttributeValue] | dict[str, AttributeValue]
)
type Attributes = dict[str, AttributeValue]
type Document = dict[str, Any]
type ResourceKey = tuple[ResourceKind, str]

RESERVED_ATTRIBUTES = frozenset({"id", "revision"})


@dataclass(frozen=True, slots=True, kw_only=True)
class ParentRef:
    """Weak reference to a resource this one depends on (by id or natural name)."""

    kind: ResourceKind
    name: str


@dataclass(frozen=True, slots=True, kw_only=True)
class Resource:
    kind: ResourceKind
    cluster_name: str
    id: str = ""
    parent_refs: tuple[ParentRef, ...] = ()
    attributes: Attributes = field(default_factory=dict["str", "AttributeValue"])
    revision: str | None = None

    def __post_init__(self) -> None:
        reserved = RESERVED_ATTRIBUTES.intersection(self.attributes)
        if reserved:
            raise MalformedResource(
                f"Attributes of {self.kind} {self.id!r} must not contain {sorted(reserved)}",
                kind=self.kind,
                resource_id=self.id or None,
            )

    @property
    def key(self) -> ResourceKey:
        return (self.kind, self.id)

    @property
    def label(self) -> str:
        return f"{self.kind}/{self.id or '<new>'}"

    def with_identity(self, *, id: str, revision: str | None) -> Resource:  # noqa: A002
        return replace(self, id=id, revision=revision)

    def with_attributes(self, attributes: Attributes) -> Resource:
        return replace(self, attributes=attributes)

    def lookup(self, path: str) -> AttributeValue:
        """Return the value at a dotted attribute path, ``None`` when absent."""

        current: AttributeValue = self.attributes
        for part in path.split("."):
            if not isinstance(current, dict) or part not in current:
                return None
            current = current[part]
        return current


def attributes_digest(attributes: Attributes) -> str:
    """Stable content hash of an attribute tree (key order independent)."""

    canonical = json.dumps(attributes, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class _ParentRefDocument(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kind: ResourceKind
    name: str = Field(min_length=1)

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: object) -> object:
        return _lenient_kind(value)


class ResourceDocument(BaseModel):
    """On-disk / wire shape of a resource document."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    kind: ResourceKind
    id: str = ""
    cluster_name: str = Field(alias="clusterName", min_length=1)
    parent_refs: list[_ParentRefDocument] = Field(
        default_factory=list["_ParentRefDocument"], alias="parentRefs"
    )
    revision: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind", mode="before")
    @classmethod
    def _parse_kind(cls, value: object) -> object:
        return _lenient_kind(value)

    @field_validator("id", mode="before")
    @classmethod
    def _blank_id(cls, value: object) -> object:
        return "" if value is None else _scalar_to_str(value)

    @field_validator("revision", "cluster_name", mode="before")
    @classmethod
    def _numeric_tokens(cls, value: object) -> object:
        return _scalar_to_str(value)

    @field_validator("attributes")
    @classmethod
    def _check_tree(cls, value: dict[str, Any]) -> dict[str, Any]:
        _check_attribute_tree(value, "attributes")
        return value


def normalize(document: Document, *, path: Path | None = None) -> Resource:
    """Validate ``document`` and build a resource from it.

    Raises ``MalformedResource`` when identity fields are missing, the kind is
    unknown or the attribute tree holds values outside the JSON data model.
    """

    if not isinstance(document, dict):  # pyright: ignore[reportUnnecessaryIsInstance]
        raise MalformedResource("Resource document must be a mapping", path=path)
    try:
        parsed = ResourceDocument.model_validate(document)
    except ValidationError as exc:
        raise MalformedResource(
            f"Invalid resource document: {_summarize(exc)}",
            path=path,
            kind=_lenient_kind_or_none(document.get("kind")),
            resource_id=_optional_id(document.get("id")),
        ) from exc

    try:
        return Resource(
            kind=parsed.kind,
            cluster_name=parsed.cluster_name,
            id=parsed.id,
            parent_refs=tuple(
                ParentRef(kind=ref.kind, name=ref.name) for ref in parsed.parent_refs
            ),
            attributes=copy.deepcopy(parsed.attributes),
            revision=parsed.revision,
        )
    except MalformedResource as exc:
        exc.path = path
        raise


def serialize(resource: Resource) -> Document:
    """Inverse of :func:`normalize`; optional empty fields are omitted."""

    document: Document = {
        "kind": resource.kind.value,
        "id": resource.id,
        "clusterName": resource.cluster_name,
    }
    if resource.parent_refs:
        document["parentRefs"] = [
            {"kind": ref.kind.value, "name": ref.name} for ref in resource.parent_refs
        ]
    if resource.revision is not None:
        document["revision"] = resource.revision
    document["attributes"] = copy.deepcopy(resource.attributes)
    return document


def _lenient_kind(value: object) -> object:
    if isinstance(value, str):
        parsed = ResourceKind.parse(value)
        if parsed is not None:
            return parsed
    return value


def _lenient_kind_or_none(value: object) -> ResourceKind | None:
    parsed = _lenient_kind(value)
    return parsed if isinstance(parsed, ResourceKind) else None


def _optional_id(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def _check_attribute_tree(value: object, where: str) -> None:
    if value is None or isinstance(value, (bool, int, float, str)):
        return
    if isinstance(value, list):
        for index, item in enumerate(value):  # pyright: ignore[reportUnknownVariableType,reportUnknownArgumentType]
            _check_attribute_tree(item, f"{where}[{index}]")
        return
    if isinstance(value, dict):
        for key, item in value.items():  # pyright: ignore[reportUnknownVariableType]
            if not isinstance(key, str):
                raise ValueError(f"{where} has a non-string key {key!r}")
            _check_attribute_tree(item, f"{where}.{key}")
        return
    raise ValueError(f"{where} holds unsupported value of type {type(value).__name__}")


def _summarize(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)


def _scalar_to_str(value: object) -> object:
    # hand-written YAML/TOML documents often carry numeric names or revisions unquoted
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value
