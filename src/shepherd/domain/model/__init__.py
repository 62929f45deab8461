"""Public domain model surface."""

from __future__ import annotations

from shepherd.domain.model.enums import FileFormat, ResourceKind, SyncDirection
from shepherd.domain.model.kinds import (
    CLUSTER_KINDS,
    GLOBAL_KINDS,
    GLOBAL_SCOPE,
    KIND_TRAITS,
    KINDS_IN_ORDER,
    KindTraits,
    NaturalKey,
    in_scope,
    kind_for_directory,
    traits_for,
)
from shepherd.domain.model.resource import (
    AttributeValue,
    Attributes,
    Document,
    ParentRef,
    Resource,
    ResourceDocument,
    ResourceKey,
    attributes_digest,
    normalize,
    serialize,
)

__all__ = [
    "CLUSTER_KINDS",
    "GLOBAL_KINDS",
    "GLOBAL_SCOPE",
    "KINDS_IN_ORDER",
    "KIND_TRAITS",
    "AttributeValue",
    "Attributes",
    "Document",
    "FileFormat",
    "KindTraits",
    "NaturalKey",
    "ParentRef",
    "Resource",
    "ResourceDocument",
    "ResourceKey",
    "ResourceKind",
    "SyncDirection",
    "attributes_digest",
    "in_scope",
    "kind_for_directory",
    "normalize",
    "serialize",
    "traits_for",
]
