from __future__ import annotations

from pathlib import Path

import pytest

from shepherd.domain.errors import MalformedResource
from shepherd.domain.model import (
    ParentRef,
    Resource,
    ResourceKind,
    attributes_digest,
    normalize,
    serialize,
)


def _document(**overrides: object) -> dict[str, object]:
    document: dict[str, object] = {
        "kind": "Project",
        "id": "p-abc12",
        "clusterName": "c-1",
        "revision": "17",
        "attributes": {"spec": {"displayName": "payments", "description": ""}},
    }
    document.update(overrides)
    return document


def test_normalize_builds_resource_and_serialize_restores_document() -> None:
    document = _document(parentRefs=[{"kind": "Project", "name": "p-parent"}])

    resource = normalize(document)

    assert resource.kind is ResourceKind.PROJECT
    assert resource.id == "p-abc12"
    assert resource.cluster_name == "c-1"
    assert resource.revision == "17"
    assert resource.parent_refs == (ParentRef(kind=ResourceKind.PROJECT, name="p-parent"),)
    assert serialize(resource) == document


def test_serialize_omits_empty_optional_fields() -> None:
    resource = Resource(kind=ResourceKind.ROLE_TEMPLATE, cluster_name="c-1", id="rt1")

    assert serialize(resource) == {
        "kind": "RoleTemplate",
        "id": "rt1",
        "clusterName": "c-1",
        "attributes": {},
    }


def test_normalize_accepts_lenient_kind_names_and_numeric_tokens() -> None:
    resource = normalize(
        {
            "kind": "project_role_template_bindings",
            "id": 42,
            "clusterName": "c-1",
            "revision": 7,
            "attributes": {"userName": "u-1"},
        }
    )

    assert resource.kind is ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING
    assert resource.id == "42"
    assert resource.revision == "7"


def test_normalize_treats_missing_id_as_not_yet_created() -> None:
    document = _document()
    del document["id"]

    assert normalize(document).id == ""


def test_unknown_kind_is_malformed() -> None:
    with pytest.raises(MalformedResource) as excinfo:
        normalize(_document(kind="Namespace"), path=Path("c-1/projects/x.yaml"))

    assert excinfo.value.kind is None
    assert excinfo.value.resource_id == "p-abc12"
    assert excinfo.value.path == Path("c-1/projects/x.yaml")


def test_missing_cluster_is_malformed_and_keeps_identity() -> None:
    document = _document()
    del document["clusterName"]

    with pytest.raises(MalformedResource) as excinfo:
        normalize(document)

    assert excinfo.value.kind is ResourceKind.PROJECT
    assert excinfo.value.resource_id == "p-abc12"


@pytest.mark.parametrize("reserved", ["id", "revision"])
def test_reserved_attribute_names_are_rejected(reserved: str) -> None:
    with pytest.raises(MalformedResource, match=reserved):
        normalize(_document(attributes={reserved: "x"}))


def test_non_json_attribute_values_are_rejected() -> None:
    with pytest.raises(MalformedResource):
        normalize(_document(attributes={"when": object()}))


def test_unexpected_top_level_field_is_rejected() -> None:
    with pytest.raises(MalformedResource):
        normalize(_document(status={"phase": "Active"}))


def test_lookup_follows_dotted_paths() -> None:
    resource = normalize(_document())

    assert resource.lookup("spec.displayName") == "payments"
    assert resource.lookup("spec.missing") is None
    assert resource.lookup("spec.displayName.deeper") is None


def test_digest_ignores_key_order() -> None:
    assert attributes_digest({"a": 1, "b": [1, 2]}) == attributes_digest({"b": [1, 2], "a": 1})
    assert attributes_digest({"a": 1}) != attributes_digest({"a": True})


def test_with_identity_keeps_attributes() -> None:
    resource = normalize(_document(id=""))

    created = resource.with_identity(id="p-new", revision="1")

    assert created.key == (ResourceKind.PROJECT, "p-new")
    assert created.attributes == resource.attributes
    assert resource.label == "Project/<new>"
    assert created.label == "Project/p-new"
