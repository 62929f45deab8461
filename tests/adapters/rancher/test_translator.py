from __future__ import annotations

import pytest

from shepherd.adapters.rancher.translator import (
    belongs_to,
    collection_path,
    object_path,
    to_json_patch,
    to_object,
    to_resource,
)
from shepherd.domain.errors import MalformedResource
from shepherd.domain.model import GLOBAL_SCOPE, ParentRef, ResourceKind
from shepherd.domain.reconciliation import PatchOp, PatchOperation
from tests.helpers.sources import binding, project


def _project_payload() -> dict[str, object]:
    return {
        "apiVersion": "management.cattle.io/v3",
        "kind": "Project",
        "metadata": {
            "name": "p-abc12",
            "namespace": "c-1",
            "resourceVersion": "4411",
            "uid": "0d4c",
            "creationTimestamp": "2024-05-01T10:00:00Z",
            "labels": {"team": "payments"},
            "annotations": None,
        },
        "spec": {
            "clusterName": "c-1",
            "displayName": "payments",
            "resourceQuota": {"limit": {"pods": "50"}, "usedLimit": {"pods": "12"}},
        },
        "status": {"conditions": []},
    }


def test_object_becomes_resource_without_server_managed_fields() -> None:
    resource = to_resource(ResourceKind.PROJECT, "c-1", _project_payload())

    assert resource.id == "p-abc12"
    assert resource.revision == "4411"
    assert resource.attributes == {
        "metadata": {"labels": {"team": "payments"}},
        "spec": {
            "clusterName": "c-1",
            "displayName": "payments",
            "resourceQuota": {"limit": {"pods": "50"}},
        },
    }


def test_binding_parents_are_derived_from_the_object() -> None:
    payload = {
        "metadata": {"name": "prtb-x", "namespace": "p-abc12"},
        "projectName": "c-1:p-abc12",
        "roleTemplateName": "project-member",
        "userName": "u-1",
    }

    resource = to_resource(ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING, "c-1", payload)

    assert resource.parent_refs == (
        ParentRef(kind=ResourceKind.PROJECT, name="p-abc12"),
        ParentRef(kind=ResourceKind.ROLE_TEMPLATE, name="project-member"),
    )
    assert "metadata" not in resource.attributes


def test_object_without_name_is_malformed() -> None:
    with pytest.raises(MalformedResource):
        to_resource(ResourceKind.ROLE_TEMPLATE, "c-1", {"displayName": "dev"})


def test_bindings_are_filtered_by_cluster_prefix() -> None:
    kind = ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING

    assert belongs_to("c-1", kind, {"projectName": "c-1:p-1"})
    assert not belongs_to("c-1", kind, {"projectName": "c-10:p-1"})
    assert not belongs_to("c-1", kind, {})
    assert not belongs_to(GLOBAL_SCOPE, kind, {"projectName": "c-1:p-1"})


def test_role_templates_belong_to_the_global_scope_only() -> None:
    assert belongs_to(GLOBAL_SCOPE, ResourceKind.ROLE_TEMPLATE, {})
    assert not belongs_to("c-1", ResourceKind.ROLE_TEMPLATE, {})


def test_paths_follow_namespacing() -> None:
    assert collection_path(ResourceKind.PROJECT, "c-1") == (
        "/apis/management.cattle.io/v3/namespaces/c-1/projects"
    )
    assert collection_path(ResourceKind.ROLE_TEMPLATE, "c-1") == (
        "/apis/management.cattle.io/v3/roletemplates"
    )
    assert object_path(ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING, "prtb-1", "p-1") == (
        "/apis/management.cattle.io/v3/namespaces/p-1/projectroletemplatebindings/prtb-1"
    )


def test_new_project_object_uses_generated_name_in_cluster_namespace() -> None:
    body = to_object(project(name="payments"))

    assert body == {
        "apiVersion": "management.cattle.io/v3",
        "kind": "Project",
        "metadata": {"generateName": "p-", "namespace": "c-1"},
        "spec": {"displayName": "payments"},
    }


def test_binding_object_lives_in_project_namespace() -> None:
    body = to_object(binding("prtb-1", project_id="p-abc12"))

    assert body["metadata"] == {"name": "prtb-1", "namespace": "p-abc12"}
    assert body["projectName"] == "c-1:p-abc12"


def test_json_patch_is_guarded_by_observed_revision() -> None:
    observed = project("p1", name="a", revision="77")
    patch = [PatchOperation(PatchOp.REPLACE, "/spec/displayName", "b")]

    assert to_json_patch(observed, patch) == [
        {"op": "test", "path": "/metadata/resourceVersion", "value": "77"},
        {"op": "replace", "path": "/spec/displayName", "value": "b"},
    ]


def test_whole_metadata_operations_are_expanded_per_key() -> None:
    observed = project("p1", name="a").with_attributes(
        {"metadata": {"labels": {"a": "1"}, "annotations": {"x": "y"}}, "spec": {}}
    )
    patch = [PatchOperation(PatchOp.REPLACE, "/metadata", {"labels": {"a": "2"}})]

    assert to_json_patch(observed, patch) == [
        {"op": "remove", "path": "/metadata/annotations"},
        {"op": "add", "path": "/metadata/labels", "value": {"a": "2"}},
    ]
