"""Public interface for the Rancher live adapter."""

from __future__ import annotations

from .client import RancherLiveSource, status_error
from .schema import ManagedObject, ObjectList, ObjectMeta, Status
from .translator import ENDPOINTS, to_json_patch, to_object, to_resource

__all__ = [
    "ENDPOINTS",
    "ManagedObject",
    "ObjectList",
    "ObjectMeta",
    "RancherLiveSource",
    "Status",
    "status_error",
    "to_json_patch",
    "to_object",
    "to_resource",
]
