"""Pydantic models for the Rancher management API (``management.cattle.io/v3``)."""

from __future__ import annotations

from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field

API_GROUP: Final[str] = "management.cattle.io"
API_VERSION: Final[str] = f"{API_GROUP}/v3"


class RancherBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ObjectMeta(RancherBaseModel):
    # extra fields (labels, annotations, ...) are kept so they survive into attributes
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str | None = None
    namespace: str | None = None
    generate_name: str | None = Field(default=None, alias="generateName")
    resource_version: str | None = Field(default=None, alias="resourceVersion")


class ManagedObject(RancherBaseModel):
    """A single management object; everything beyond identity stays in ``extra``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    api_version: str | None = Field(default=None, alias="apiVersion")
    kind: str | None = None
    metadata: ObjectMeta = Field(default_factory=ObjectMeta)

    @property
    def name(self) -> str:
        return self.metadata.name or ""

    @property
    def body(self) -> dict[str, Any]:
        """The object as a plain mapping, aliases restored."""

        return self.model_dump(by_alias=True, exclude_none=True)


class ListMeta(RancherBaseModel):
    continue_token: str | None = Field(default=None, alias="continue")
    resource_version: str | None = Field(default=None, alias="resourceVersion")


class ObjectList(RancherBaseModel):
    kind: str | None = None
    metadata: ListMeta = Field(default_factory=ListMeta)
    items: list[dict[str, Any]] = Field(default_factory=list)


class Status(RancherBaseModel):
    """Error body returned by the API server."""

    kind: str | None = None
    status: str | None = None
    message: str | None = None
    reason: str | None = None
    code: int | None = None
