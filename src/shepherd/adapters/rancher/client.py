"""Live state source backed by the Rancher management API."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from shepherd.adapters.http_resilience import ResilientClient
from shepherd.domain.errors import (
    CallTimeout,
    ConflictingRevision,
    MalformedResource,
    NotFound,
    RejectedChange,
    SourceError,
    Unauthorized,
    Unavailable,
)
from shepherd.domain.model import ResourceKind, in_scope
from shepherd.domain.ports import SourceListing, StateSource

from .schema import ObjectList, Status
from .translator import (
    belongs_to,
    collection_path,
    namespace_of,
    object_path,
    to_json_patch,
    to_object,
    to_resource,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from shepherd.config.http_resilience import ResilienceConfig
    from shepherd.domain.model import Resource
    from shepherd.domain.reconciliation import PatchOperation

log = getLogger(__name__)

JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
DEFAULT_FIELD_MANAGER = "shepherd"


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


@dataclass(slots=True)
class RancherLiveSource:
    """CRUD over projects, role templates and bindings of the tracked clusters.

    Role templates are global in Rancher; they are only reported under the
    global scope, never under a cluster.
    """

    resilience: ResilienceConfig
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=_default_client_factory
    )
    field_manager: str = DEFAULT_FIELD_MANAGER
    page_size: int = 500
    name: str = "live"
    _client: ResilientClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> RancherLiveSource:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def list(self, cluster_name: str, kind: ResourceKind) -> SourceListing:
        listing = SourceListing()
        if not in_scope(kind, cluster_name):
            log.debug("%s are not tracked under %s", kind, cluster_name)
            return listing
        namespace = cluster_name if kind is ResourceKind.PROJECT else None
        for payload in await self._list_objects(collection_path(kind, namespace)):
            if not belongs_to(cluster_name, kind, payload):
                continue
            try:
                listing.resources.append(to_resource(kind, cluster_name, payload))
            except MalformedResource as exc:
                exc.resource_id = exc.resource_id or _object_name(payload)
                listing.malformed.append(exc)
        log.debug("Listed %d %s for cluster %s", len(listing.resources), kind, cluster_name)
        return listing

    async def get(self, cluster_name: str, kind: ResourceKind, id: str) -> Resource:  # noqa: A002
        if kind is ResourceKind.PROJECT_ROLE_TEMPLATE_BINDING:
            # the namespace (project) is not derivable from the id alone
            for resource in (await self.list(cluster_name, kind)).resources:
                if resource.id == id:
                    return resource
            raise NotFound(f"{kind} {id!r} not found in cluster {cluster_name}", status_code=404)
        namespace = cluster_name if kind is ResourceKind.PROJECT else None
        response = await self._request("GET", object_path(kind, id, namespace))
        return self._parse(kind, cluster_name, response)

    async def create(self, resource: Resource) -> Resource:
        response = await self._request(
            "POST",
            collection_path(resource.kind, namespace_of(resource)),
            body=to_object(resource),
            params={"fieldManager": self.field_manager},
        )
        created = self._parse(resource.kind, resource.cluster_name, response)
        log.info("Created %s in cluster %s", created.label, resource.cluster_name)
        return created

    async def update(self, resource: Resource, patch: Sequence[PatchOperation]) -> Resource:
        response = await self._request(
            "PATCH",
            object_path(resource.kind, resource.id, namespace_of(resource)),
            content=json.dumps(to_json_patch(resource, patch)).encode("utf-8"),
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
            params={"fieldManager": self.field_manager},
        )
        updated = self._parse(resource.kind, resource.cluster_name, response)
        log.info("Patched %s in cluster %s", updated.label, resource.cluster_name)
        return updated

    async def delete(self, resource: Resource) -> None:
        await self._request(
            "DELETE", object_path(resource.kind, resource.id, namespace_of(resource))
        )
        log.info("Deleted %s in cluster %s", resource.label, resource.cluster_name)

    async def _list_objects(self, path: str) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        params: dict[str, str | int] = {"limit": self.page_size}
        while True:
            response = await self._request("GET", path, params=params)
            try:
                page = ObjectList.model_validate(response.json())
            except (ValidationError, ValueError) as exc:
                raise SourceError(f"Unexpected list response from {path}") from exc
            items.extend(page.items)
            if not page.metadata.continue_token:
                return items
            params["continue"] = page.metadata.continue_token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
        body: object = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        client = self._http()
        try:
            if body is not None:
                response = await client.request(
                    method, path, params=params, json=body, headers=headers
                )
            else:
                response = await client.request(
                    method, path, params=params, content=content, headers=headers
                )
        except httpx.TimeoutException as exc:
            raise CallTimeout(f"{method} {path} timed out") from exc
        except httpx.TransportError as exc:
            raise Unavailable(f"{method} {path} failed: {exc}") from exc

        if response.is_error:
            raise status_error(method, path, response)
        return response

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self.client_factory(self.resilience)
        return self._client

    def _parse(self, kind: ResourceKind, cluster_name: str, response: httpx.Response) -> Resource:
        try:
            payload = response.json()
        except ValueError as exc:
            raise SourceError(f"Response for {kind} is not JSON") from exc
        return to_resource(kind, cluster_name, payload)


def status_error(method: str, path: str, response: httpx.Response) -> SourceError:
    """Map an error response onto the domain error taxonomy."""

    code = response.status_code
    message = _status_message(response)
    text = f"{method} {path} returned {code}: {message}"
    if code in {401, 403}:
        return Unauthorized(text, status_code=code)
    if code == 404:
        return NotFound(text, status_code=code)
    if code == 409 or (code == 422 and "resourceVersion" in message):
        # a failed ``test`` on the resource version is a concurrent modification
        return ConflictingRevision(text, status_code=code)
    if code == 429 or code >= 500:
        return Unavailable(text, status_code=code)
    return RejectedChange(text, status_code=code)


def _status_message(response: httpx.Response) -> str:
    try:
        status = Status.model_validate(response.json())
    except (ValidationError, ValueError):
        return response.text[:200] or response.reason_phrase
    return status.message or status.reason or response.reason_phrase


def _object_name(payload: dict[str, Any]) -> str | None:
    metadata = payload.get("metadata")
    if isinstance(metadata, dict):
        name = metadata.get("name")  # pyright: ignore[reportUnknownMemberType,reportUnknownVariableType]
        if isinstance(name, str):
            return name
    return None


if TYPE_CHECKING:
    _source_check: StateSource = RancherLiveSource(resilience=None)  # type: ignore[arg-type]
