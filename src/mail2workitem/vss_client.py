"""
VSS REST Client
===============

Work item tracking client for Azure DevOps / TFS over the REST API.

Implements the Session protocol (WorkItemStore + ProjectMetadataStore).
Authentication is HTTP basic with an empty user name and the PAT as password.

INV-STARTUP-04: The PAT is never logged; only the collection URI is.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from mail2workitem.contracts import (
    AttachmentReference,
    AuthFailedError,
    ConnectionFailedError,
    FieldDefinition,
    NotConnectedError,
    PatchOperation,
    RemoteStoreError,
    TeamIteration,
    TeamProject,
    TeamSettings,
    WorkItem,
    WorkItemType,
)

logger = logging.getLogger(__name__)

API_VERSION = "7.0"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"


class VssClient:
    """
    Blocking client for the work item tracking, core and work REST areas.

    One httpx.Client per instance; close() releases it and every later call
    raises NotConnectedError.
    """

    def __init__(
        self,
        collection_uri: str,
        pat: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._collection_uri = collection_uri.rstrip("/") + "/"
        self._client: httpx.Client | None = httpx.Client(
            base_url=self._collection_uri,
            auth=("", pat),
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def connected(self) -> bool:
        return self._client is not None

    def verify(self) -> None:
        """
        Check that the endpoint accepts the credential.

        ERRORS:
        - AuthFailedError: credential rejected (401/403, or 203 sign-in page)
        - ConnectionFailedError: endpoint unreachable or unexpected status
        """
        client = self._require_connection()
        try:
            r = client.get("_apis/projects", params={"$top": 1, "api-version": API_VERSION})
        except httpx.HTTPError as e:
            raise ConnectionFailedError(f"Failed to connect to {self._collection_uri}: {e}") from e

        # Azure DevOps answers bad PATs on some routes with a 203 HTML sign-in page
        if r.status_code in (401, 403, 203):
            raise AuthFailedError(f"Authentication failed: HTTP {r.status_code}")
        if not (200 <= r.status_code < 300):
            raise ConnectionFailedError(f"Connection check failed: HTTP {r.status_code}")

    def close(self) -> None:
        """Release the underlying HTTP client."""
        if self._client:
            try:
                self._client.close()
            finally:
                self._client = None

    def __enter__(self) -> VssClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _require_connection(self) -> httpx.Client:
        """Ensure open, raise NotConnectedError if not."""
        if self._client is None:
            raise NotConnectedError("Work item session is closed")
        return self._client

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        client = self._require_connection()
        params = dict(kwargs.pop("params", None) or {})
        params.setdefault("api-version", API_VERSION)
        try:
            r = client.request(method, url, params=params, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteStoreError(f"{method} {url} failed: {e}") from e

        # 203 is the HTML sign-in page served once the PAT stops being accepted
        if r.status_code == 203 or not (200 <= r.status_code < 300):
            err = r.text
            try:
                body = r.json()
                if isinstance(body, dict) and body.get("message"):
                    err = body["message"]
            except ValueError:
                pass
            raise RemoteStoreError(
                f"{method} {url}: HTTP {r.status_code}: {(err or r.reason_phrase)[:300]}",
                status_code=r.status_code,
            )
        try:
            return r.json()
        except ValueError as e:
            raise RemoteStoreError(
                f"{method} {url}: HTTP {r.status_code}: response is not JSON",
                status_code=r.status_code,
            ) from e

    # -------------------------------------------------------------------------
    # Project metadata
    # -------------------------------------------------------------------------

    def get_project(self, name: str) -> TeamProject:
        data = self._request("GET", f"_apis/projects/{quote(name)}")
        return TeamProject(id=data["id"], name=data.get("name", name))

    def get_work_item_types(self, project_id: str) -> list[WorkItemType]:
        data = self._request("GET", f"{quote(project_id)}/_apis/wit/workitemtypes")
        return [
            WorkItemType(
                name=wit["name"],
                fields=[
                    FieldDefinition(name=f["name"], reference_name=f["referenceName"])
                    for f in wit.get("fields") or []
                ],
            )
            for wit in data.get("value", [])
        ]

    def get_team_settings(self, project_id: str) -> TeamSettings:
        data = self._request("GET", f"{quote(project_id)}/_apis/work/teamsettings")
        default_iteration = data.get("defaultIteration") or {}
        return TeamSettings(
            default_iteration_id=default_iteration.get("id"),
            default_iteration_macro=data.get("defaultIterationMacro") or "@CurrentIteration",
        )

    def get_team_iteration(self, project_id: str, iteration_id: str) -> TeamIteration:
        data = self._request(
            "GET",
            f"{quote(project_id)}/_apis/work/teamsettings/iterations/{quote(iteration_id)}",
        )
        return TeamIteration(id=data["id"], name=data.get("name", ""), path=data.get("path", ""))

    def get_field_allowed_values(
        self, project_id: str, work_item_type: str, field_reference: str
    ) -> list[str]:
        data = self._request(
            "GET",
            f"{quote(project_id)}/_apis/wit/workitemtypes/{quote(work_item_type)}"
            f"/fields/{quote(field_reference)}",
            params={"$expand": "allowedValues"},
        )
        return [str(v) for v in data.get("allowedValues") or []]

    # -------------------------------------------------------------------------
    # Work items
    # -------------------------------------------------------------------------

    def query_by_wiql(self, query: str) -> list[int]:
        data = self._request("POST", "_apis/wit/wiql", json={"query": query})
        return [item["id"] for item in data.get("workItems", [])]

    def get_work_item(self, work_item_id: int) -> WorkItem:
        data = self._request("GET", f"_apis/wit/workitems/{int(work_item_id)}")
        return _to_work_item(data)

    def get_work_items(self, work_item_ids: list[int]) -> list[WorkItem]:
        """One request. The server accepts at most 200 ids; callers batch."""
        data = self._request(
            "GET",
            "_apis/wit/workitems",
            params={"ids": ",".join(str(i) for i in work_item_ids)},
        )
        return [_to_work_item(item) for item in data.get("value", [])]

    def create_work_item(
        self, patch: list[PatchOperation], project: str, work_item_type: str
    ) -> WorkItem:
        data = self._request(
            "POST",
            f"{quote(project)}/_apis/wit/workitems/${quote(work_item_type)}",
            json=[op.to_dict() for op in patch],
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
        return _to_work_item(data)

    def update_work_item(self, patch: list[PatchOperation], work_item_id: int) -> WorkItem:
        data = self._request(
            "PATCH",
            f"_apis/wit/workitems/{int(work_item_id)}",
            json=[op.to_dict() for op in patch],
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
        return _to_work_item(data)

    def create_attachment(self, path: str) -> AttachmentReference:
        file_path = Path(path)
        try:
            content = file_path.read_bytes()
        except OSError as e:
            raise RemoteStoreError(f"Cannot read attachment {path}: {e}") from e
        data = self._request(
            "POST",
            "_apis/wit/attachments",
            params={"fileName": file_path.name},
            content=content,
            headers={"Content-Type": "application/octet-stream"},
        )
        return AttachmentReference(id=data.get("id", ""), url=data["url"])


def _to_work_item(data: dict) -> WorkItem:
    return WorkItem(
        id=data.get("id"),
        fields=dict(data.get("fields") or {}),
        rev=data.get("rev"),
        url=data.get("url", ""),
    )


def open_session(
    collection_uri: str,
    pat: str,
    *,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> VssClient:
    """Create a client and verify the credential. Closes the client on failure."""
    client = VssClient(collection_uri, pat, timeout=timeout, transport=transport)
    try:
        client.verify()
    except Exception:
        client.close()
        raise
    logger.info(f"Connected to {collection_uri}")
    return client
