"""
VSS REST Client Tests
=====================

Requests are served by httpx.MockTransport; nothing leaves the process.
"""

import base64
import json

import httpx
import pytest

from mail2workitem.contracts import (
    AuthFailedError,
    ConnectionFailedError,
    NotConnectedError,
    PatchOperation,
    RemoteStoreError,
)
from mail2workitem.vss_client import (
    API_VERSION,
    JSON_PATCH_CONTENT_TYPE,
    VssClient,
    open_session,
)


COLLECTION_URI = "https://dev.azure.com/contoso"


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests = []

        def _record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(_record)


@pytest.fixture
def make_client():
    clients = []

    def _make(handler, pat="pat-0123456789"):
        transport = RecordingTransport(handler)
        client = VssClient(COLLECTION_URI, pat, transport=transport)
        clients.append(client)
        return client, transport

    yield _make

    for client in clients:
        client.close()


# =============================================================================
# CONNECTION CHECK
# =============================================================================

class TestVerify:

    def test_verify_success(self, make_client):
        client, transport = make_client(lambda request: httpx.Response(200, json={"count": 1, "value": []}))

        client.verify()

        request = transport.requests[0]
        assert request.url.path == "/contoso/_apis/projects"
        assert request.url.params["api-version"] == API_VERSION
        expected = base64.b64encode(b":pat-0123456789").decode("ascii")
        assert request.headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.parametrize("status", [401, 403, 203])
    def test_verify_rejected(self, make_client, status):
        client, _ = make_client(lambda request: httpx.Response(status, text="<html>Sign in</html>"))

        with pytest.raises(AuthFailedError):
            client.verify()

    def test_verify_server_error(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(503))

        with pytest.raises(ConnectionFailedError):
            client.verify()

    def test_verify_unreachable(self, make_client):
        def handler(request):
            raise httpx.ConnectError("Name or service not known", request=request)

        client, _ = make_client(handler)

        with pytest.raises(ConnectionFailedError):
            client.verify()

    def test_open_session_closes_on_failure(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(401))

        with pytest.raises(AuthFailedError):
            open_session(COLLECTION_URI, "bad-pat", transport=transport)

    def test_open_session_success(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"value": []}))

        with open_session(COLLECTION_URI, "pat", transport=transport) as client:
            assert client.connected is True
        assert client.connected is False

    def test_closed_client_raises(self, make_client):
        client, transport = make_client(lambda request: httpx.Response(200, json={}))
        client.close()

        with pytest.raises(NotConnectedError):
            client.get_work_item(1)
        assert transport.requests == []


# =============================================================================
# METADATA
# =============================================================================

class TestMetadata:

    def test_work_item_types(self, make_client):
        body = {
            "count": 1,
            "value": [
                {
                    "name": "Bug",
                    "fields": [
                        {"name": "Title", "referenceName": "System.Title"},
                        {"name": "Assigned To", "referenceName": "System.AssignedTo"},
                    ],
                }
            ],
        }
        client, transport = make_client(lambda request: httpx.Response(200, json=body))

        (wit,) = client.get_work_item_types("6ce954b1")

        assert wit.name == "Bug"
        assert [f.reference_name for f in wit.fields] == ["System.Title", "System.AssignedTo"]
        assert transport.requests[0].url.path == "/contoso/6ce954b1/_apis/wit/workitemtypes"

    def test_team_settings(self, make_client):
        body = {
            "defaultIteration": {"id": "iter-3", "name": "Sprint 3", "path": "Sprint 3"},
            "defaultIterationMacro": "@currentIteration",
        }
        client, _ = make_client(lambda request: httpx.Response(200, json=body))

        settings = client.get_team_settings("6ce954b1")

        assert settings.default_iteration_id == "iter-3"
        assert settings.default_iteration_macro == "@currentIteration"

    def test_team_settings_without_default_iteration(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(200, json={}))

        settings = client.get_team_settings("6ce954b1")

        assert settings.default_iteration_id is None
        assert settings.default_iteration_macro == "@CurrentIteration"

    def test_field_allowed_values(self, make_client):
        body = {"referenceName": "System.AssignedTo", "allowedValues": ["Jane Doe <jane@contoso.com>"]}
        client, transport = make_client(lambda request: httpx.Response(200, json=body))

        names = client.get_field_allowed_values("6ce954b1", "Bug", "System.AssignedTo")

        assert names == ["Jane Doe <jane@contoso.com>"]
        assert transport.requests[0].url.params["$expand"] == "allowedValues"


# =============================================================================
# WORK ITEMS
# =============================================================================

class TestWorkItems:

    def test_query_by_wiql(self, make_client):
        body = {"workItems": [{"id": 1, "url": "u1"}, {"id": 2, "url": "u2"}]}
        client, transport = make_client(lambda request: httpx.Response(200, json=body))

        ids = client.query_by_wiql("SELECT [System.Id] FROM WorkItems")

        assert ids == [1, 2]
        request = transport.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {"query": "SELECT [System.Id] FROM WorkItems"}

    def test_get_work_items_single_request(self, make_client):
        def handler(request):
            ids = [int(i) for i in request.url.params["ids"].split(",")]
            return httpx.Response(200, json={"value": [{"id": i, "fields": {}} for i in ids]})

        client, transport = make_client(handler)

        work_items = client.get_work_items([3, 1, 2])

        assert [w.id for w in work_items] == [3, 1, 2]
        assert len(transport.requests) == 1
        assert transport.requests[0].url.params["ids"] == "3,1,2"

    def test_create_work_item_sends_json_patch(self, make_client):
        body = {"id": 100, "rev": 1, "fields": {"System.Title": "Printer on fire"}, "url": "u100"}
        client, transport = make_client(lambda request: httpx.Response(200, json=body))

        work_item = client.create_work_item(
            [PatchOperation(op="add", path="/fields/System.Title", value="Printer on fire")],
            "6ce954b1",
            "Bug",
        )

        assert work_item.id == 100
        assert work_item.fields == {"System.Title": "Printer on fire"}
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url.path.endswith("/6ce954b1/_apis/wit/workitems/$Bug")
        assert request.headers["Content-Type"] == JSON_PATCH_CONTENT_TYPE
        assert json.loads(request.content) == [
            {"op": "add", "path": "/fields/System.Title", "value": "Printer on fire"}
        ]

    def test_update_work_item(self, make_client):
        client, transport = make_client(lambda request: httpx.Response(200, json={"id": 42, "fields": {}}))

        client.update_work_item([PatchOperation(op="add", path="/fields/System.State", value="Resolved")], 42)

        request = transport.requests[0]
        assert request.method == "PATCH"
        assert request.url.path == "/contoso/_apis/wit/workitems/42"
        assert request.headers["Content-Type"] == JSON_PATCH_CONTENT_TYPE

    def test_create_attachment(self, make_client, tmp_path):
        path = tmp_path / "original.eml"
        path.write_bytes(b"From: jane@contoso.com\r\n\r\nhello")
        body = {"id": "a1b2", "url": f"{COLLECTION_URI}/_apis/wit/attachments/a1b2"}
        client, transport = make_client(lambda request: httpx.Response(201, json=body))

        attachment = client.create_attachment(str(path))

        assert attachment.url == f"{COLLECTION_URI}/_apis/wit/attachments/a1b2"
        request = transport.requests[0]
        assert request.url.params["fileName"] == "original.eml"
        assert request.content == b"From: jane@contoso.com\r\n\r\nhello"

    def test_create_attachment_missing_file(self, make_client, tmp_path):
        client, transport = make_client(lambda request: httpx.Response(201, json={}))

        with pytest.raises(RemoteStoreError):
            client.create_attachment(str(tmp_path / "absent.eml"))
        assert transport.requests == []

    @pytest.mark.parametrize("status", [400, 404, 500])
    def test_error_status_raises(self, make_client, status):
        body = {"message": "TF401232: Work item 9 does not exist"}
        client, _ = make_client(lambda request: httpx.Response(status, json=body))

        with pytest.raises(RemoteStoreError) as exc_info:
            client.get_work_item(9)

        assert exc_info.value.status_code == status
        assert "TF401232" in str(exc_info.value)

    def test_transport_error_raises(self, make_client):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client, _ = make_client(handler)

        with pytest.raises(RemoteStoreError):
            client.query_by_wiql("SELECT [System.Id] FROM WorkItems")

    def test_sign_in_page_raises(self, make_client):
        client, _ = make_client(lambda request: httpx.Response(203, text="<html>Sign In</html>"))

        with pytest.raises(RemoteStoreError) as exc_info:
            client.update_work_item([PatchOperation(op="add", path="/fields/System.State", value="Active")], 42)

        assert exc_info.value.status_code == 203

    @pytest.mark.parametrize("content", [b"", b"<html>Sign In</html>"])
    def test_non_json_success_raises(self, make_client, content):
        client, _ = make_client(lambda request: httpx.Response(200, content=content))

        with pytest.raises(RemoteStoreError) as exc_info:
            client.get_work_item(1)

        assert exc_info.value.status_code == 200
