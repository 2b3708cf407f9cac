"""
Shared fixtures: an in-memory work item service implementing the Session
protocol, and a ready-to-use instance configuration.
"""

import pytest

from mail2workitem.config import InstanceConfig, ServerConfig, WorkItemSettings
from mail2workitem.contracts import (
    AttachmentReference,
    CredentialCandidate,
    EncryptionScope,
    FieldDefinition,
    RemoteStoreError,
    TeamIteration,
    TeamProject,
    TeamSettings,
    WorkItem,
    WorkItemType,
)
from mail2workitem.manager import WorkItemManager


BUG_FIELDS = [
    FieldDefinition(name="Title", reference_name="System.Title"),
    FieldDefinition(name="State", reference_name="System.State"),
    FieldDefinition(name="Assigned To", reference_name="System.AssignedTo"),
    FieldDefinition(name="Activated By", reference_name="Microsoft.VSTS.Common.ActivatedBy"),
    FieldDefinition(name="Iteration Path", reference_name="System.IterationPath"),
    FieldDefinition(name="History", reference_name="System.History"),
    FieldDefinition(name="Conversation ID", reference_name="Custom.ConversationId"),
]

KEY_FIELD = "Custom.ConversationId"


class FakeSession:
    """In-memory work item service. Every call is recorded in .calls."""

    def __init__(self) -> None:
        self.work_items: dict[int, WorkItem] = {}
        self.calls: list[tuple] = []
        self.query_result: list[int] | None = None
        self.next_id = 100
        self.closed = False
        self.team_settings = TeamSettings(default_iteration_id="iter-3")
        self.iteration = TeamIteration(id="iter-3", name="Sprint 3", path="Proj\\Sprint 3")
        self.allowed_names = ["Jane Doe <jane@contoso.com>", "John Smith <jsmith@contoso.com>"]
        self.work_item_types = [
            WorkItemType(name="Bug", fields=BUG_FIELDS),
            WorkItemType(name="Task", fields=BUG_FIELDS[:2]),
        ]
        self.failing_ids: set[int] = set()
        self.failing_attachments: set[str] = set()
        self.fail_batch_fetch = False
        self.failing_batch_ids: set[int] = set()

    def add(self, work_item_id: int, conversation_id: str | None = None, **fields) -> WorkItem:
        if conversation_id is not None:
            fields[KEY_FIELD] = conversation_id
        work_item = WorkItem(id=work_item_id, fields=fields)
        self.work_items[work_item_id] = work_item
        return work_item

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    # WorkItemStore

    def query_by_wiql(self, query):
        self.calls.append(("query_by_wiql", query))
        if self.query_result is not None:
            return list(self.query_result)
        return sorted(self.work_items)

    def get_work_item(self, work_item_id):
        self.calls.append(("get_work_item", work_item_id))
        if work_item_id in self.failing_ids or work_item_id not in self.work_items:
            raise RemoteStoreError(f"Work item {work_item_id} not found", status_code=404)
        return self.work_items[work_item_id]

    def get_work_items(self, work_item_ids):
        self.calls.append(("get_work_items", list(work_item_ids)))
        if self.fail_batch_fetch or self.failing_batch_ids.intersection(work_item_ids):
            raise RemoteStoreError("Batch fetch failed", status_code=500)
        return [self.work_items[i] for i in work_item_ids if i in self.work_items]

    def create_work_item(self, patch, project, work_item_type):
        self.calls.append(("create_work_item", list(patch), project, work_item_type))
        fields = {}
        for op in patch:
            fields[op.path.removeprefix("/fields/")] = op.value
        work_item = WorkItem(id=self.next_id, fields=fields, rev=1)
        self.work_items[self.next_id] = work_item
        self.next_id += 1
        return work_item

    def update_work_item(self, patch, work_item_id):
        self.calls.append(("update_work_item", list(patch), work_item_id))
        return self.work_items.get(work_item_id) or WorkItem(id=work_item_id, fields={})

    def create_attachment(self, path):
        self.calls.append(("create_attachment", path))
        if path in self.failing_attachments:
            raise RemoteStoreError(f"Upload of {path} failed", status_code=500)
        name = str(path).rsplit("/", 1)[-1]
        return AttachmentReference(id=name, url=f"https://dev.azure.com/contoso/_apis/wit/attachments/{name}")

    # ProjectMetadataStore

    def get_project(self, name):
        self.calls.append(("get_project", name))
        return TeamProject(id="6ce954b1-ce1f-45d1-b94d-e6bf2464ba2c", name=name)

    def get_work_item_types(self, project_id):
        self.calls.append(("get_work_item_types", project_id))
        return list(self.work_item_types)

    def get_team_settings(self, project_id):
        self.calls.append(("get_team_settings", project_id))
        return self.team_settings

    def get_team_iteration(self, project_id, iteration_id):
        self.calls.append(("get_team_iteration", project_id, iteration_id))
        return self.iteration

    def get_field_allowed_values(self, project_id, work_item_type, field_reference):
        self.calls.append(("get_field_allowed_values", project_id, work_item_type, field_reference))
        return list(self.allowed_names)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def instance_config():
    """Valid configuration with a plain-text PAT file source."""
    return InstanceConfig(
        name="support-inbox",
        server=ServerConfig(
            collection_uri="https://dev.azure.com/contoso",
            project="Support",
            work_item_template="Bug",
            cache_query="SELECT [System.Id] FROM WorkItems WHERE [System.State] <> 'Closed'",
            names_list_field_name="Assigned To",
            pat_file="/etc/mail2workitem/pat.txt",
            encryption_scope=EncryptionScope.NONE,
        ),
        work_item_settings=WorkItemSettings(conversation_index_field_name="Conversation ID"),
    )


@pytest.fixture
def static_credentials():
    """Credential resolver yielding a single in-memory PAT."""
    return lambda server: [CredentialCandidate(source="test PAT", resolve=lambda: "pat-0123456789")]


@pytest.fixture
def make_manager(instance_config, fake_session, static_credentials):
    """Build a WorkItemManager wired to the fake session."""

    def _make(config=None, session=None):
        session = session or fake_session
        return WorkItemManager(
            config or instance_config,
            session_opener=lambda uri, pat: session,
            credential_resolver=static_credentials,
        )

    return _make
