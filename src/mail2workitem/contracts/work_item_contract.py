"""
Work Item Correlation Contract
==============================

Behavioral contracts for the public interfaces of mail2workitem: the
connection policy, the conversation cache and the work item lifecycle.

Every clause is referenced by ID from the implementation and from the tests
(see TEST_CASES at the bottom of this file).

AUTHORITY: This file is the SINGLE authoritative source for work item
correlation behavior. Import from mail2workitem.contracts, not from here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Protocol, runtime_checkable


# =============================================================================
# DOMAIN TYPES
# =============================================================================

class EncryptionScope(Enum):
    """Which key protects a file-based secret."""
    NONE = "none"
    USER = "user"
    MACHINE = "machine"


@dataclass(frozen=True)
class CredentialCandidate:
    """One credential source. resolve() yields the token, or raises."""
    source: str
    resolve: Callable[[], str] = field(repr=False, compare=False)


@dataclass(frozen=True)
class FieldDefinition:
    """A field declared by a work item type."""
    name: str
    reference_name: str


@dataclass(frozen=True)
class WorkItemType:
    """Work item template with its declared field schema."""
    name: str
    fields: list[FieldDefinition]


@dataclass(frozen=True)
class WorkItem:
    """Full work item record as returned by the store."""
    id: int | None
    fields: dict[str, Any]
    rev: int | None = None
    url: str = ""


@dataclass(frozen=True)
class TeamProject:
    """Project descriptor."""
    id: str
    name: str


@dataclass(frozen=True)
class TeamIteration:
    """A team iteration (sprint)."""
    id: str
    name: str
    path: str


@dataclass(frozen=True)
class TeamSettings:
    """Subset of team settings used for iteration macro expansion."""
    default_iteration_id: str | None
    default_iteration_macro: str = "@CurrentIteration"


@dataclass(frozen=True)
class PatchOperation:
    """One JSON patch operation."""
    op: str
    path: str
    value: Any

    def to_dict(self) -> dict:
        return {"op": self.op, "path": self.path, "value": self.value}


@dataclass(frozen=True)
class AttachmentReference:
    """Blob reference returned by an attachment upload."""
    id: str
    url: str


# =============================================================================
# ERROR TYPES
# =============================================================================

class WorkItemError(Exception):
    """Base error for all work item operations."""
    code: str = "WORK_ITEM_ERROR"


class BadConfigError(WorkItemError):
    """
    ERRORS-STARTUP-01: A required configuration value is missing or empty.

    RECOVERY: Fatal. Raised before any network call; fix the configuration.
    """
    code = "BAD_CONFIG"

    def __init__(self, config_value_name: str, message: str | None = None) -> None:
        self.config_value_name = config_value_name
        super().__init__(message or f"Missing or empty config value: {config_value_name}")


class SecretUnavailableError(WorkItemError):
    """
    ERRORS-STARTUP-02: The secret source (file or vault) could not be read.

    RECOVERY: The connection policy moves on to the next candidate.
    """
    code = "SECRET_UNAVAILABLE"


class AuthFailedError(WorkItemError):
    """
    ERRORS-STARTUP-03: The service rejected the credential.

    RECOVERY: The connection policy moves on to the next candidate.
    """
    code = "AUTH_FAILED"


class ConnectionFailedError(WorkItemError):
    """
    ERRORS-STARTUP-04: Every credential candidate failed to open a session.

    RECOVERY: Fatal. No retry, no backoff.
    """
    code = "CONNECTION_FAILED"


class NotConnectedError(WorkItemError):
    """
    ERRORS-OP-01: Operation attempted after the manager was closed.

    RECOVERY: Construct a new manager.
    """
    code = "NOT_CONNECTED"


class EmptyFieldValuesError(WorkItemError, ValueError):
    """
    ERRORS-CREATE-01: No field values supplied to create.

    RECOVERY: Fatal to the call only.
    """
    code = "ARGUMENT_ERROR"


class CacheEntryError(WorkItemError):
    """
    ERRORS-CACHE-01: A single record could not be cached.

    RECOVERY: Logged and skipped during population; never aborts the batch.
    """
    code = "CACHE_ENTRY"


class AttachmentError(WorkItemError):
    """
    ERRORS-ATTACH-01: One or more files could not be uploaded or linked.

    RECOVERY: Raised after every file was attempted; failed_paths lists
    the files that did not make it.
    """
    code = "ATTACHMENT_FAILED"

    def __init__(self, message: str, failed_paths: list[str] | None = None) -> None:
        self.failed_paths = list(failed_paths or [])
        super().__init__(message)


class RemoteStoreError(WorkItemError):
    """
    ERRORS-OP-02: The remote store returned an error or the transport failed.

    RECOVERY: Propagates to the caller; no automatic retry.
    """
    code = "REMOTE_STORE_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


# =============================================================================
# COLLABORATOR PROTOCOLS
# =============================================================================

@runtime_checkable
class WorkItemStore(Protocol):
    """Remote ticket store capability."""

    def query_by_wiql(self, query: str) -> list[int]:
        ...

    def get_work_item(self, work_item_id: int) -> WorkItem:
        ...

    def get_work_items(self, work_item_ids: list[int]) -> list[WorkItem]:
        ...

    def create_work_item(
        self, patch: list[PatchOperation], project: str, work_item_type: str
    ) -> WorkItem:
        ...

    def update_work_item(self, patch: list[PatchOperation], work_item_id: int) -> WorkItem:
        ...

    def create_attachment(self, path: str) -> AttachmentReference:
        ...


@runtime_checkable
class ProjectMetadataStore(Protocol):
    """Remote project/team metadata capability."""

    def get_project(self, name: str) -> TeamProject:
        ...

    def get_work_item_types(self, project_id: str) -> list[WorkItemType]:
        ...

    def get_team_settings(self, project_id: str) -> TeamSettings:
        ...

    def get_team_iteration(self, project_id: str, iteration_id: str) -> TeamIteration:
        ...

    def get_field_allowed_values(
        self, project_id: str, work_item_type: str, field_reference: str
    ) -> list[str]:
        ...


@runtime_checkable
class Session(WorkItemStore, ProjectMetadataStore, Protocol):
    """Authenticated channel to the service."""

    def close(self) -> None:
        ...


# =============================================================================
# STARTUP CONTRACT
# =============================================================================

@runtime_checkable
class ConnectContract(Protocol):
    """
    Connection establishment. Implemented by the module-level function
    mail2workitem.connection.connect; steps 1, 4 and 5 belong to
    WorkItemManager, which runs the whole sequence on construction.

    SEQUENCE:
    1. Configuration validated
    2. Credential candidates resolved in priority order (file, then vault)
    3. Each candidate tried until one opens a session
    4. Project, work item type, team settings fetched
    5. Conversation cache populated

    PRE-STARTUP-01: Configuration has every required string value
    PRE-STARTUP-02: At least one credential source is configured

    POST-STARTUP-01: The returned session was opened with the first candidate
                     that succeeded
    POST-STARTUP-02: Candidates after the successful one were never resolved

    INV-STARTUP-01 (Ordered): Candidates are attempted strictly in order
    INV-STARTUP-02 (No Anonymous): Never falls back to an unauthenticated
                   session
    INV-STARTUP-03 (Validate First): Bad configuration fails before any
                   network call
    INV-STARTUP-04 (No Secret Logging): Tokens never appear in log output

    ERRORS:
    - BAD_CONFIG: Required value missing
    - CONNECTION_FAILED: All candidates failed
    """

    def __call__(
        self,
        config: Any,
        *,
        session_opener: Callable[[str, str], Session] | None = None,
        credential_resolver: Callable[..., list[CredentialCandidate]] = ...,
    ) -> Session:
        """Open a session for an InstanceConfig (see connection.connect)."""
        ...


# =============================================================================
# CACHE CONTRACT
# =============================================================================

@runtime_checkable
class WorkItemCacheContract(Protocol):
    """
    Conversation key -> work item id.

    POST-CACHE-01: Non-empty trimmed key k gives cache[k] == record.id
    POST-CACHE-02: Empty or missing key gives cache[str(record.id)] == record.id
    POST-CACHE-03: After populate, one entry per successfully processed record

    INV-CACHE-01 (Additive): Entries are never removed
    INV-CACHE-02 (Idempotent): cache_by_id on a known id performs no fetch
    INV-CACHE-03 (Isolation): A failing record never aborts population
    INV-CACHE-04 (Store Is Truth): cache_by_id reads the key from the store,
                  never from the caller

    ERRORS:
    - CACHE_ENTRY: Record could not be cached (logged during populate)
    """

    def populate(self, query: str) -> None:
        ...

    def cache_by_id(self, work_item_id: int) -> None:
        ...

    def cache_work_item(self, work_item: WorkItem) -> None:
        ...


# =============================================================================
# LIFECYCLE CONTRACTS
# =============================================================================

@runtime_checkable
class CreateWorkItemContract(Protocol):
    """
    Create a work item from field values.

    PRE-CREATE-01: values is non-empty

    POST-CREATE-01: Returns the id of the created work item
    POST-CREATE-02: The new work item is in the conversation cache
    POST-CREATE-03: The current-iteration macro is replaced by the concrete
                    iteration path when one is known
    POST-CREATE-04: "Assigned To", when present, is the final patch operation

    INV-CREATE-01 (Unresolved Omitted): Unknown field names are left out of
                  the patch, not errors

    ERRORS:
    - ARGUMENT_ERROR: values empty or None
    - REMOTE_STORE_ERROR: Store rejected the request
    """

    def create_work_item(self, values: dict[str, str]) -> int:
        ...


@runtime_checkable
class ModifyWorkItemContract(Protocol):
    """
    Add a comment and change fields in one request.

    POST-MODIFY-01: History operation is first, field operations follow in
                    draft order
    POST-MODIFY-02: Newlines in the comment become <br>

    INV-MODIFY-01 (Sentinel Ids): work_item_id <= 0 makes no network call

    ERRORS:
    - REMOTE_STORE_ERROR: Store rejected the request
    """

    def modify_work_item(self, work_item_id: int, comment: str, values: dict[str, str]) -> None:
        ...


@runtime_checkable
class AttachFilesContract(Protocol):
    """
    Upload files and link them to a work item.

    POST-ATTACH-01: Every path is attempted
    POST-ATTACH-02: Each linked file adds one AttachedFile relation

    INV-ATTACH-01 (Sentinel Ids): work_item_id <= 0 makes no network call
    INV-ATTACH-02 (Isolation): A failing file does not stop the others

    ERRORS:
    - ATTACHMENT_FAILED: Raised after the batch with the failed paths
    """

    def attach_files(self, work_item_id: int, paths: list[str]) -> None:
        ...


# =============================================================================
# CLAUSE INDEX
# =============================================================================

CONTRACT_CLAUSES = {
    "ConnectContract": [
        "PRE-STARTUP-01",
        "PRE-STARTUP-02",
        "POST-STARTUP-01",
        "POST-STARTUP-02",
        "INV-STARTUP-01",
        "INV-STARTUP-02",
        "INV-STARTUP-03",
        "INV-STARTUP-04",
        "ERRORS: BAD_CONFIG",
        "ERRORS: CONNECTION_FAILED",
    ],
    "WorkItemCacheContract": [
        "POST-CACHE-01",
        "POST-CACHE-02",
        "POST-CACHE-03",
        "INV-CACHE-01",
        "INV-CACHE-02",
        "INV-CACHE-03",
        "INV-CACHE-04",
        "ERRORS: CACHE_ENTRY",
    ],
    "CreateWorkItemContract": [
        "PRE-CREATE-01",
        "POST-CREATE-01",
        "POST-CREATE-02",
        "POST-CREATE-03",
        "POST-CREATE-04",
        "INV-CREATE-01",
        "ERRORS: ARGUMENT_ERROR",
    ],
    "ModifyWorkItemContract": [
        "POST-MODIFY-01",
        "POST-MODIFY-02",
        "INV-MODIFY-01",
    ],
    "AttachFilesContract": [
        "POST-ATTACH-01",
        "POST-ATTACH-02",
        "INV-ATTACH-01",
        "INV-ATTACH-02",
        "ERRORS: ATTACHMENT_FAILED",
    ],
}


# =============================================================================
# TEST CASE INDEX
# =============================================================================

TEST_CASES = {
    # Startup
    "test_startup_bad_config_before_network": {
        "contract": "ConnectContract",
        "enforces": ["PRE-STARTUP-01", "INV-STARTUP-03", "ERRORS: BAD_CONFIG"],
    },
    "test_startup_requires_credential_source": {
        "contract": "ConnectContract",
        "enforces": ["PRE-STARTUP-02"],
    },
    "test_startup_first_success_wins": {
        "contract": "ConnectContract",
        "enforces": ["POST-STARTUP-01", "POST-STARTUP-02", "INV-STARTUP-01"],
    },
    "test_startup_all_candidates_fail": {
        "contract": "ConnectContract",
        "enforces": ["INV-STARTUP-02", "ERRORS: CONNECTION_FAILED"],
        "adversarial": True,
        "description": "Verify no anonymous session when every candidate fails",
    },
    "test_startup_no_secret_logging": {
        "contract": "ConnectContract",
        "enforces": ["INV-STARTUP-04"],
        "adversarial": True,
        "description": "Verify tokens never reach the log output",
    },

    # Cache
    "test_cache_keyed_record": {
        "contract": "WorkItemCacheContract",
        "enforces": ["POST-CACHE-01"],
    },
    "test_cache_empty_key_uses_id": {
        "contract": "WorkItemCacheContract",
        "enforces": ["POST-CACHE-02"],
    },
    "test_cache_populate_scenario": {
        "contract": "WorkItemCacheContract",
        "enforces": ["POST-CACHE-03", "INV-CACHE-01"],
    },
    "test_cache_by_id_idempotent": {
        "contract": "WorkItemCacheContract",
        "enforces": ["INV-CACHE-02", "INV-CACHE-04"],
    },
    "test_cache_populate_isolates_failures": {
        "contract": "WorkItemCacheContract",
        "enforces": ["INV-CACHE-03", "ERRORS: CACHE_ENTRY"],
        "adversarial": True,
        "description": "Verify a bad record does not abort population",
    },

    # Create
    "test_create_requires_values": {
        "contract": "CreateWorkItemContract",
        "enforces": ["PRE-CREATE-01", "ERRORS: ARGUMENT_ERROR"],
    },
    "test_create_caches_new_item": {
        "contract": "CreateWorkItemContract",
        "enforces": ["POST-CREATE-01", "POST-CREATE-02"],
    },
    "test_create_expands_current_iteration": {
        "contract": "CreateWorkItemContract",
        "enforces": ["POST-CREATE-03"],
    },
    "test_create_reasserts_assigned_to": {
        "contract": "CreateWorkItemContract",
        "enforces": ["POST-CREATE-04"],
    },
    "test_create_omits_unknown_fields": {
        "contract": "CreateWorkItemContract",
        "enforces": ["INV-CREATE-01"],
    },

    # Modify
    "test_modify_comment_first": {
        "contract": "ModifyWorkItemContract",
        "enforces": ["POST-MODIFY-01", "POST-MODIFY-02"],
    },
    "test_modify_sentinel_ids": {
        "contract": "ModifyWorkItemContract",
        "enforces": ["INV-MODIFY-01"],
        "adversarial": True,
        "description": "Verify no request for non-positive ids",
    },

    # Attach
    "test_attach_links_each_file": {
        "contract": "AttachFilesContract",
        "enforces": ["POST-ATTACH-01", "POST-ATTACH-02"],
    },
    "test_attach_sentinel_ids": {
        "contract": "AttachFilesContract",
        "enforces": ["INV-ATTACH-01"],
    },
    "test_attach_isolates_failures": {
        "contract": "AttachFilesContract",
        "enforces": ["INV-ATTACH-02", "ERRORS: ATTACHMENT_FAILED"],
        "adversarial": True,
        "description": "Verify one failing file does not stop the rest",
    },
}
