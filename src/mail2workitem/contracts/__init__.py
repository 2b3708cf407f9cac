"""
Work Item Contract Index
========================

AUTHORITY: This file is the SINGLE authoritative entrypoint for all
mail2workitem contracts. Import from here, not from individual contract files.
"""

from mail2workitem.contracts.work_item_contract import (
    CONTRACT_CLAUSES,
    # Test Case Index
    TEST_CASES,
    AttachFilesContract,
    AttachmentError,
    AttachmentReference,
    AuthFailedError,
    BadConfigError,
    CacheEntryError,
    # Contracts (Protocols)
    ConnectContract,
    ConnectionFailedError,
    CreateWorkItemContract,
    CredentialCandidate,
    EmptyFieldValuesError,
    # Domain Types
    EncryptionScope,
    FieldDefinition,
    ModifyWorkItemContract,
    NotConnectedError,
    PatchOperation,
    ProjectMetadataStore,
    RemoteStoreError,
    SecretUnavailableError,
    Session,
    TeamIteration,
    TeamProject,
    TeamSettings,
    WorkItem,
    WorkItemCacheContract,
    # Error Types
    WorkItemError,
    WorkItemStore,
    WorkItemType,
)

__all__ = [
    # Domain Types
    "EncryptionScope",
    "CredentialCandidate",
    "FieldDefinition",
    "WorkItemType",
    "WorkItem",
    "TeamProject",
    "TeamIteration",
    "TeamSettings",
    "PatchOperation",
    "AttachmentReference",
    # Error Types
    "WorkItemError",
    "BadConfigError",
    "SecretUnavailableError",
    "AuthFailedError",
    "ConnectionFailedError",
    "NotConnectedError",
    "EmptyFieldValuesError",
    "CacheEntryError",
    "AttachmentError",
    "RemoteStoreError",
    # Collaborators
    "WorkItemStore",
    "ProjectMetadataStore",
    "Session",
    # Contracts
    "ConnectContract",
    "WorkItemCacheContract",
    "CreateWorkItemContract",
    "ModifyWorkItemContract",
    "AttachFilesContract",
    # Test Traceability
    "CONTRACT_CLAUSES",
    "TEST_CASES",
    # Functions
    "audit_contract_coverage",
]


def audit_contract_coverage() -> dict:
    """
    Audit which contract clauses have test coverage.

    Returns dict with:
    - covered: clauses with at least one test
    - uncovered: clauses with no tests
    - test_count: total tests defined
    - coverage_pct: covered share of all clauses
    """
    covered_clauses = set()
    for test_name, test_info in TEST_CASES.items():
        for clause in test_info.get("enforces", []):
            covered_clauses.add(clause)

    all_clauses = set()
    for clauses in CONTRACT_CLAUSES.values():
        all_clauses.update(clauses)

    uncovered = all_clauses - covered_clauses

    return {
        "covered": sorted(covered_clauses),
        "uncovered": sorted(uncovered),
        "test_count": len(TEST_CASES),
        "coverage_pct": round(len(covered_clauses) / len(all_clauses) * 100, 1),
    }
