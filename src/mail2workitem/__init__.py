"""
mail2workitem
=============

Correlates inbound conversations with work items in Azure DevOps / TFS:
one conversation, one work item, for the conversation's whole life.
"""

__version__ = "0.1.0"

from mail2workitem.cache import WorkItemCache
from mail2workitem.config import InstanceConfig, configure_logging, load_config
from mail2workitem.connection import connect
from mail2workitem.credentials import resolve_credential_candidates
from mail2workitem.field_resolver import FieldResolver, NameResolver
from mail2workitem.manager import WorkItemManager
from mail2workitem.vss_client import VssClient, open_session

__all__ = [
    "WorkItemManager",
    "WorkItemCache",
    "FieldResolver",
    "NameResolver",
    "InstanceConfig",
    "load_config",
    "configure_logging",
    "connect",
    "resolve_credential_candidates",
    "VssClient",
    "open_session",
]
