"""
Instance Configuration
======================

Frozen configuration records, a YAML loader and the startup validation.

Validation runs before any network call (INV-STARTUP-03).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from mail2workitem.contracts import BadConfigError, EncryptionScope

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_ATTACHMENT_COMMENT = "Original Message"
DEFAULT_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class VaultSecretRef:
    """Location of a secret in Azure Key Vault."""

    vault_url: str
    secret_name: str


@dataclass(frozen=True)
class ServerConfig:
    """Where the work item service lives and how to authenticate to it."""

    collection_uri: str
    project: str
    work_item_template: str
    cache_query: str
    names_list_field_name: str = ""
    pat_file: str = ""
    pat_vault_secret: VaultSecretRef | None = None
    encryption_scope: EncryptionScope = EncryptionScope.USER
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class WorkItemSettings:
    """How incoming conversations map onto work items."""

    conversation_index_field_name: str
    attachment_comment: str = DEFAULT_ATTACHMENT_COMMENT


@dataclass(frozen=True)
class InstanceConfig:
    """One mailbox-to-project instance."""

    name: str
    server: ServerConfig
    work_item_settings: WorkItemSettings


def configure_logging(level: int | str = logging.INFO) -> None:
    """Apply the standard log format. Hosts call this; importing never does."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def validate_config(config: InstanceConfig | None) -> None:
    """Raise BadConfigError for the first missing required value."""
    if config is None:
        raise BadConfigError("config", "Config must not be None")

    server = config.server
    _validate_config_string(server.collection_uri, "server.collection_uri")
    _validate_config_string(server.project, "server.project")
    _validate_config_string(server.work_item_template, "server.work_item_template")
    _validate_config_string(server.cache_query, "server.cache_query")
    _validate_config_string(
        config.work_item_settings.conversation_index_field_name,
        "work_item_settings.conversation_index_field_name",
    )

    if not (server.pat_file or "").strip() and server.pat_vault_secret is None:
        raise BadConfigError(
            "server.pat_file",
            "No credential source configured: set server.pat_file or server.pat_vault_secret",
        )
    if server.pat_vault_secret is not None:
        _validate_config_string(server.pat_vault_secret.vault_url, "server.pat_vault_secret.vault_url")
        _validate_config_string(server.pat_vault_secret.secret_name, "server.pat_vault_secret.secret_name")


def _validate_config_string(value: str | None, config_value_name: str) -> None:
    if value is None or not str(value).strip():
        raise BadConfigError(config_value_name)


def load_config(path: str | Path) -> InstanceConfig:
    """
    Load an instance configuration from a YAML file.

    Layout:

        name: support-inbox
        server:
          collection_uri: https://dev.azure.com/contoso
          project: Support
          work_item_template: Bug
          cache_query: "SELECT [System.Id] FROM WorkItems WHERE ..."
          pat_file: /etc/mail2workitem/pat.bin
          encryption_scope: machine
        work_item_settings:
          conversation_index_field_name: Conversation ID

    The result is not validated; the manager validates on construction.
    """
    path = Path(path)
    if not path.exists():
        raise BadConfigError(str(path), f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise BadConfigError(str(path), f"Invalid YAML in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise BadConfigError(str(path), f"Config file must contain a mapping: {path}")
    return config_from_dict(data)


def _section(data: dict[str, Any], key: str, config_value_name: str) -> dict[str, Any]:
    value = data.get(key) or {}
    if not isinstance(value, dict):
        raise BadConfigError(config_value_name, f"{config_value_name} must be a mapping")
    return value


def config_from_dict(data: dict[str, Any]) -> InstanceConfig:
    """Build an InstanceConfig from plain mappings (e.g. parsed YAML)."""
    server = _section(data, "server", "server")
    settings = _section(data, "work_item_settings", "work_item_settings")

    vault = _section(server, "pat_vault_secret", "server.pat_vault_secret")
    vault_ref = None
    if vault:
        vault_ref = VaultSecretRef(
            vault_url=str(vault.get("vault_url") or ""),
            secret_name=str(vault.get("secret_name") or ""),
        )

    scope_value = str(server.get("encryption_scope") or EncryptionScope.USER.value).lower()
    try:
        scope = EncryptionScope(scope_value)
    except ValueError as e:
        raise BadConfigError(
            "server.encryption_scope", f"Unknown encryption scope: {scope_value}"
        ) from e

    try:
        timeout_seconds = float(server.get("timeout_seconds") or DEFAULT_TIMEOUT_SECONDS)
    except (TypeError, ValueError) as e:
        raise BadConfigError(
            "server.timeout_seconds", f"timeout_seconds must be a number: {server.get('timeout_seconds')!r}"
        ) from e

    return InstanceConfig(
        name=str(data.get("name") or ""),
        server=ServerConfig(
            collection_uri=str(server.get("collection_uri") or ""),
            project=str(server.get("project") or ""),
            work_item_template=str(server.get("work_item_template") or ""),
            cache_query=str(server.get("cache_query") or ""),
            names_list_field_name=str(server.get("names_list_field_name") or ""),
            pat_file=str(server.get("pat_file") or ""),
            pat_vault_secret=vault_ref,
            encryption_scope=scope,
            timeout_seconds=timeout_seconds,
        ),
        work_item_settings=WorkItemSettings(
            conversation_index_field_name=str(settings.get("conversation_index_field_name") or ""),
            attachment_comment=str(settings.get("attachment_comment") or DEFAULT_ATTACHMENT_COMMENT),
        ),
    )
