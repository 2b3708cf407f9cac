"""
Credentials Management
======================

Secret retrieval for the personal access token (PAT) used against the work
item service, and the ordered list of credential candidates built from
configuration.

Sources, in priority order:
1. PAT file, optionally Fernet-encrypted with a key chosen by the
   encryption scope
2. Azure Key Vault secret, read through the Azure CLI

INV-STARTUP-04: Secret values are held in memory only and never logged.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from mail2workitem.config import ServerConfig, VaultSecretRef
from mail2workitem.contracts import (
    CredentialCandidate,
    EncryptionScope,
    SecretUnavailableError,
)

KEY_PATHS = {
    EncryptionScope.USER: Path.home() / ".mail2workitem" / "secret.key",
    EncryptionScope.MACHINE: Path("/etc/mail2workitem/secret.key"),
}


def read_secret_file(path: str, scope: EncryptionScope) -> str:
    """
    Read a PAT from disk.

    With EncryptionScope.NONE the file holds the token in plain text;
    otherwise it holds a Fernet token decrypted with the scope's key file.

    ERRORS:
    - SecretUnavailableError: file or key missing, or decryption failed
    """
    try:
        raw = Path(path).read_bytes()
    except OSError as e:
        raise SecretUnavailableError(f"Cannot read secret file {path}") from e

    if scope is EncryptionScope.NONE:
        secret = raw.decode("utf-8").strip()
    else:
        secret = _decrypt(raw.strip(), scope)

    if not secret:
        raise SecretUnavailableError(f"Secret file {path} is empty")
    return secret


def _decrypt(token: bytes, scope: EncryptionScope) -> str:
    key_path = KEY_PATHS[scope]
    try:
        key = key_path.read_bytes().strip()
    except OSError as e:
        raise SecretUnavailableError(f"No {scope.value} encryption key at {key_path}") from e
    try:
        return Fernet(key).decrypt(token).decode("utf-8").strip()
    except (InvalidToken, ValueError) as e:
        raise SecretUnavailableError(f"Cannot decrypt secret with {scope.value} key") from e


def read_vault_secret(ref: VaultSecretRef) -> str:
    """
    Read a secret from Azure Key Vault via the az CLI.

    PRE: az CLI is available in PATH and logged in

    ERRORS:
    - SecretUnavailableError: CLI missing, timed out, or secret not found
    """
    secret_id = f"{ref.vault_url.rstrip('/')}/secrets/{ref.secret_name}"
    try:
        result = subprocess.run(
            ["az", "keyvault", "secret", "show", "--id", secret_id, "-o", "json"],
            capture_output=True,
            text=True,
            timeout=60,
        )

        if result.returncode != 0:
            raise SecretUnavailableError(f"Key Vault secret {ref.secret_name} not available")

        data = json.loads(result.stdout)
        secret = (data.get("value") or "").strip()
    except subprocess.TimeoutExpired as e:
        raise SecretUnavailableError("Key Vault lookup timed out") from e
    except json.JSONDecodeError as e:
        raise SecretUnavailableError("Invalid Key Vault response format") from e
    except FileNotFoundError as e:
        raise SecretUnavailableError("az CLI not found in PATH") from e

    if not secret:
        raise SecretUnavailableError(f"Key Vault secret {ref.secret_name} is empty")
    return secret


def resolve_credential_candidates(server: ServerConfig) -> list[CredentialCandidate]:
    """
    Ordered credential candidates for the configured sources.

    Secrets are not read here; each candidate reads its own source when the
    connection policy gets to it.
    """
    candidates = []

    pat_file = (server.pat_file or "").strip()
    if pat_file:
        scope = server.encryption_scope
        candidates.append(
            CredentialCandidate(
                source=f"PAT file {pat_file}",
                resolve=lambda: read_secret_file(pat_file, scope),
            )
        )

    vault_secret = server.pat_vault_secret
    if vault_secret is not None:
        candidates.append(
            CredentialCandidate(
                source=f"Key Vault secret {vault_secret.secret_name}",
                resolve=lambda: read_vault_secret(vault_secret),
            )
        )

    return candidates
