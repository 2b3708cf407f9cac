"""
Connection Establishment
========================

Tries each credential candidate in priority order and returns the first
session that opens. There is no retry, no backoff and no re-authentication
later: the session returned here is used for the manager's whole life.

INV-STARTUP-01: Candidates are attempted strictly in order
INV-STARTUP-02: Never falls back to an unauthenticated session
INV-STARTUP-04: Tokens are never logged
"""

from __future__ import annotations

import logging
from typing import Callable

from mail2workitem.config import InstanceConfig
from mail2workitem.contracts import ConnectionFailedError, CredentialCandidate, Session
from mail2workitem.credentials import resolve_credential_candidates
from mail2workitem.vss_client import open_session

logger = logging.getLogger(__name__)

SessionOpener = Callable[[str, str], Session]
CredentialResolver = Callable[..., list[CredentialCandidate]]


def connect(
    config: InstanceConfig,
    *,
    session_opener: SessionOpener | None = None,
    credential_resolver: CredentialResolver = resolve_credential_candidates,
) -> Session:
    """
    Open a session with the first credential candidate that works.

    POST-STARTUP-01: Returned session was opened by the first successful candidate
    POST-STARTUP-02: Later candidates are never resolved

    ERRORS:
    - ConnectionFailedError: every candidate failed (or there were none)
    """
    server = config.server
    opener = session_opener or (
        lambda uri, pat: open_session(uri, pat, timeout=server.timeout_seconds)
    )

    candidates = credential_resolver(server)
    last_error: Exception | None = None

    for candidate in candidates:
        try:
            logger.info(f"Connecting to {server.collection_uri} using {candidate.source}")
            session = opener(server.collection_uri, candidate.resolve())
            logger.info(f"Successfully connected using {candidate.source}")
            return session
        except Exception as e:
            last_error = e
            logger.warning(
                f"Connection attempt using {candidate.source} failed: {e.__class__.__name__}: {e}"
            )

    logger.error(f"All {len(candidates)} connection attempts to {server.collection_uri} failed")
    raise ConnectionFailedError(f"Cannot connect to {server.collection_uri}") from last_error
