"""
Work Item Manager
=================

Creates and modifies work items for incoming conversations and keeps the
conversation cache consistent with what it creates.

INVARIANTS ENFORCED:
- INV-STARTUP-03: Configuration is validated before any network call
- INV-CREATE-01: Unknown field names are left out of patches
- INV-MODIFY-01 / INV-ATTACH-01: Non-positive ids make no network call
- INV-ATTACH-02: Attachment failures are isolated per file

Comment bodies and secrets are never logged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any, Union

from mail2workitem.cache import WorkItemCache
from mail2workitem.config import InstanceConfig, validate_config
from mail2workitem.connection import CredentialResolver, SessionOpener, connect
from mail2workitem.contracts import (
    AttachmentError,
    BadConfigError,
    EmptyFieldValuesError,
    NotConnectedError,
    PatchOperation,
    Session,
    TeamIteration,
    TeamSettings,
)
from mail2workitem.credentials import resolve_credential_candidates
from mail2workitem.field_resolver import FieldResolver, NameResolver

logger = logging.getLogger(__name__)

ASSIGNED_TO_FIELD = "Assigned To"
ITERATION_PATH_FIELD = "Iteration Path"
HISTORY_FIELD = "History"
HISTORY_REFERENCE_NAME = "System.History"

FieldValues = Union[Mapping[str, str], Iterable[tuple[str, str]]]


class WorkItemManager:
    """
    One manager per configured instance.

    Construction connects, reads the project schema and team settings and
    populates the conversation cache. The session is held until close().
    """

    def __init__(
        self,
        config: InstanceConfig,
        *,
        session_opener: SessionOpener | None = None,
        credential_resolver: CredentialResolver = resolve_credential_candidates,
    ) -> None:
        validate_config(config)
        self._config = config

        self._session: Session | None = connect(
            config,
            session_opener=session_opener,
            credential_resolver=credential_resolver,
        )
        try:
            self._initialize()
        except Exception:
            self.close()
            raise

    def _initialize(self) -> None:
        session = self._require_session()
        server = self._config.server

        logger.info(f"Getting project {server.project}")
        self._project = session.get_project(server.project)

        logger.info(f"Getting work item type {server.work_item_template}")
        template = server.work_item_template.lower()
        work_item_type = next(
            (wit for wit in session.get_work_item_types(self._project.id) if wit.name.lower() == template),
            None,
        )
        if work_item_type is None:
            raise BadConfigError(
                "server.work_item_template",
                f"Work item type {server.work_item_template} not found in project {server.project}",
            )
        self._work_item_type = work_item_type
        self._field_resolver = FieldResolver(work_item_type.fields)

        logger.info("Getting team settings")
        self._team_settings: TeamSettings | None = session.get_team_settings(self._project.id)
        self._current_iteration: TeamIteration | None = None
        if self._team_settings and self._team_settings.default_iteration_id:
            # The path embedded in team settings does not always match the
            # iteration's real path, so fetch the iteration itself
            self._current_iteration = session.get_team_iteration(
                self._project.id, self._team_settings.default_iteration_id
            )

        self._cache = WorkItemCache(
            session,
            self._field_resolver,
            self._config.work_item_settings.conversation_index_field_name,
        )
        self._cache.populate(server.cache_query)

        self._name_resolver = self._init_name_resolver()

    def _init_name_resolver(self) -> NameResolver:
        field_name = self._config.server.names_list_field_name
        reference_name = self._field_resolver.resolve(field_name)
        if not reference_name:
            if field_name:
                logger.warning(f"Names list field {field_name} not found in {self._work_item_type.name}")
            return NameResolver([])
        names = self._require_session().get_field_allowed_values(
            self._project.id, self._work_item_type.name, reference_name
        )
        return NameResolver(names)

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def work_items_cache(self) -> WorkItemCache:
        return self._cache

    @property
    def field_resolver(self) -> FieldResolver:
        return self._field_resolver

    @property
    def current_iteration(self) -> TeamIteration | None:
        return self._current_iteration

    def get_name_resolver(self) -> NameResolver:
        return self._name_resolver

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Release the session. Later operations raise NotConnectedError."""
        if self._session is not None:
            try:
                self._session.close()
            finally:
                self._session = None
                logger.info("Disconnected from work item service")

    def __enter__(self) -> WorkItemManager:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _require_session(self) -> Session:
        if self._session is None:
            raise NotConnectedError("Work item manager is closed")
        return self._session

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def create_work_item(self, values: FieldValues | None) -> int:
        """
        Create a work item and cache it.

        POST-CREATE-03: The current-iteration macro becomes the concrete path
        POST-CREATE-04: "Assigned To" is re-applied as the last operation

        ERRORS:
        - EmptyFieldValuesError: values is None or empty
        """
        items = _field_items(values)
        if not items:
            raise EmptyFieldValuesError("Must supply field values when creating new work item")
        session = self._require_session()

        patch = []
        assigned_to = None
        for name, value in items:
            if name.lower() == ITERATION_PATH_FIELD.lower():
                value = self._expand_iteration_macro(value)
            if name.lower() == ASSIGNED_TO_FIELD.lower():
                assigned_to = (name, value)
            self._add_field_operation(patch, name, value)

        # Changing some fields (e.g. "Activated By") resets "Assigned To" on
        # the server; applying it again last keeps the requested value
        if assigned_to is not None:
            self._add_field_operation(patch, *assigned_to)

        work_item = session.create_work_item(
            patch, str(self._project.id), self._work_item_type.name
        )
        logger.info(f"Created work item {work_item.id} with {len(patch)} field operations")

        self._cache.cache_work_item(work_item)
        return work_item.id

    def modify_work_item(self, work_item_id: int, comment: str | None, values: FieldValues | None) -> None:
        """
        Add a comment and apply field changes in a single update.

        POST-MODIFY-01: History operation first, then fields in order
        INV-MODIFY-01: work_item_id <= 0 is a no-op
        """
        if work_item_id <= 0:
            return
        session = self._require_session()

        history = (comment or "").replace("\n", "<br>")
        history_field = self._field_resolver.resolve(HISTORY_FIELD) or HISTORY_REFERENCE_NAME
        patch = [PatchOperation(op="add", path=f"/fields/{history_field}", value=history)]
        for name, value in _field_items(values):
            self._add_field_operation(patch, name, value)

        session.update_work_item(patch, work_item_id)
        logger.info(f"Updated work item {work_item_id} with {len(patch)} operations")

    def attach_files(self, work_item_id: int, paths: Iterable[str]) -> None:
        """
        Upload files and link each to the work item.

        INV-ATTACH-01: work_item_id <= 0 is a no-op
        INV-ATTACH-02: Every file is attempted even if earlier ones fail

        ERRORS:
        - AttachmentError: after the batch, when any file failed
        """
        if work_item_id <= 0:
            return
        session = self._require_session()
        comment = self._config.work_item_settings.attachment_comment

        failed = []
        for path in paths:
            try:
                attachment = session.create_attachment(path)
                patch = [
                    PatchOperation(
                        op="add",
                        path="/relations/-",
                        value={
                            "rel": "AttachedFile",
                            "url": attachment.url,
                            "attributes": {"comment": comment},
                        },
                    )
                ]
                session.update_work_item(patch, work_item_id)
                logger.info(f"Attached file to work item {work_item_id}")
            except NotConnectedError:
                raise
            except Exception as e:
                logger.error(f"Attaching {path} to work item {work_item_id} failed: {e}")
                failed.append(str(path))

        if failed:
            raise AttachmentError(
                f"{len(failed)} file(s) could not be attached to work item {work_item_id}",
                failed_paths=failed,
            )

    def cache_work_item(self, work_item_id: int) -> None:
        """Make sure a work item known by id is in the conversation cache."""
        self._require_session()
        self._cache.cache_by_id(work_item_id)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _expand_iteration_macro(self, value: str) -> str:
        if self._team_settings is None or self._current_iteration is None:
            return value
        macro = self._team_settings.default_iteration_macro or "@CurrentIteration"
        if isinstance(value, str) and value.strip().lower() == macro.lower():
            return self._current_iteration.path
        return value

    def _add_field_operation(self, patch: list[PatchOperation], name: str, value: Any) -> None:
        reference_name = self._field_resolver.resolve(name)
        if reference_name is None:
            logger.debug(f"Field {name} is not part of {self._work_item_type.name}; skipping")
            return
        patch.append(PatchOperation(op="add", path=f"/fields/{reference_name}", value=value))


def _field_items(values: FieldValues | None) -> list[tuple[str, Any]]:
    if values is None:
        return []
    if isinstance(values, Mapping):
        return list(values.items())
    return list(values)
