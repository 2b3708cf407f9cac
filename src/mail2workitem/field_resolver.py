"""
Field and name resolution against the work item type schema.
"""

from __future__ import annotations

import email.utils
from types import MappingProxyType
from typing import Iterable

from mail2workitem.contracts import FieldDefinition


class FieldResolver:
    """Case-insensitive human field name -> reference name (e.g. "Title" -> "System.Title")."""

    def __init__(self, fields: Iterable[FieldDefinition]) -> None:
        self._formal_field_names = MappingProxyType(
            {f.name.lower(): f.reference_name for f in fields}
        )

    def resolve(self, name: str | None) -> str | None:
        """Return the reference name, or None when the type has no such field."""
        if not name:
            return None
        return self._formal_field_names.get(name.lower())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.resolve(name) is not None

    def __len__(self) -> int:
        return len(self._formal_field_names)

    @property
    def field_names(self) -> MappingProxyType:
        return self._formal_field_names


class NameResolver:
    """
    Maps a sender to one of the allowed values of the names-list field.

    Allowed values usually look like "Jane Doe <jane@contoso.com>" or a
    plain display name.
    """

    def __init__(self, names: Iterable[str]) -> None:
        self._names = tuple(n for n in names if n and n.strip())

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    def resolve(self, alias: str | None, display_name: str | None = None) -> str | None:
        """
        Display name match wins (case-insensitive); otherwise match the alias
        against the local part of the embedded address.
        """
        if display_name:
            wanted = display_name.strip().lower()
            for name in self._names:
                shown, _address = email.utils.parseaddr(name)
                if name.strip().lower() == wanted or (shown and shown.lower() == wanted):
                    return name

        if alias:
            wanted = alias.strip().lower()
            for name in self._names:
                _shown, address = email.utils.parseaddr(name)
                if "@" in address and address.split("@", 1)[0].lower() == wanted:
                    return name

        return None
