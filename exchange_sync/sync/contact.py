"""
Contact models for Exchange contact synchronization.

Provides the two native contact shapes and the functions that cross between
them:
- LocalContact: address-book card with a "properties" map
- RemoteContact: Exchange contact with camelCase fields
- Matching keys for pairing a local card with a remote contact
- Field comparison in both directions
- Conversion that copies only fields present on the source
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any, Optional

from exchange_sync.sync.diff import FieldPair, needs_update, remote_needs_local_update

# Remote container id for the mailbox's default contacts folder
REMOTE_CONTACTS_FOLDER = "contacts"

# Tracked fields: (local property, remote field)
CONTACT_FIELDS = (
    FieldPair("DisplayName", "displayName"),
    FieldPair("FirstName", "firstName"),
    FieldPair("LastName", "lastName"),
    FieldPair("PrimaryEmail", "email"),
    FieldPair("WorkPhone", "phone"),
    FieldPair("Company", "company"),
)

# Every converted field: python attribute -> (local property, remote field)
_FIELD_MAP = {
    "display_name": ("DisplayName", "displayName"),
    "first_name": ("FirstName", "firstName"),
    "last_name": ("LastName", "lastName"),
    "primary_email": ("PrimaryEmail", "email"),
    "work_phone": ("WorkPhone", "phone"),
    "company": ("Company", "company"),
    "mobile_phone": ("CellularNumber", "mobilePhone"),
    "home_phone": ("HomePhone", "homePhone"),
    "work_address": ("WorkAddress", "workAddress"),
    "home_address": ("HomeAddress", "homeAddress"),
    "notes": ("Notes", "notes"),
}


@dataclass
class _ContactFields:
    display_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    primary_email: Optional[str] = None
    work_phone: Optional[str] = None
    company: Optional[str] = None
    mobile_phone: Optional[str] = None
    home_phone: Optional[str] = None
    work_address: Optional[str] = None
    home_address: Optional[str] = None
    notes: Optional[str] = None

    def present_fields(self) -> dict[str, str]:
        """Attribute names and values of every non-empty field."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(_ContactFields)
            if getattr(self, f.name)
        }


@dataclass
class LocalContact(_ContactFields):
    """
    Address-book card in the local store.

    Native shape::

        {"id": "card-1", "properties": {"DisplayName": "A", "PrimaryEmail": "a@x.com"}}
    """

    id: Optional[str] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "LocalContact":
        properties = data.get("properties") or {}
        values = {
            attr: properties.get(local_name)
            for attr, (local_name, _) in _FIELD_MAP.items()
        }
        return cls(id=data.get("id"), **values)

    def properties(self) -> dict[str, str]:
        return {
            _FIELD_MAP[attr][0]: value for attr, value in self.present_fields().items()
        }

    def to_native(self) -> dict[str, Any]:
        data: dict[str, Any] = {"properties": self.properties()}
        if self.id:
            data["id"] = self.id
        return data


@dataclass
class RemoteContact(_ContactFields):
    """
    Contact in the Exchange mailbox.

    Native shape::

        {"id": "AAMk-1", "displayName": "A", "email": "a@x.com", "phone": "555"}
    """

    id: Optional[str] = None

    @classmethod
    def from_native(cls, data: dict[str, Any]) -> "RemoteContact":
        values = {
            attr: data.get(remote_name)
            for attr, (_, remote_name) in _FIELD_MAP.items()
        }
        return cls(id=data.get("id"), **values)

    def to_native(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            _FIELD_MAP[attr][1]: value for attr, value in self.present_fields().items()
        }
        if self.id:
            data["id"] = self.id
        return data


def _contact_key(
    email: Optional[str],
    first_name: Optional[str],
    last_name: Optional[str],
    display_name: Optional[str],
) -> str:
    if email and email.strip():
        return email.strip().lower()
    return f"{first_name or ''} {last_name or ''} {display_name or ''}".strip().lower()


def local_contact_key(contact: LocalContact) -> str:
    """
    Matching key for a local card.

    Primary email lowercased if present; otherwise "first last display"
    trimmed and lowercased.
    """
    return _contact_key(
        contact.primary_email,
        contact.first_name,
        contact.last_name,
        contact.display_name,
    )


def remote_contact_key(contact: RemoteContact) -> str:
    """Matching key for a remote contact; same rules as local_contact_key()."""
    return _contact_key(
        contact.primary_email,
        contact.first_name,
        contact.last_name,
        contact.display_name,
    )


def contact_needs_update(local: LocalContact, remote: RemoteContact) -> bool:
    """True if the local card differs from the remote contact in a tracked field."""
    return needs_update(local.properties(), remote.to_native(), CONTACT_FIELDS)


def contact_push_needs_update(local: LocalContact, remote: RemoteContact) -> bool:
    """True if the remote contact should take a non-blank local value."""
    return remote_needs_local_update(
        local.properties(), remote.to_native(), CONTACT_FIELDS
    )


def contact_to_local(remote: RemoteContact) -> LocalContact:
    """Convert a remote contact into a local card (present fields only)."""
    return LocalContact(**remote.present_fields())


def contact_to_remote(local: LocalContact) -> RemoteContact:
    """Convert a local card into a remote contact (present fields only)."""
    return RemoteContact(**local.present_fields())


__all__ = [
    "CONTACT_FIELDS",
    "REMOTE_CONTACTS_FOLDER",
    "LocalContact",
    "RemoteContact",
    "local_contact_key",
    "remote_contact_key",
    "contact_needs_update",
    "contact_push_needs_update",
    "contact_to_local",
    "contact_to_remote",
]
