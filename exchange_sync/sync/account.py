"""
Account model for Exchange mailbox synchronization.

An Account identifies one remote mailbox together with the settings the
sync engines need: how to reach and authenticate against the server, which
entity types to sync, and when each was last synced.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from exchange_sync.utils.timeutil import format_datetime, parse_datetime

AUTH_METHOD_OAUTH2 = "oauth2"
AUTH_METHOD_BASIC = "basic"
AUTH_METHODS = (AUTH_METHOD_OAUTH2, AUTH_METHOD_BASIC)

DEFAULT_SYNC_INTERVAL = 300  # seconds


class EntityType(str, Enum):
    """Kinds of data reconciled between the mailbox and the local store."""

    EMAIL = "email"
    CONTACTS = "contacts"
    CALENDAR = "calendar"


@dataclass
class ServerSettings:
    """Where the mailbox lives and how to authenticate against it."""

    ews_url: str = ""
    auth_method: str = AUTH_METHOD_OAUTH2
    username: Optional[str] = None


@dataclass
class AccountCredentials:
    """
    Secrets for an account.

    Held in memory and in the token store only; never written into the
    accounts file.
    """

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    password: Optional[str] = None

    def __repr__(self) -> str:
        return (
            f"AccountCredentials(access_token={'***' if self.access_token else None}, "
            f"refresh_token={'***' if self.refresh_token else None}, "
            f"expires_at={self.expires_at!r})"
        )


@dataclass
class SyncSettings:
    """Per-entity toggles and the periodic sync interval in seconds."""

    email: bool = True
    contacts: bool = True
    calendar: bool = True
    sync_interval: int = DEFAULT_SYNC_INTERVAL

    def is_enabled(self, entity_type: EntityType) -> bool:
        return bool(getattr(self, entity_type.value))


@dataclass
class LastSync:
    """Completion timestamp of the last successful sync per entity type."""

    email: Optional[datetime] = None
    contacts: Optional[datetime] = None
    calendar: Optional[datetime] = None

    def get(self, entity_type: EntityType) -> Optional[datetime]:
        return getattr(self, entity_type.value)

    def set(self, entity_type: EntityType, value: Optional[datetime]) -> None:
        setattr(self, entity_type.value, value)


@dataclass
class Account:
    """
    One remote Exchange/Office365 mailbox.

    Attributes:
        id: Opaque account identifier
        email: Mailbox address
        display_name: Human-readable name; local containers are named after it
        server: Endpoint and authentication method
        credentials: Tokens or password (not persisted with the account)
        sync_settings: Entity toggles and sync interval
        last_sync: Per-entity last successful sync timestamps
        local_account_id: Account id in the local mail client, used when
            creating local mail folders

    Usage:
        account = Account.from_dict(yaml_entry)
        for entity_type in account.enabled_entity_types():
            ...
        data = account.to_dict()
    """

    id: str
    email: str
    display_name: str = ""
    server: ServerSettings = field(default_factory=ServerSettings)
    credentials: AccountCredentials = field(default_factory=AccountCredentials)
    sync_settings: SyncSettings = field(default_factory=SyncSettings)
    last_sync: LastSync = field(default_factory=LastSync)
    local_account_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.display_name:
            self.display_name = self.email

    def enabled_entity_types(self) -> list[EntityType]:
        """Entity types whose sync toggle is on, in email/contacts/calendar order."""
        return [t for t in EntityType if self.sync_settings.is_enabled(t)]

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Account":
        """
        Create an Account from an accounts-file entry.

        Example entry::

            id: work
            email: me@example.com
            display_name: Work
            server:
              ews_url: https://outlook.office365.com/EWS/Exchange.asmx
              auth_method: oauth2
            sync_settings:
              email: true
              contacts: true
              calendar: false
              sync_interval: 600
            last_sync:
              contacts: "2024-06-01T10:00:00Z"

        Raises:
            ValueError: If id or email is missing or auth_method is unknown
        """
        account_id = data.get("id")
        email = data.get("email")
        if not account_id or not email:
            raise ValueError("Account entries require 'id' and 'email'")

        server_data = data.get("server") or {}
        auth_method = server_data.get("auth_method", AUTH_METHOD_OAUTH2)
        if auth_method not in AUTH_METHODS:
            raise ValueError(
                f"Unknown auth_method '{auth_method}' for account {account_id}"
            )
        server = ServerSettings(
            ews_url=server_data.get("ews_url", ""),
            auth_method=auth_method,
            username=server_data.get("username"),
        )

        settings_data = data.get("sync_settings") or {}
        sync_settings = SyncSettings(
            email=bool(settings_data.get("email", True)),
            contacts=bool(settings_data.get("contacts", True)),
            calendar=bool(settings_data.get("calendar", True)),
            sync_interval=int(
                settings_data.get("sync_interval", DEFAULT_SYNC_INTERVAL)
            ),
        )

        last_sync_data = data.get("last_sync") or {}
        last_sync = LastSync(
            email=parse_datetime(last_sync_data.get("email")),
            contacts=parse_datetime(last_sync_data.get("contacts")),
            calendar=parse_datetime(last_sync_data.get("calendar")),
        )

        return cls(
            id=str(account_id),
            email=str(email),
            display_name=data.get("display_name") or "",
            server=server,
            sync_settings=sync_settings,
            last_sync=last_sync,
            local_account_id=data.get("local_account_id"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the accounts file. Credentials are left out."""
        data: dict[str, Any] = {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "server": {
                "ews_url": self.server.ews_url,
                "auth_method": self.server.auth_method,
            },
            "sync_settings": {
                "email": self.sync_settings.email,
                "contacts": self.sync_settings.contacts,
                "calendar": self.sync_settings.calendar,
                "sync_interval": self.sync_settings.sync_interval,
            },
        }
        if self.server.username:
            data["server"]["username"] = self.server.username
        if self.local_account_id:
            data["local_account_id"] = self.local_account_id

        last_sync = {
            t.value: format_datetime(self.last_sync.get(t))
            for t in EntityType
            if self.last_sync.get(t) is not None
        }
        if last_sync:
            data["last_sync"] = last_sync
        return data


__all__ = [
    "Account",
    "AccountCredentials",
    "EntityType",
    "LastSync",
    "ServerSettings",
    "SyncSettings",
    "AUTH_METHOD_OAUTH2",
    "AUTH_METHOD_BASIC",
    "DEFAULT_SYNC_INTERVAL",
]
