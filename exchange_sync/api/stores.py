"""
Capability interfaces for the collaborators the sync core talks to.

The sync engines never speak EWS or touch the mail client directly. They go
through three narrow capabilities:

- RemoteStore: item CRUD and listing against the Exchange mailbox
- LocalStore: containers and items in the mail client's local store
- TokenProvider: produces the Authorization header for an account

Concrete implementations live outside the core (see
exchange_sync.stores.memory for the in-memory pair used by tests and dry
runs).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from exchange_sync.sync.account import Account


class ContainerKind(str, Enum):
    """Kind of local container an engine writes into."""

    ADDRESS_BOOK = "address_book"
    CALENDAR = "calendar"
    FOLDER = "folder"


@dataclass
class Page:
    """One page of remote items returned by RemoteStore.list_items."""

    success: bool
    items: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ItemResult:
    """Result of fetching a single remote item."""

    success: bool
    item: dict[str, Any] | None = None


@dataclass
class CreateResult:
    """Result of creating a remote item; id is the provider-assigned id."""

    success: bool
    id: str | None = None


@dataclass
class OperationResult:
    """Result of an update or delete; error_code carries the EWS code on failure."""

    success: bool
    error_code: str | None = None


@dataclass
class LocalContainer:
    """An address book, calendar, or mail folder in the local store."""

    id: str
    name: str
    kind: ContainerKind
    account_id: str | None = None


@runtime_checkable
class RemoteStore(Protocol):
    """Item-level access to the remote Exchange mailbox."""

    async def list_items(
        self,
        account: Account,
        container_id: str,
        *,
        limit: int,
        offset: int,
        window: tuple[datetime, datetime] | None = None,
        authorization: str,
    ) -> Page: ...

    async def get_item(
        self, account: Account, item_id: str, *, authorization: str
    ) -> ItemResult: ...

    async def create_item(
        self,
        account: Account,
        container_id: str,
        item: dict[str, Any],
        *,
        authorization: str,
    ) -> CreateResult: ...

    async def update_item(
        self,
        account: Account,
        item_id: str,
        patch: dict[str, Any],
        *,
        authorization: str,
    ) -> OperationResult: ...

    async def delete_item(
        self, account: Account, item_id: str, *, authorization: str
    ) -> OperationResult: ...

    async def list_folders(
        self, account: Account, *, authorization: str
    ) -> Page: ...


@runtime_checkable
class LocalStore(Protocol):
    """
    Container and item access to the mail client's local store.

    Stores that import whole messages set an imports_raw_messages attribute;
    mail items then carry the rendered message bytes under "rawMessage".
    """

    async def list_containers(
        self, account: Account, kind: ContainerKind
    ) -> list[LocalContainer]: ...

    async def create_container(
        self, account: Account, name: str, kind: ContainerKind
    ) -> LocalContainer: ...

    async def list_items(self, container_id: str) -> list[dict[str, Any]]: ...

    async def create_item(self, container_id: str, item: dict[str, Any]) -> str: ...

    async def update_item(self, item_id: str, patch: dict[str, Any]) -> None: ...


@runtime_checkable
class TokenProvider(Protocol):
    """Produces an Authorization header value, refreshing tokens as needed."""

    async def get_authorization_header(self, account: Account) -> str: ...


__all__ = [
    "ContainerKind",
    "Page",
    "ItemResult",
    "CreateResult",
    "OperationResult",
    "LocalContainer",
    "RemoteStore",
    "LocalStore",
    "TokenProvider",
]
