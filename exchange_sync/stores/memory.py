"""
In-memory RemoteStore and LocalStore implementations.

Used by the test suite and by dry runs from the CLI when no store_factory is
configured. The remote side mimics an Exchange mailbox closely enough for
the engines: offset paging, provider-assigned "AAMk-" ids, calendar window
filtering on the "start" field, and injectable failures.
"""

from __future__ import annotations

import copy
import itertools
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

from exchange_sync.api.stores import (
    ContainerKind,
    CreateResult,
    ItemResult,
    LocalContainer,
    OperationResult,
    Page,
)
from exchange_sync.sync.account import Account
from exchange_sync.utils.timeutil import parse_datetime

DEFAULT_REMOTE_FOLDERS = (
    ("inbox", "Inbox"),
    ("sentitems", "Sent Items"),
    ("drafts", "Drafts"),
    ("deleteditems", "Deleted Items"),
)


class InMemoryRemoteStore:
    """
    Fake Exchange mailbox keyed by container id.

    Attributes:
        containers: container id -> list of item dicts (each with an "id")
        folders: mail folder dicts ({"id", "displayName"})
        calls: (operation, container_or_item_id) tuples, in call order
        authorizations: Authorization header seen on each call
        failures: operation name -> list of exceptions raised on the next
            calls, one per call
    """

    def __init__(self, folders: Optional[list[dict[str, str]]] = None):
        self.containers: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.folders: list[dict[str, str]] = (
            folders
            if folders is not None
            else [
                {"id": folder_id, "displayName": name}
                for folder_id, name in DEFAULT_REMOTE_FOLDERS
            ]
        )
        self.calls: list[tuple[str, str]] = []
        self.authorizations: list[str] = []
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self._ids = itertools.count(1)

    # Test helpers

    def add_item(self, container_id: str, item: dict[str, Any]) -> str:
        """Seed an item; assigns an id when the item has none."""
        stored = copy.deepcopy(item)
        stored.setdefault("id", self._next_id())
        self.containers[container_id].append(stored)
        return stored["id"]

    def fail_next(self, operation: str, *errors: BaseException) -> None:
        self.failures[operation].extend(errors)

    def find(self, item_id: str) -> Optional[dict[str, Any]]:
        for items in self.containers.values():
            for item in items:
                if item.get("id") == item_id:
                    return item
        return None

    def _next_id(self) -> str:
        return f"AAMk-{next(self._ids)}"

    def _enter(self, operation: str, target: str, authorization: str) -> None:
        self.calls.append((operation, target))
        self.authorizations.append(authorization)
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    # RemoteStore

    async def list_items(
        self,
        account: Account,
        container_id: str,
        *,
        limit: int,
        offset: int,
        window: Optional[tuple[datetime, datetime]] = None,
        authorization: str,
    ) -> Page:
        self._enter("list_items", container_id, authorization)
        items = self.containers.get(container_id, [])
        if window is not None:
            start, end = window
            items = [
                item
                for item in items
                if (when := parse_datetime(item.get("start"))) is not None
                and start <= when < end
            ]
        return Page(
            success=True,
            items=[copy.deepcopy(item) for item in items[offset : offset + limit]],
        )

    async def get_item(
        self, account: Account, item_id: str, *, authorization: str
    ) -> ItemResult:
        self._enter("get_item", item_id, authorization)
        item = self.find(item_id)
        if item is None:
            return ItemResult(success=False)
        return ItemResult(success=True, item=copy.deepcopy(item))

    async def create_item(
        self,
        account: Account,
        container_id: str,
        item: dict[str, Any],
        *,
        authorization: str,
    ) -> CreateResult:
        self._enter("create_item", container_id, authorization)
        stored = copy.deepcopy(item)
        stored["id"] = self._next_id()
        self.containers[container_id].append(stored)
        return CreateResult(success=True, id=stored["id"])

    async def update_item(
        self,
        account: Account,
        item_id: str,
        patch: dict[str, Any],
        *,
        authorization: str,
    ) -> OperationResult:
        self._enter("update_item", item_id, authorization)
        item = self.find(item_id)
        if item is None:
            return OperationResult(success=False, error_code="ErrorItemNotFound")
        item.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
        return OperationResult(success=True)

    async def delete_item(
        self, account: Account, item_id: str, *, authorization: str
    ) -> OperationResult:
        self._enter("delete_item", item_id, authorization)
        for items in self.containers.values():
            for index, item in enumerate(items):
                if item.get("id") == item_id:
                    del items[index]
                    return OperationResult(success=True)
        return OperationResult(success=False, error_code="ErrorItemNotFound")

    async def list_folders(self, account: Account, *, authorization: str) -> Page:
        self._enter("list_folders", account.id, authorization)
        return Page(success=True, items=copy.deepcopy(self.folders))


class InMemoryLocalStore:
    """
    Fake mail-client store: containers per account and items per container.

    update_item merges a "properties" mapping into the stored one and
    replaces every other top-level field. With imports_raw_messages set,
    synced mail also carries its RFC 5322 bytes under "rawMessage".
    """

    def __init__(self, imports_raw_messages: bool = False) -> None:
        self.imports_raw_messages = imports_raw_messages
        self.containers: dict[str, LocalContainer] = {}
        self.items: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.failures: dict[str, list[BaseException]] = defaultdict(list)
        self._ids = itertools.count(1)

    def fail_next(self, operation: str, *errors: BaseException) -> None:
        self.failures[operation].extend(errors)

    def _check(self, operation: str) -> None:
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def add_item(self, container_id: str, item: dict[str, Any]) -> str:
        stored = copy.deepcopy(item)
        stored.setdefault("id", f"local-{next(self._ids)}")
        self.items[container_id].append(stored)
        return stored["id"]

    def find_container(self, name: str) -> Optional[LocalContainer]:
        for container in self.containers.values():
            if container.name == name:
                return container
        return None

    def find(self, item_id: str) -> Optional[dict[str, Any]]:
        for items in self.items.values():
            for item in items:
                if item.get("id") == item_id:
                    return item
        return None

    async def list_containers(
        self, account: Account, kind: ContainerKind
    ) -> list[LocalContainer]:
        self._check("list_containers")
        return [
            c
            for c in self.containers.values()
            if c.kind == kind and c.account_id in (None, account.id)
        ]

    async def create_container(
        self, account: Account, name: str, kind: ContainerKind
    ) -> LocalContainer:
        self._check("create_container")
        container = LocalContainer(
            id=f"{kind.value}-{next(self._ids)}",
            name=name,
            kind=kind,
            account_id=account.id,
        )
        self.containers[container.id] = container
        return container

    async def list_items(self, container_id: str) -> list[dict[str, Any]]:
        self._check("list_items")
        return [copy.deepcopy(item) for item in self.items.get(container_id, [])]

    async def create_item(self, container_id: str, item: dict[str, Any]) -> str:
        self._check("create_item")
        stored = copy.deepcopy(item)
        stored["id"] = f"local-{next(self._ids)}"
        self.items[container_id].append(stored)
        return stored["id"]

    async def update_item(self, item_id: str, patch: dict[str, Any]) -> None:
        self._check("update_item")
        item = self.find(item_id)
        if item is None:
            raise KeyError(f"Local item {item_id} not found")
        for key, value in copy.deepcopy(patch).items():
            if key == "id":
                continue
            if key == "properties" and isinstance(item.get("properties"), dict):
                item["properties"].update(value)
            else:
                item[key] = value


def create_memory_stores() -> tuple[InMemoryRemoteStore, InMemoryLocalStore]:
    """Store factory returning an empty in-memory remote/local pair."""
    return InMemoryRemoteStore(), InMemoryLocalStore()


__all__ = ["InMemoryRemoteStore", "InMemoryLocalStore", "create_memory_stores"]
