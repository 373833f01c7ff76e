"""
Gateway to the remote Exchange mailbox.

ExchangeClient wraps a RemoteStore so that every call:
- obtains a fresh Authorization header from the TokenProvider
- runs through the RetryExecutor
- turns unsuccessful write results into RemoteStoreError
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from exchange_sync.api.errors import RemoteStoreError
from exchange_sync.api.retry import RetryExecutor
from exchange_sync.api.stores import (
    CreateResult,
    ItemResult,
    OperationResult,
    Page,
    RemoteStore,
    TokenProvider,
)

if TYPE_CHECKING:
    from exchange_sync.sync.account import Account

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ExchangeClient:
    """
    Authorized, retried access to a RemoteStore.

    Attributes:
        remote_store: The underlying RemoteStore capability
        token_provider: Supplies Authorization headers
        retry: RetryExecutor applied to every call

    Usage:
        client = ExchangeClient(remote_store, token_provider)
        page = await client.list_items(account, "contacts", limit=100, offset=0)
        new_id = await client.create_item(account, "contacts", item)
    """

    def __init__(
        self,
        remote_store: RemoteStore,
        token_provider: TokenProvider,
        retry: RetryExecutor | None = None,
    ):
        self.remote_store = remote_store
        self.token_provider = token_provider
        self.retry = retry or RetryExecutor()

    async def _call(
        self,
        account: Account,
        operation_name: str,
        call: Callable[[str], Awaitable[T]],
    ) -> T:
        async def attempt() -> T:
            # Re-read the header on each attempt so a refresh between
            # retries is picked up
            authorization = await self.token_provider.get_authorization_header(
                account
            )
            return await call(authorization)

        return await self.retry.execute(attempt, f"{operation_name}({account.id})")

    async def list_items(
        self,
        account: Account,
        container_id: str,
        *,
        limit: int,
        offset: int,
        window: tuple[datetime, datetime] | None = None,
    ) -> Page:
        """List one page of items; success=False is passed through."""
        logger.debug(
            f"Listing {container_id} for {account.email} "
            f"(offset={offset}, limit={limit})"
        )
        return await self._call(
            account,
            "list_items",
            lambda auth: self.remote_store.list_items(
                account,
                container_id,
                limit=limit,
                offset=offset,
                window=window,
                authorization=auth,
            ),
        )

    async def get_item(self, account: Account, item_id: str) -> dict[str, Any]:
        """
        Fetch one full item.

        Raises:
            RemoteStoreError: If the store reports failure or no item
        """
        result: ItemResult = await self._call(
            account,
            "get_item",
            lambda auth: self.remote_store.get_item(
                account, item_id, authorization=auth
            ),
        )
        if not result.success or result.item is None:
            raise RemoteStoreError(f"Failed to get item {item_id}")
        return result.item

    async def create_item(
        self, account: Account, container_id: str, item: dict[str, Any]
    ) -> str:
        """
        Create an item and return its provider-assigned id.

        Raises:
            RemoteStoreError: If the store reports failure
        """
        result: CreateResult = await self._call(
            account,
            "create_item",
            lambda auth: self.remote_store.create_item(
                account, container_id, item, authorization=auth
            ),
        )
        if not result.success:
            raise RemoteStoreError(f"Failed to create item in {container_id}")
        return result.id or ""

    async def update_item(
        self, account: Account, item_id: str, patch: dict[str, Any]
    ) -> None:
        """
        Apply a patch to an item.

        Raises:
            RemoteStoreError: If the store reports failure
        """
        result: OperationResult = await self._call(
            account,
            "update_item",
            lambda auth: self.remote_store.update_item(
                account, item_id, patch, authorization=auth
            ),
        )
        if not result.success:
            raise RemoteStoreError(
                f"Failed to update item {item_id}", code=result.error_code
            )

    async def delete_item(self, account: Account, item_id: str) -> None:
        """
        Delete an item.

        Raises:
            RemoteStoreError: If the store reports failure
        """
        result: OperationResult = await self._call(
            account,
            "delete_item",
            lambda auth: self.remote_store.delete_item(
                account, item_id, authorization=auth
            ),
        )
        if not result.success:
            raise RemoteStoreError(
                f"Failed to delete item {item_id}", code=result.error_code
            )

    async def list_folders(self, account: Account) -> list[dict[str, Any]]:
        """
        List the account's mail folders.

        Raises:
            RemoteStoreError: If the store reports failure
        """
        page: Page = await self._call(
            account,
            "list_folders",
            lambda auth: self.remote_store.list_folders(account, authorization=auth),
        )
        if not page.success:
            raise RemoteStoreError(f"Failed to list folders for {account.email}")
        return page.items

    async def health_check(self, account: Account) -> bool:
        """
        Check that the mailbox is reachable with the current credentials.

        Returns:
            True if listing folders succeeds, False otherwise
        """
        try:
            await self.list_folders(account)
        except Exception as e:
            logger.warning(f"Health check failed for {account.email}: {e}")
            return False
        return True


__all__ = ["ExchangeClient"]
