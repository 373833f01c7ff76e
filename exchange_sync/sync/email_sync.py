"""
Mail synchronization from Exchange folders into the local mail store.

Mail differs from contacts and calendar:
- The local target is a set of folders mirroring the remote hierarchy
- Messages are immutable once synced; existing messages are skipped, never
  updated in place
- Only missing messages are fetched in full before being stored locally
- Read/flag state flows back through sync_message_flags(), keyed by the
  provider id, not through a general local -> remote pass
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from exchange_sync.api.errors import SyncCancelledError
from exchange_sync.api.paginator import MAIL_BATCH_SIZE
from exchange_sync.api.stores import ContainerKind, LocalContainer, Page
from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.engine import ReconciliationEngine
from exchange_sync.sync.message import (
    LocalMessage,
    RemoteFolder,
    RemoteMessage,
    build_raw_message,
    flag_patch,
    folder_sort_key,
    local_message_key,
    map_folder_name,
    message_to_local,
    remote_message_key,
)
from exchange_sync.sync.state import CancellationToken, SyncStatistics

logger = logging.getLogger(__name__)


class EmailSync(ReconciliationEngine[LocalMessage, RemoteMessage]):
    """
    Remote -> local mail sync across all folders.

    Folders are processed inbox, sentitems, drafts, deleteditems first and
    then alphabetically. A failure inside one folder counts one error and
    moves on to the next folder. Incremental sync has no change tracking and
    does nothing once a full sync has run.
    """

    entity_type = EntityType.EMAIL
    container_kind = ContainerKind.FOLDER
    batch_size = MAIL_BATCH_SIZE

    def parse_local(self, data: dict[str, Any]) -> LocalMessage:
        return LocalMessage.from_native(data)

    def parse_remote(self, data: dict[str, Any]) -> RemoteMessage:
        return RemoteMessage.from_native(data)

    def local_key(self, item: LocalMessage) -> str:
        return local_message_key(item)

    def remote_key(self, item: RemoteMessage) -> str:
        return remote_message_key(item)

    def pull_needs_update(self, local: LocalMessage, remote: RemoteMessage) -> bool:
        return False

    def to_local_native(self, remote: RemoteMessage) -> dict[str, Any]:
        local = message_to_local(remote)
        data = local.to_native()
        if getattr(self.local_store, "imports_raw_messages", False):
            data["rawMessage"] = build_raw_message(local)
        return data

    # =========================================================================
    # Full sync
    # =========================================================================

    async def _full_sync(
        self, account: Account, stats: SyncStatistics, token: CancellationToken
    ) -> None:
        folders = await self.sync_folder_structure(account, stats)
        token.raise_if_cancelled()

        for folder in sorted(
            folders, key=lambda f: folder_sort_key(map_folder_name(f.name))
        ):
            token.raise_if_cancelled()
            try:
                await self._sync_folder(account, folder, stats, token)
            except SyncCancelledError:
                raise
            except Exception as e:
                stats.errors += 1
                logger.error(f"Failed to sync folder {folder.name}: {e}")

    async def sync_folder_structure(
        self, account: Account, stats: Optional[SyncStatistics] = None
    ) -> list[LocalContainer]:
        """
        Create local folders for remote folders missing locally.

        Folders are matched by display name. A failed folder creation is
        logged and counted but does not stop the others.

        Returns:
            The account's local folders after creation

        Raises:
            RemoteStoreError: If the remote folder hierarchy cannot be listed
        """
        remote_folders = [
            RemoteFolder.from_native(data)
            for data in await self.client.list_folders(account)
        ]
        local_folders = await self.local_store.list_containers(
            account, ContainerKind.FOLDER
        )
        existing = {folder.name for folder in local_folders}

        for remote_folder in remote_folders:
            if not remote_folder.display_name or remote_folder.display_name in existing:
                continue
            try:
                created = await self.local_store.create_container(
                    account, remote_folder.display_name, ContainerKind.FOLDER
                )
            except Exception as e:
                if stats is not None:
                    stats.errors += 1
                logger.warning(
                    f"Failed to create folder {remote_folder.display_name}: {e}"
                )
                continue
            logger.info(f"Created folder: {created.name}")
            local_folders.append(created)
            existing.add(created.name)

        return local_folders

    async def _sync_folder(
        self,
        account: Account,
        folder: LocalContainer,
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        remote_folder_id = map_folder_name(folder.name)
        logger.debug(f"Syncing folder {folder.name} ({remote_folder_id})")

        existing = await self.local_store.list_items(folder.id)
        local_index = self._index(
            [self.parse_local(data) for data in existing], self.local_key
        )
        token.raise_if_cancelled()

        async def fetch(offset: int, limit: int) -> Page:
            return await self.client.list_items(
                account, remote_folder_id, limit=limit, offset=offset
            )

        created_before = stats.created
        try:
            async for page in self._paginator().iter_pages(fetch):
                for data in page:
                    token.raise_if_cancelled()
                    await self._sync_message(
                        account, folder, data, local_index, stats, token
                    )
        except SyncCancelledError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.error(f"Failed to get messages for folder {folder.name}: {e}")

        logger.info(
            f"Folder {folder.name} synced: "
            f"{stats.created - created_before} new messages"
        )

    async def _sync_message(
        self,
        account: Account,
        folder: LocalContainer,
        data: dict[str, Any],
        local_index: dict[str, LocalMessage],
        stats: SyncStatistics,
        token: CancellationToken,
    ) -> None:
        try:
            summary = self.parse_remote(data)
            if self.remote_key(summary) in local_index:
                return

            full = await self.client.get_item(account, summary.id or "")
            token.raise_if_cancelled()

            await self.local_store.create_item(
                folder.id, self.to_local_native(self.parse_remote(full))
            )
            token.raise_if_cancelled()
            stats.created += 1

        except SyncCancelledError:
            raise
        except Exception as e:
            stats.errors += 1
            logger.warning(f"Failed to sync message {data.get('id')}: {e}")

    # =========================================================================
    # Flags
    # =========================================================================

    async def sync_message_flags(
        self, account: Account, message: LocalMessage | dict[str, Any]
    ) -> bool:
        """
        Push a local message's read and flag state to Exchange.

        The message's headerMessageId is the provider id it was synced from.

        Returns:
            True if the remote message was updated, False if the message has
            no provider id or the update failed
        """
        if isinstance(message, dict):
            message = LocalMessage.from_native(message)

        if not message.header_message_id:
            logger.warning("No Exchange message id on local message, skipping flags")
            return False

        patch = flag_patch(message)
        if not patch:
            return True

        try:
            await self.client.update_item(account, message.header_message_id, patch)
        except Exception as e:
            logger.error(
                f"Failed to sync flags for message {message.header_message_id}: {e}"
            )
            return False
        return True
