"""
Contact reconciliation between the Exchange contacts folder and a local
address book named "Exchange - {display name}".
"""

from __future__ import annotations

from typing import Any

from exchange_sync.api.paginator import CONTACTS_BATCH_SIZE
from exchange_sync.api.stores import ContainerKind
from exchange_sync.sync.account import EntityType
from exchange_sync.sync.contact import (
    REMOTE_CONTACTS_FOLDER,
    LocalContact,
    RemoteContact,
    contact_needs_update,
    contact_push_needs_update,
    contact_to_local,
    contact_to_remote,
    local_contact_key,
    remote_contact_key,
)
from exchange_sync.sync.engine import ReconciliationEngine


class ContactSync(ReconciliationEngine[LocalContact, RemoteContact]):
    """
    Bidirectional contact sync.

    Contacts pair up by primary email, or by "first last display" when no
    email is set. Incremental sync has no change tracking and does nothing
    once a full sync has run.
    """

    entity_type = EntityType.CONTACTS
    container_kind = ContainerKind.ADDRESS_BOOK
    remote_container = REMOTE_CONTACTS_FOLDER
    batch_size = CONTACTS_BATCH_SIZE

    def parse_local(self, data: dict[str, Any]) -> LocalContact:
        return LocalContact.from_native(data)

    def parse_remote(self, data: dict[str, Any]) -> RemoteContact:
        return RemoteContact.from_native(data)

    def local_key(self, item: LocalContact) -> str:
        return local_contact_key(item)

    def remote_key(self, item: RemoteContact) -> str:
        return remote_contact_key(item)

    def pull_needs_update(self, local: LocalContact, remote: RemoteContact) -> bool:
        return contact_needs_update(local, remote)

    def push_needs_update(self, local: LocalContact, remote: RemoteContact) -> bool:
        return contact_push_needs_update(local, remote)

    def to_local_native(self, remote: RemoteContact) -> dict[str, Any]:
        return contact_to_local(remote).to_native()

    def to_remote_native(self, local: LocalContact) -> dict[str, Any]:
        return contact_to_remote(local).to_native()
