"""
Sync core: entity models, reconciliation engines, and the coordinator.
"""

from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.calendar_sync import CalendarSync
from exchange_sync.sync.contact_sync import ContactSync
from exchange_sync.sync.coordinator import AccountSyncResult, SyncCoordinator
from exchange_sync.sync.email_sync import EmailSync
from exchange_sync.sync.engine import ReconciliationEngine
from exchange_sync.sync.state import AccountContext, SyncOutcome, SyncState

__all__ = [
    "Account",
    "AccountContext",
    "AccountSyncResult",
    "CalendarSync",
    "ContactSync",
    "EmailSync",
    "EntityType",
    "ReconciliationEngine",
    "SyncCoordinator",
    "SyncOutcome",
    "SyncState",
]
