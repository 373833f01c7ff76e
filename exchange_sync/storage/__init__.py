"""
Persistent sync state storage.
"""

from exchange_sync.storage.db import SyncDatabase

__all__ = ["SyncDatabase"]
