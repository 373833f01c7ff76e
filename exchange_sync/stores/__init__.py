"""
Store implementations for the RemoteStore and LocalStore capabilities.
"""

from exchange_sync.stores.memory import (
    InMemoryLocalStore,
    InMemoryRemoteStore,
    create_memory_stores,
)

__all__ = ["InMemoryLocalStore", "InMemoryRemoteStore", "create_memory_stores"]
