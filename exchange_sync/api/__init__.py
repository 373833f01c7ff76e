"""
Remote access layer: capability interfaces, retry, pagination, gateway.
"""

from exchange_sync.api.client import ExchangeClient
from exchange_sync.api.errors import (
    AuthenticationError,
    ExchangeSyncError,
    RemoteStoreError,
    SyncCancelledError,
)
from exchange_sync.api.paginator import FetchResult, Paginator
from exchange_sync.api.retry import RetryExecutor, is_retryable_error
from exchange_sync.api.stores import (
    ContainerKind,
    CreateResult,
    ItemResult,
    LocalContainer,
    LocalStore,
    OperationResult,
    Page,
    RemoteStore,
    TokenProvider,
)

__all__ = [
    "ExchangeClient",
    "ExchangeSyncError",
    "RemoteStoreError",
    "AuthenticationError",
    "SyncCancelledError",
    "Paginator",
    "FetchResult",
    "RetryExecutor",
    "is_retryable_error",
    "ContainerKind",
    "CreateResult",
    "ItemResult",
    "LocalContainer",
    "LocalStore",
    "OperationResult",
    "Page",
    "RemoteStore",
    "TokenProvider",
]
