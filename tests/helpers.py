"""
Shared test doubles for the exchange_sync test suite.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

from exchange_sync.stores.memory import InMemoryLocalStore

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class StaticTokenProvider:
    """TokenProvider handing out a fixed bearer token and counting calls."""

    def __init__(self, token: str = "test-token"):
        self.token = token
        self.calls = 0

    async def get_authorization_header(self, account):
        self.calls += 1
        return f"Bearer {self.token}"


class BlockingLocalStore(InMemoryLocalStore):
    """Local store whose list_containers waits until released."""

    def __init__(self):
        super().__init__()
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def list_containers(self, account, kind):
        self.entered.set()
        await self.release.wait()
        return await super().list_containers(account, kind)


def make_engine(cls, client, local_store, **kwargs):
    kwargs.setdefault("page_delay", 0)
    kwargs.setdefault("sleep", AsyncMock())
    kwargs.setdefault("clock", lambda: NOW)
    return cls(client, local_store, **kwargs)
