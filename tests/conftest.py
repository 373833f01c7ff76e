"""
Shared fixtures for the exchange_sync test suite.
"""

from unittest.mock import AsyncMock

import pytest

from exchange_sync.api.client import ExchangeClient
from exchange_sync.api.retry import RetryExecutor
from exchange_sync.storage.db import SyncDatabase
from exchange_sync.stores.memory import InMemoryLocalStore, InMemoryRemoteStore
from exchange_sync.sync.account import Account
from exchange_sync.sync.calendar_sync import CalendarSync
from exchange_sync.sync.contact_sync import ContactSync
from exchange_sync.sync.email_sync import EmailSync
from exchange_sync.sync.state import AccountContext

from helpers import StaticTokenProvider, make_engine


@pytest.fixture
def account():
    """An account with every entity type enabled."""
    return Account.from_dict(
        {
            "id": "work",
            "email": "me@example.com",
            "display_name": "Work",
            "server": {
                "ews_url": "https://outlook.office365.com/EWS/Exchange.asmx",
                "auth_method": "oauth2",
            },
        }
    )


@pytest.fixture
def context(account):
    return AccountContext(account)


@pytest.fixture
def remote_store():
    return InMemoryRemoteStore()


@pytest.fixture
def local_store():
    return InMemoryLocalStore()


@pytest.fixture
def token_provider():
    return StaticTokenProvider()


@pytest.fixture
def retry_sleep():
    return AsyncMock()


@pytest.fixture
def client(remote_store, token_provider, retry_sleep):
    """ExchangeClient whose retries never actually sleep."""
    return ExchangeClient(
        remote_store,
        token_provider,
        RetryExecutor(max_retries=3, base_delay=1.0, sleep=retry_sleep),
    )


@pytest.fixture
def contact_sync(client, local_store):
    return make_engine(ContactSync, client, local_store)


@pytest.fixture
def calendar_sync(client, local_store):
    return make_engine(CalendarSync, client, local_store)


@pytest.fixture
def email_sync(client, local_store):
    return make_engine(EmailSync, client, local_store)


@pytest.fixture
def database():
    """In-memory sync database."""
    db = SyncDatabase(":memory:")
    db.initialize()
    yield db
    db.close()


@pytest.fixture(autouse=True)
def no_log_file(monkeypatch):
    """Keep CLI runs from writing log files into the home directory."""
    monkeypatch.setenv("EXCHANGE_SYNC_LOG_FILE", "none")
