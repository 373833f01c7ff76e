"""
Tests for the ExchangeClient gateway.
"""

from unittest.mock import AsyncMock

import pytest
import requests

from exchange_sync.api.client import ExchangeClient
from exchange_sync.api.errors import AuthenticationError, RemoteStoreError
from exchange_sync.api.retry import RetryExecutor
from exchange_sync.api.stores import OperationResult


class RotatingTokenProvider:
    """Hands out a new token on every call."""

    def __init__(self):
        self.calls = 0

    async def get_authorization_header(self, account):
        self.calls += 1
        return f"Bearer token-{self.calls}"


class TestExchangeClient:
    """Tests for authorization, retry and result handling."""

    @pytest.mark.asyncio
    async def test_list_items_passes_header(self, client, account, remote_store):
        """Test listing forwards paging arguments and the bearer header."""
        remote_store.add_item("contacts", {"displayName": "A"})

        page = await client.list_items(account, "contacts", limit=10, offset=0)

        assert page.success
        assert len(page.items) == 1
        assert remote_store.calls == [("list_items", "contacts")]
        assert remote_store.authorizations == ["Bearer test-token"]

    @pytest.mark.asyncio
    async def test_header_refetched_per_attempt(self, account, remote_store):
        """Test each retry asks the provider for a fresh header."""
        tokens = RotatingTokenProvider()
        client = ExchangeClient(
            remote_store,
            tokens,
            RetryExecutor(max_retries=3, base_delay=1.0, sleep=AsyncMock()),
        )
        remote_store.fail_next("list_folders", requests.ConnectionError("reset"))

        folders = await client.list_folders(account)

        assert len(folders) == 4
        assert remote_store.authorizations == ["Bearer token-1", "Bearer token-2"]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, client, account, remote_store, retry_sleep):
        """Test a persistently busy server fails after three retries."""
        busy = [RemoteStoreError("busy", status=503) for _ in range(4)]
        remote_store.fail_next("get_item", *busy)

        with pytest.raises(RemoteStoreError, match="busy"):
            await client.get_item(account, "AAMk-1")

        assert len(remote_store.calls) == 4
        assert [c.args[0] for c in retry_sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_authentication_error_not_retried(self, account, remote_store):
        """Test a provider failure surfaces without retries or store calls."""
        provider = AsyncMock()
        provider.get_authorization_header.side_effect = AuthenticationError("expired")
        sleep = AsyncMock()
        client = ExchangeClient(
            remote_store, provider, RetryExecutor(max_retries=3, sleep=sleep)
        )

        with pytest.raises(AuthenticationError):
            await client.list_folders(account)

        assert remote_store.calls == []
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_get_missing_item(self, client, account):
        """Test an unknown id raises RemoteStoreError."""
        with pytest.raises(RemoteStoreError, match="Failed to get item"):
            await client.get_item(account, "AAMk-404")

    @pytest.mark.asyncio
    async def test_create_returns_id(self, client, account, remote_store):
        """Test create_item returns the provider-assigned id."""
        new_id = await client.create_item(account, "contacts", {"displayName": "A"})

        assert new_id.startswith("AAMk-")
        assert remote_store.find(new_id)["displayName"] == "A"

    @pytest.mark.asyncio
    async def test_update_failure_carries_code(self, client, account):
        """Test an unsuccessful update raises with the EWS response code."""
        with pytest.raises(RemoteStoreError) as exc_info:
            await client.update_item(account, "AAMk-404", {"isRead": True})

        assert exc_info.value.code == "ErrorItemNotFound"

    @pytest.mark.asyncio
    async def test_delete(self, client, account, remote_store):
        """Test delete_item removes the item."""
        item_id = remote_store.add_item("inbox", {"subject": "old"})

        await client.delete_item(account, item_id)

        assert remote_store.find(item_id) is None

    @pytest.mark.asyncio
    async def test_delete_failure(self, client, account, remote_store):
        """Test an unsuccessful delete raises."""
        remote_store.delete_item = AsyncMock(
            return_value=OperationResult(success=False, error_code="ErrorAccessDenied")
        )

        with pytest.raises(RemoteStoreError, match="Failed to delete"):
            await client.delete_item(account, "AAMk-1")

    @pytest.mark.asyncio
    async def test_health_check(self, client, account, remote_store):
        """Test health_check reports reachability."""
        assert await client.health_check(account)

        remote_store.fail_next("list_folders", RemoteStoreError("denied", status=401))
        assert not await client.health_check(account)
