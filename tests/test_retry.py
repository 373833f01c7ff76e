"""
Tests for the retry module.

Tests error classification and the exponential backoff loop of
RetryExecutor with an injected sleep.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from exchange_sync.api.errors import RemoteStoreError
from exchange_sync.api.retry import RetryExecutor, is_retryable_error


def http_error(status: int) -> requests.HTTPError:
    response = MagicMock()
    response.status_code = status
    return requests.HTTPError(f"HTTP {status}", response=response)


class TestIsRetryableError:
    """Tests for transient error classification."""

    def test_transport_errors_are_retryable(self):
        """Test that connection failures and timeouts are retried."""
        assert is_retryable_error(requests.ConnectionError("reset"))
        assert is_retryable_error(requests.Timeout("slow"))
        assert is_retryable_error(ConnectionResetError())
        assert is_retryable_error(TimeoutError())

    def test_http_status_classification(self):
        """Test that 5xx and 429 retry while other 4xx do not."""
        assert is_retryable_error(http_error(500))
        assert is_retryable_error(http_error(503))
        assert is_retryable_error(http_error(429))
        assert not is_retryable_error(http_error(400))
        assert not is_retryable_error(http_error(404))

    def test_http_error_without_response(self):
        """Test that an HTTPError with no response is not retried."""
        assert not is_retryable_error(requests.HTTPError("no response"))

    def test_ews_codes(self):
        """Test EWS throttling codes are retried."""
        assert is_retryable_error(RemoteStoreError("busy", code="ErrorServerBusy"))
        assert is_retryable_error(
            RemoteStoreError("timeout", code="ErrorTimeoutExpired")
        )
        assert is_retryable_error(
            RemoteStoreError("down", code="ErrorConnectionFailed")
        )
        assert not is_retryable_error(
            RemoteStoreError("missing", code="ErrorItemNotFound")
        )

    def test_remote_store_error_status(self):
        """Test RemoteStoreError status codes are classified like HTTP errors."""
        assert is_retryable_error(RemoteStoreError("oops", status=502))
        assert not is_retryable_error(RemoteStoreError("denied", status=403))

    def test_other_errors_not_retryable(self):
        """Test that programming errors propagate immediately."""
        assert not is_retryable_error(ValueError("bad"))
        assert not is_retryable_error(KeyError("id"))


class TestRetryExecutor:
    """Tests for RetryExecutor.execute()."""

    def test_invalid_arguments(self):
        """Test that negative settings are rejected."""
        with pytest.raises(ValueError):
            RetryExecutor(max_retries=-1)
        with pytest.raises(ValueError):
            RetryExecutor(base_delay=-0.5)

    def test_delay_for_doubles(self):
        """Test the backoff schedule."""
        retry = RetryExecutor(base_delay=1.0)
        assert [retry.delay_for(n) for n in range(4)] == [1.0, 2.0, 4.0, 8.0]

    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        """Test that a successful call is not retried."""
        sleep = AsyncMock()
        operation = AsyncMock(return_value="ok")
        retry = RetryExecutor(sleep=sleep)

        assert await retry.execute(operation, "op") == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failures(self):
        """Test that the call succeeds on the third attempt after two 503s."""
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=[http_error(503), http_error(503), "ok"])
        retry = RetryExecutor(max_retries=3, base_delay=1.0, sleep=sleep)

        assert await retry.execute(operation, "list_items") == "ok"
        assert operation.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausts_retries(self):
        """Test that a persistent failure is attempted max_retries + 1 times."""
        sleep = AsyncMock()
        error = RemoteStoreError("busy", code="ErrorServerBusy")
        operation = AsyncMock(side_effect=error)
        retry = RetryExecutor(max_retries=3, base_delay=1.0, sleep=sleep)

        with pytest.raises(RemoteStoreError) as exc_info:
            await retry.execute(operation, "get_item")

        assert exc_info.value is error
        assert operation.await_count == 4
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self):
        """Test that a 404 is raised unchanged without sleeping."""
        sleep = AsyncMock()
        error = http_error(404)
        operation = AsyncMock(side_effect=error)
        retry = RetryExecutor(sleep=sleep)

        with pytest.raises(requests.HTTPError) as exc_info:
            await retry.execute(operation)

        assert exc_info.value is error
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_zero_retries(self):
        """Test that max_retries=0 makes a single attempt."""
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=requests.ConnectionError("down"))
        retry = RetryExecutor(max_retries=0, sleep=sleep)

        with pytest.raises(requests.ConnectionError):
            await retry.execute(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        """Test that CancelledError is never retried."""
        sleep = AsyncMock()
        operation = AsyncMock(side_effect=asyncio.CancelledError())
        retry = RetryExecutor(sleep=sleep)

        with pytest.raises(asyncio.CancelledError):
            await retry.execute(operation)

        assert operation.await_count == 1
        sleep.assert_not_awaited()
