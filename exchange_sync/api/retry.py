"""
Exponential backoff retry for remote store calls.

Every call the sync engines make against the Exchange mailbox goes through
RetryExecutor.execute(). Transient failures (transport errors, HTTP 5xx,
HTTP 429, EWS throttling codes) are retried with a doubling delay; anything
else propagates on the first failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import requests

from exchange_sync.api.errors import RemoteStoreError

# Retry configuration defaults
DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds

# EWS response codes that signal throttling or a transient server condition
RETRYABLE_EWS_CODES = frozenset(
    {
        "ErrorServerBusy",
        "ErrorTimeoutExpired",
        "ErrorConnectionFailed",
    }
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _is_retryable_status(status: int | None) -> bool:
    return status is not None and (status == 429 or 500 <= status < 600)


def is_retryable_error(error: BaseException) -> bool:
    """
    Classify an exception as transient.

    Args:
        error: Exception raised by a remote call

    Returns:
        True for network transport failures, HTTP 5xx and 429 responses,
        and EWS throttling/timeout response codes.
    """
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return True

    if isinstance(error, requests.HTTPError):
        response = error.response
        return response is not None and _is_retryable_status(response.status_code)

    if isinstance(error, RemoteStoreError):
        if error.code in RETRYABLE_EWS_CODES:
            return True
        return _is_retryable_status(error.status)

    # builtin ConnectionResetError, ConnectionRefusedError, etc.
    return isinstance(error, (ConnectionError, TimeoutError))


class RetryExecutor:
    """
    Runs async operations with exponential backoff retry.

    The delay before retry n (0-based) is base_delay * 2**n, so with the
    defaults a persistently failing call is attempted four times with 1s,
    2s and 4s pauses in between.

    Usage:
        retry = RetryExecutor()
        page = await retry.execute(lambda: store.list_items(...), "list_items")
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the executor.

        Args:
            max_retries: Retries after the first attempt (default 3)
            base_delay: Backoff base in seconds (default 1.0)
            sleep: Awaitable sleep function, replaceable in tests
        """
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if base_delay < 0:
            raise ValueError("base_delay must be >= 0")

        self.max_retries = max_retries
        self.base_delay = base_delay
        self._sleep = sleep

    def delay_for(self, retry_number: int) -> float:
        """Backoff delay in seconds before the given 0-based retry."""
        return self.base_delay * (2**retry_number)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str = "operation",
    ) -> T:
        """
        Execute an operation with exponential backoff retry.

        Args:
            operation: Zero-argument callable returning a fresh awaitable
                on every call
            operation_name: Name for logging purposes

        Returns:
            Result of the operation

        Raises:
            Exception: The first non-retryable error, or the last error once
                retries are exhausted. Errors are re-raised unchanged.
        """
        retry_number = 0

        while True:
            try:
                return await operation()

            except asyncio.CancelledError:
                raise

            except Exception as e:
                if not is_retryable_error(e):
                    logger.debug(f"{operation_name} failed (not retryable): {e}")
                    raise

                if retry_number >= self.max_retries:
                    logger.error(
                        f"{operation_name} failed after {self.max_retries} "
                        f"retries: {e}"
                    )
                    raise

                delay = self.delay_for(retry_number)
                logger.warning(
                    f"{operation_name} failed ({e}), retrying in {delay:.1f}s "
                    f"(retry {retry_number + 1}/{self.max_retries})"
                )
                await self._sleep(delay)
                retry_number += 1


__all__ = [
    "RetryExecutor",
    "is_retryable_error",
    "RETRYABLE_EWS_CODES",
    "DEFAULT_MAX_RETRIES",
    "DEFAULT_BASE_DELAY",
]
