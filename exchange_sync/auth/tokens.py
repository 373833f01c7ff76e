"""
Authorization header providers for Exchange accounts.

Supports:
- Basic authentication from a stored username and password
- OAuth2 bearer tokens, refreshed through the Microsoft identity platform
  when they are about to expire
- Per-account token files with owner-only permissions

The interactive OAuth2 sign-in that produces the first refresh token is not
handled here; a token file or account credentials must already hold one.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import re
from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import requests

from exchange_sync.api.errors import AuthenticationError
from exchange_sync.api.retry import is_retryable_error
from exchange_sync.sync.account import (
    AUTH_METHOD_BASIC,
    AUTH_METHOD_OAUTH2,
    Account,
    AccountCredentials,
)
from exchange_sync.utils.paths import resolve_config_dir
from exchange_sync.utils.timeutil import format_datetime, parse_datetime, utcnow

# Microsoft identity platform token endpoint
TOKEN_ENDPOINT = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"

# Scopes requested on refresh
OAUTH_SCOPES = (
    "https://outlook.office365.com/EWS.AccessAsUser.All",
    "offline_access",
)

DEFAULT_TENANT = "common"
DEFAULT_REFRESH_MARGIN = 300  # seconds
DEFAULT_REQUEST_TIMEOUT = 30  # seconds

_SAFE_ACCOUNT_ID = re.compile(r"^[A-Za-z0-9_.@-]+$")

logger = logging.getLogger(__name__)


class TokenStore:
    """
    Per-account OAuth2 token files.

    Tokens live in <config_dir>/tokens/<account_id>.json with mode 0600.

    Usage:
        store = TokenStore()
        credentials = store.load("work")
        store.save("work", credentials)
    """

    def __init__(self, config_dir: Optional[Path] = None):
        self.config_dir = resolve_config_dir(config_dir)
        self.tokens_dir = self.config_dir / "tokens"

    def _token_path(self, account_id: str) -> Path:
        if not _SAFE_ACCOUNT_ID.match(account_id):
            raise ValueError(f"Invalid account id for token file: '{account_id}'")
        return self.tokens_dir / f"{account_id}.json"

    def load(self, account_id: str) -> Optional[AccountCredentials]:
        """Load stored tokens, or None if there is no valid token file."""
        token_path = self._token_path(account_id)
        if not token_path.exists():
            logger.debug(f"No token file found for {account_id}")
            return None

        try:
            data: dict[str, Any] = json.loads(token_path.read_text())
        except (json.JSONDecodeError, OSError) as e:
            logger.warning(f"Invalid token file for {account_id}: {e}")
            return None

        return AccountCredentials(
            access_token=data.get("access_token"),
            refresh_token=data.get("refresh_token"),
            expires_at=parse_datetime(data.get("expires_at")),
        )

    def save(self, account_id: str, credentials: AccountCredentials) -> None:
        """Write tokens with owner-only permissions. Passwords are not stored."""
        if not self.tokens_dir.exists():
            self.tokens_dir.mkdir(parents=True, mode=0o700)
            logger.debug(f"Created tokens directory: {self.tokens_dir}")

        token_path = self._token_path(account_id)
        token_data = {
            "access_token": credentials.access_token,
            "refresh_token": credentials.refresh_token,
            "expires_at": format_datetime(credentials.expires_at),
        }
        token_path.write_text(json.dumps(token_data))
        token_path.chmod(0o600)
        logger.debug(f"Saved tokens for {account_id}")

    def clear(self, account_id: str) -> bool:
        """Remove stored tokens; returns False if there were none."""
        token_path = self._token_path(account_id)
        if token_path.exists():
            token_path.unlink()
            logger.info(f"Cleared tokens for {account_id}")
            return True
        return False

    def load_into(self, account: Account) -> bool:
        """Copy stored tokens onto the account's credentials, keeping its password."""
        stored = self.load(account.id)
        if stored is None:
            return False
        stored.password = account.credentials.password
        account.credentials = stored
        return True


class BasicAuthTokenProvider:
    """Builds "Basic base64(username:password)" headers."""

    async def get_authorization_header(self, account: Account) -> str:
        username = account.server.username or account.email
        password = account.credentials.password
        if not password:
            raise AuthenticationError(f"No password configured for {account.email}")

        encoded = base64.b64encode(f"{username}:{password}".encode()).decode("ascii")
        return f"Basic {encoded}"


class OAuth2TokenProvider:
    """
    Bearer tokens with refresh-before-expiry.

    A token expiring within refresh_margin seconds is refreshed with the
    refresh-token grant before it is handed out. Concurrent callers for the
    same account share one refresh.

    Attributes:
        client_id: Azure AD application (client) id
        tenant: Directory tenant, "common" for multi-tenant apps
        refresh_margin: Seconds before expiry at which tokens are refreshed
    """

    def __init__(
        self,
        client_id: str,
        tenant: str = DEFAULT_TENANT,
        refresh_margin: int = DEFAULT_REFRESH_MARGIN,
        session: Optional[requests.Session] = None,
        token_store: Optional[TokenStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.client_id = client_id
        self.tenant = tenant
        self.refresh_margin = timedelta(seconds=refresh_margin)
        self.session = session or requests.Session()
        self.token_store = token_store
        self._clock = clock
        self._locks: dict[str, asyncio.Lock] = {}

    @property
    def token_url(self) -> str:
        return TOKEN_ENDPOINT.format(tenant=self.tenant)

    def needs_refresh(self, credentials: AccountCredentials) -> bool:
        if not credentials.access_token:
            return True
        if credentials.expires_at is None:
            return False
        return credentials.expires_at - self._clock() <= self.refresh_margin

    async def get_authorization_header(self, account: Account) -> str:
        """
        Return "Bearer <token>", refreshing first if needed.

        Raises:
            AuthenticationError: If there is no refresh token or the refresh fails
        """
        if self.needs_refresh(account.credentials):
            lock = self._locks.setdefault(account.id, asyncio.Lock())
            async with lock:
                # Another caller may have refreshed while we waited
                if self.needs_refresh(account.credentials):
                    await self.refresh(account)

        return f"Bearer {account.credentials.access_token}"

    async def refresh(self, account: Account) -> None:
        """Exchange the account's refresh token for a new access token."""
        refresh_token = account.credentials.refresh_token
        if not refresh_token:
            raise AuthenticationError(
                f"No refresh token for {account.email}; sign in again"
            )

        logger.debug(f"Refreshing access token for {account.email}")
        form = {
            "client_id": self.client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": " ".join(OAUTH_SCOPES),
        }
        payload = await asyncio.to_thread(self._post_token_request, form)

        access_token = payload.get("access_token")
        if not access_token:
            raise AuthenticationError(
                f"Token response for {account.email} has no access_token"
            )

        credentials = account.credentials
        credentials.access_token = access_token
        credentials.refresh_token = payload.get("refresh_token") or refresh_token
        expires_in = int(payload.get("expires_in", 3600))
        credentials.expires_at = self._clock() + timedelta(seconds=expires_in)

        if self.token_store is not None:
            self.token_store.save(account.id, credentials)
        logger.info(f"Refreshed access token for {account.email}")

    def _post_token_request(self, form: dict[str, str]) -> dict[str, Any]:
        try:
            response = self.session.post(
                self.token_url, data=form, timeout=DEFAULT_REQUEST_TIMEOUT
            )
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except requests.RequestException as e:
            # Transport errors, 429 and 5xx go back to the RetryExecutor
            if is_retryable_error(e):
                raise
            raise AuthenticationError(f"Token refresh failed: {e}") from e
        except ValueError as e:
            raise AuthenticationError(f"Invalid token response: {e}") from e
        return payload


class AccountTokenProvider:
    """Dispatches to the OAuth2 or Basic provider by the account's auth_method."""

    def __init__(
        self,
        oauth2: Optional[OAuth2TokenProvider] = None,
        basic: Optional[BasicAuthTokenProvider] = None,
    ):
        self.oauth2 = oauth2
        self.basic = basic or BasicAuthTokenProvider()

    async def get_authorization_header(self, account: Account) -> str:
        method = account.server.auth_method
        if method == AUTH_METHOD_BASIC:
            return await self.basic.get_authorization_header(account)
        if method == AUTH_METHOD_OAUTH2:
            if self.oauth2 is None:
                raise AuthenticationError(
                    "OAuth2 is not configured (set oauth_client_id in config.yaml)"
                )
            return await self.oauth2.get_authorization_header(account)
        raise AuthenticationError(f"Unsupported auth method '{method}'")


__all__ = [
    "TokenStore",
    "BasicAuthTokenProvider",
    "OAuth2TokenProvider",
    "AccountTokenProvider",
    "TOKEN_ENDPOINT",
    "OAUTH_SCOPES",
]
