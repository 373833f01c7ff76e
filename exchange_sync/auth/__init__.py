"""
Authorization header providers and token storage.
"""

from exchange_sync.auth.tokens import (
    AccountTokenProvider,
    BasicAuthTokenProvider,
    OAuth2TokenProvider,
    TokenStore,
)

__all__ = [
    "AccountTokenProvider",
    "BasicAuthTokenProvider",
    "OAuth2TokenProvider",
    "TokenStore",
]
