"""Credential store interface and the cached access-token broker."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from chatbridge.errors import CredentialError
from chatbridge.types import CachedToken, OAuthCredentials

DEFAULT_REFRESH_MARGIN = 60.0

TokenExchange = Callable[[OAuthCredentials], Awaitable[CachedToken]]


class CredentialStore(Protocol):
    """Persistent OAuth credential storage keyed by provider id."""

    def get_credentials(self, provider_id: str) -> OAuthCredentials:
        """Return stored credentials or raise CredentialError when none exist."""
        ...

    def set_credentials(self, provider_id: str, credentials: OAuthCredentials) -> None:
        ...


class InMemoryCredentialStore:
    """Process-local credential store, mainly for embedding and tests."""

    def __init__(self, initial: dict[str, OAuthCredentials] | None = None) -> None:
        self._items: dict[str, OAuthCredentials] = dict(initial or {})

    def get_credentials(self, provider_id: str) -> OAuthCredentials:
        try:
            return self._items[provider_id]
        except KeyError as exc:
            raise CredentialError(provider_id, "no credentials stored") from exc

    def set_credentials(self, provider_id: str, credentials: OAuthCredentials) -> None:
        self._items[provider_id] = credentials


class TokenBroker:
    """Owns one provider's short-lived access token.

    ``get_access_token`` returns the cached token while it stays valid for at
    least ``margin`` seconds. Otherwise the first caller to take the refresh
    lock exchanges the stored credential for a new token; callers queued on
    the lock re-check the cache and reuse that result. A failed exchange
    leaves the cache untouched.
    """

    _logger = logging.getLogger(__name__)

    def __init__(
        self,
        provider_id: str,
        store: CredentialStore,
        exchange: TokenExchange,
        *,
        margin: float = DEFAULT_REFRESH_MARGIN,
    ) -> None:
        self._provider_id = provider_id
        self._store = store
        self._exchange = exchange
        self._margin = margin
        self._token: CachedToken | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> CachedToken | None:
        return self._token

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes."""
        self._token = None

    async def get_access_token(self) -> str:
        token = self._token
        if token is not None and token.is_valid(self._margin):
            return token.token

        async with self._lock:
            # Another caller may have refreshed while we waited.
            token = self._token
            if token is not None and token.is_valid(self._margin):
                self._logger.debug("Using token refreshed by a concurrent caller for %s", self._provider_id)
                return token.token

            credentials = self._store.get_credentials(self._provider_id)
            fresh = await self._exchange(credentials)
            self._token = fresh
            self._logger.info("Refreshed %s access token, expires at %d", self._provider_id, fresh.expires_at)
            return fresh.token
