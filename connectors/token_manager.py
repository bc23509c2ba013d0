"""
Token manager — hand out a currently-valid access token per user + provider.

This is the single interface the sync pipeline uses to get an active
token.  The read → decide → refresh → write sequence for one
``(user_id, integration_type)`` is a critical section: some providers
rotate the refresh token on every use, so two overlapping refreshes would
leave one of them holding a dead token.  It is serialized twice:

1. an in-process ``asyncio.Lock`` per key, so concurrent requests in one
   worker wait and then reuse the freshly stored token;
2. a compare-and-swap write against the refresh token that was read, so
   a racing worker in another process cannot overwrite newer tokens.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from connectors.exceptions import (
    IntegrationNotConnected,
    RefreshConflict,
    RefreshFailed,
)
from connectors.models import StoredCredential
from connectors.registry import ConnectorRegistry
from connectors.store import CredentialStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def expires_at_from(expires_in: Optional[int], now: Optional[datetime] = None) -> Optional[datetime]:
    """Absolute expiry for a relative ``expires_in``; ``None`` stays unknown."""
    if expires_in is None:
        return None
    return (now or _utcnow()) + timedelta(seconds=expires_in)


class TokenRefreshManager:
    """Return valid access tokens, refreshing through the connector when stale."""

    def __init__(
        self,
        store: CredentialStore,
        registry: ConnectorRegistry,
        *,
        skew_seconds: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._registry = registry
        self._skew = timedelta(seconds=skew_seconds)
        self._clock = clock
        # a lock lives only while some request holds or awaits it
        self._locks: weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, user_id: str, integration_type: str) -> asyncio.Lock:
        key = (user_id, integration_type)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_fresh(self, credential: StoredCredential) -> bool:
        """A token with no expiry, or one expiring beyond the skew window, is usable."""
        expires_at = credential.token_expires_at
        return expires_at is None or expires_at > self._clock() + self._skew

    async def _load(self, user_id: str, integration_type: str) -> StoredCredential:
        credential = await self._store.get(user_id, integration_type)
        if credential is None:
            raise IntegrationNotConnected(
                f"{integration_type} integration not found. Please connect to {integration_type}."
            )
        return credential

    async def get_access_token(self, user_id: str, integration_type: str) -> str:
        """
        Get a valid access token for the user + provider.

        1. Look up the credential (``IntegrationNotConnected`` if absent).
        2. Fresh → return it with no network call.
        3. Stale → refresh under the per-key lock and store the new tokens.

        A failed refresh raises ``RefreshFailed`` and leaves the stored
        credential exactly as it was.
        """
        credential = await self._load(user_id, integration_type)
        if self.is_fresh(credential):
            return credential.access_token

        async with self._lock_for(user_id, integration_type):
            # another request may have refreshed while we waited
            credential = await self._load(user_id, integration_type)
            if self.is_fresh(credential):
                return credential.access_token
            return await self._refresh(credential)

    async def _refresh(self, credential: StoredCredential) -> str:
        user_id = credential.user_id
        integration_type = credential.integration_type

        if not credential.refresh_token:
            raise RefreshFailed(
                f"{integration_type} access token expired and no refresh token is stored. "
                f"Please reconnect to {integration_type}."
            )

        connector = self._registry.get(integration_type)
        if connector is None:
            raise RefreshFailed(f"No connector configured for {integration_type}")

        logger.info("Token expired for %s/%s, refreshing…", integration_type, user_id)
        try:
            grant = await connector.refresh(credential.refresh_token)
        except RefreshFailed as exc:
            logger.warning("Token refresh failed for %s/%s: %s", integration_type, user_id, exc.message)
            raise RefreshFailed(f"Failed to refresh {integration_type} token: {exc.message}") from exc

        swapped = await self._store.swap_tokens(
            user_id,
            integration_type,
            expected_refresh_token=credential.refresh_token,
            access_token=grant.access_token,
            # providers that do not rotate omit refresh_token; keep the old one
            refresh_token=grant.refresh_token or credential.refresh_token,
            token_expires_at=expires_at_from(grant.expires_in, self._clock()),
        )
        if swapped:
            logger.info("Refreshed %s token for user %s", integration_type, user_id)
            return grant.access_token

        # lost the race to another process; its tokens win
        current = await self._load(user_id, integration_type)
        if self.is_fresh(current):
            logger.info("Concurrent refresh detected for %s/%s, using stored token", integration_type, user_id)
            return current.access_token
        raise RefreshConflict(
            f"{integration_type} tokens were rotated concurrently; retry the request"
        )
