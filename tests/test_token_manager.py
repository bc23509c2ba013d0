"""
Tests for the token refresh manager.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from connectors.exceptions import (
    IntegrationNotConnected,
    RefreshConflict,
    RefreshFailed,
    RemoteTimeout,
)
from connectors.models import StoredCredential
from connectors.token_manager import TokenRefreshManager


def _stored(expires_in_seconds, refresh_token="refresh-0") -> StoredCredential:
    expires_at = (
        None
        if expires_in_seconds is None
        else datetime.now(timezone.utc) + timedelta(seconds=expires_in_seconds)
    )
    return StoredCredential(
        user_id="user-1",
        integration_type="hubspot",
        access_token="access-0",
        refresh_token=refresh_token,
        token_expires_at=expires_at,
        additional_settings={"account_name": "Acme"},
    )


class TestFastPath:
    @pytest.mark.asyncio
    async def test_not_connected(self, token_manager):
        with pytest.raises(IntegrationNotConnected):
            await token_manager.get_access_token("user-1", "hubspot")

    @pytest.mark.asyncio
    async def test_fresh_token_makes_no_network_call(self, token_manager, store, connector, hubspot):
        await store.upsert(_stored(3600))

        with patch.object(connector, "refresh", new_callable=AsyncMock) as mock_refresh:
            token = await token_manager.get_access_token("user-1", "hubspot")

        assert token == "access-0"
        mock_refresh.assert_not_called()
        assert hubspot.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_null_expiry_never_refreshes(self, token_manager, store, hubspot):
        await store.upsert(_stored(None))
        assert await token_manager.get_access_token("user-1", "hubspot") == "access-0"
        assert hubspot.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_token_inside_skew_window_is_refreshed(self, token_manager, store, hubspot):
        await store.upsert(_stored(30))  # skew is 60s
        assert await token_manager.get_access_token("user-1", "hubspot") == "access-1"
        assert hubspot.refresh_calls == 1


class TestRefresh:
    @pytest.mark.asyncio
    async def test_expired_token_refreshed_and_stored(self, token_manager, store, hubspot):
        await store.upsert(_stored(-10))

        token = await token_manager.get_access_token("user-1", "hubspot")

        assert token == "access-1"
        stored = await store.get("user-1", "hubspot")
        assert stored.access_token == "access-1"
        assert stored.refresh_token == "refresh-1"
        assert stored.token_expires_at > datetime.now(timezone.utc) + timedelta(minutes=25)
        assert stored.additional_settings == {"account_name": "Acme"}

    @pytest.mark.asyncio
    async def test_non_rotating_provider_keeps_refresh_token(self, token_manager, store, hubspot):
        hubspot.rotate_refresh_token = False
        await store.upsert(_stored(-10))

        await token_manager.get_access_token("user-1", "hubspot")

        assert (await store.get("user-1", "hubspot")).refresh_token == "refresh-0"

    @pytest.mark.asyncio
    async def test_refresh_failure_preserves_stored_tokens(self, token_manager, store, hubspot):
        hubspot.refresh_status = 400
        await store.upsert(_stored(-10))

        with pytest.raises(RefreshFailed, match="refresh token is invalid"):
            await token_manager.get_access_token("user-1", "hubspot")

        stored = await store.get("user-1", "hubspot")
        assert stored.access_token == "access-0"
        assert stored.refresh_token == "refresh-0"

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, token_manager, store, hubspot):
        await store.upsert(_stored(-10, refresh_token=None))

        with pytest.raises(RefreshFailed, match="no refresh token"):
            await token_manager.get_access_token("user-1", "hubspot")
        assert hubspot.refresh_calls == 0
        assert await store.get("user-1", "hubspot") is not None

    @pytest.mark.asyncio
    async def test_refresh_timeout(self, token_manager, store, hubspot):
        hubspot.timeout_paths.add("/oauth/v1/token")
        await store.upsert(_stored(-10))

        with pytest.raises(RemoteTimeout):
            await token_manager.get_access_token("user-1", "hubspot")
        assert (await store.get("user-1", "hubspot")).access_token == "access-0"


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_refreshes_are_serialized(self, token_manager, store, hubspot):
        hubspot.refresh_delay = 0.05
        await store.upsert(_stored(-10))

        tokens = await asyncio.gather(
            *(token_manager.get_access_token("user-1", "hubspot") for _ in range(3))
        )

        assert hubspot.refresh_calls == 1
        assert set(tokens) == {"access-1"}

    @pytest.mark.asyncio
    async def test_lost_compare_and_swap_reuses_winner_token(self, store, registry, hubspot):
        """Another process rotates the tokens between our read and our write."""
        await store.upsert(_stored(-10))
        manager = TokenRefreshManager(store, registry, skew_seconds=60)
        connector = registry.get("hubspot")
        original_refresh = connector.refresh

        async def racing_refresh(refresh_token):
            await store.upsert(_stored(3600, refresh_token="refresh-other").model_copy(
                update={"access_token": "access-other"}
            ))
            return await original_refresh(refresh_token)

        with patch.object(connector, "refresh", side_effect=racing_refresh):
            token = await manager.get_access_token("user-1", "hubspot")

        assert token == "access-other"
        assert (await store.get("user-1", "hubspot")).refresh_token == "refresh-other"

    @pytest.mark.asyncio
    async def test_lost_compare_and_swap_with_stale_winner(self, store, registry, hubspot):
        await store.upsert(_stored(-10))
        manager = TokenRefreshManager(store, registry, skew_seconds=60)
        connector = registry.get("hubspot")
        original_refresh = connector.refresh

        async def racing_refresh(refresh_token):
            await store.upsert(_stored(-5, refresh_token="refresh-other"))
            return await original_refresh(refresh_token)

        with patch.object(connector, "refresh", side_effect=racing_refresh):
            with pytest.raises(RefreshConflict):
                await manager.get_access_token("user-1", "hubspot")

    @pytest.mark.asyncio
    async def test_refresh_locks_are_released(self, token_manager, store, hubspot):
        await store.upsert(_stored(-10))
        await store.upsert(_stored(-10).model_copy(update={"user_id": "user-2"}))

        await token_manager.get_access_token("user-1", "hubspot")
        await token_manager.get_access_token("user-2", "hubspot")

        assert hubspot.refresh_calls == 2
        assert len(token_manager._locks) == 0
