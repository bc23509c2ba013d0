"""
FastAPI dependencies (shared across routes).

``build_services`` wires every component from one ``Settings`` instance;
the result hangs off ``app.state.services`` and routes pull it with
``Depends(get_services)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from auth.identity import IdentityBackend, TokenIdentityBackend
from config.settings import Settings
from connectors.encryption import TokenCipher
from connectors.exceptions import ConfigurationError
from connectors.oauth_flow import AuthorizationFlow
from connectors.registry import ConnectorRegistry
from connectors.state import build_state_codec
from connectors.store import CredentialStore
from connectors.token_manager import TokenRefreshManager
from sync_pipeline.pipeline import SyncPipeline

INTEGRATION_TYPE = "hubspot"


@dataclass(frozen=True)
class Services:
    settings: Settings
    identity: IdentityBackend
    store: CredentialStore
    registry: ConnectorRegistry
    auth_flow: AuthorizationFlow
    token_manager: TokenRefreshManager
    sync_pipeline: SyncPipeline


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    identity: Optional[IdentityBackend] = None,
) -> Services:
    registry = ConnectorRegistry.from_settings(settings, transport=transport)
    connector = registry.get(INTEGRATION_TYPE)
    if connector is None:
        raise ConfigurationError(f"{INTEGRATION_TYPE} connector is not configured")

    store = CredentialStore(session_factory, TokenCipher(settings.token_encryption_key))
    token_manager = TokenRefreshManager(
        store, registry, skew_seconds=settings.token_expiry_skew_seconds
    )
    return Services(
        settings=settings,
        identity=identity or TokenIdentityBackend(settings.jwt_secret),
        store=store,
        registry=registry,
        auth_flow=AuthorizationFlow(
            connector, store, build_state_codec(settings), settings.frontend_url
        ),
        token_manager=token_manager,
        sync_pipeline=SyncPipeline(
            connector,
            token_manager,
            store,
            session_factory,
            page_size=settings.sync_page_size,
            max_pages=settings.sync_max_pages,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
