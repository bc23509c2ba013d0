"""
Shared fixtures: settings, a throwaway SQLite database and a fake HubSpot.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.fernet import Fernet

from config.settings import Settings
from connectors.encryption import TokenCipher
from connectors.registry import ConnectorRegistry
from connectors.store import CredentialStore
from connectors.token_manager import TokenRefreshManager
from database.session import build_engine, build_session_factory, create_tables


class FakeHubSpot:
    """
    In-memory stand-in for HubSpot's OAuth and CRM endpoints.

    Tweak the public attributes to make an endpoint fail, then hand
    ``transport`` to the connector.
    """

    def __init__(self) -> None:
        self.used_codes: set[str] = set()
        self.token_status = 200
        self.refresh_status = 200
        self.account_status = 200
        self.companies_status = 200
        self.companies_body: Optional[Dict[str, Any]] = None
        self.account_body: Optional[Dict[str, Any]] = None
        self.token_body: Optional[Dict[str, Any]] = None
        self.expires_in: Optional[int] = 1800
        self.rotate_refresh_token = True
        self.timeout_paths: set[str] = set()
        self.refresh_delay = 0.0
        self.pages: List[Dict[str, Any]] = [{"results": []}]

        self.refresh_calls = 0
        self.account_calls = 0
        self.company_requests: List[Dict[str, List[str]]] = []
        self._issued = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def _tokens(self) -> Dict[str, Any]:
        self._issued += 1
        body: Dict[str, Any] = {
            "access_token": f"access-{self._issued}",
            "token_type": "bearer",
            "scope": "crm.objects.companies.read oauth",
        }
        if self.expires_in is not None:
            body["expires_in"] = self.expires_in
        if self.rotate_refresh_token:
            body["refresh_token"] = f"refresh-{self._issued}"
        return body

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path in self.timeout_paths:
            raise httpx.ReadTimeout("timed out", request=request)

        if request.method == "POST" and path == "/oauth/v1/token":
            form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
            if form.get("grant_type") == "authorization_code":
                return self._exchange(form)
            return await self._refresh(form)

        if path == "/integrations/v1/me":
            self.account_calls += 1
            if self.account_status != 200:
                return httpx.Response(self.account_status, json={"message": "account lookup failed"})
            if self.account_body is not None:
                return httpx.Response(200, json=self.account_body)
            return httpx.Response(
                200, json={"hub_id": 4242, "hub_domain": "acme.hubspot.com", "hub_name": "Acme"}
            )

        if path == "/crm/v3/objects/companies":
            params = parse_qs(request.url.query.decode())
            self.company_requests.append(params)
            if self.companies_status != 200:
                return httpx.Response(self.companies_status, text="internal hiccup")
            if self.companies_body is not None:
                return httpx.Response(200, json=self.companies_body)
            after = params.get("after", ["0"])[0]
            return httpx.Response(200, json=self.pages[int(after)])

        return httpx.Response(404, text="not found")

    def _exchange(self, form: Dict[str, str]) -> httpx.Response:
        code = form.get("code", "")
        if self.token_status != 200:
            return httpx.Response(self.token_status, json={"status": "error", "message": "client secret mismatch"})
        if code in self.used_codes:
            return httpx.Response(
                400,
                json={"status": "BAD_AUTH_CODE", "message": "missing or unknown auth code"},
            )
        self.used_codes.add(code)
        if self.token_body is not None:
            return httpx.Response(200, json=self.token_body)
        return httpx.Response(200, json=self._tokens())

    async def _refresh(self, form: Dict[str, str]) -> httpx.Response:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_status != 200:
            return httpx.Response(
                self.refresh_status,
                json={"status": "BAD_REFRESH_TOKEN", "message": "refresh token is invalid"},
            )
        return httpx.Response(200, json=self._tokens())


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        hubspot_client_id="client-123",
        hubspot_client_secret="shh-secret",
        hubspot_redirect_uri="https://api.example.com/auth/callback",
        frontend_url="https://app.example.com",
        jwt_secret="test-jwt-secret",
        token_encryption_key=Fernet.generate_key().decode(),
        token_expiry_skew_seconds=60,
    )


@pytest.fixture
def hubspot() -> FakeHubSpot:
    return FakeHubSpot()


@pytest.fixture
async def session_factory(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield build_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def store(session_factory, settings) -> CredentialStore:
    return CredentialStore(session_factory, TokenCipher(settings.token_encryption_key))


@pytest.fixture
def registry(settings, hubspot) -> ConnectorRegistry:
    return ConnectorRegistry.from_settings(settings, transport=hubspot.transport)


@pytest.fixture
def connector(registry):
    return registry.get("hubspot")


@pytest.fixture
def token_manager(store, registry, settings) -> TokenRefreshManager:
    return TokenRefreshManager(store, registry, skew_seconds=settings.token_expiry_skew_seconds)
