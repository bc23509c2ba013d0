"""
BaseConnector — abstract OAuth2 authorization-code connector for CRMs.

The token-endpoint plumbing (code exchange, refresh) is shared here; every
provider (HubSpot, …) subclasses this and supplies its endpoints, scopes,
account lookup and paginated record fetch.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from connectors.exceptions import (
    ProviderExchangeFailed,
    ProviderProtocolError,
    RefreshFailed,
    RemoteFetchFailed,
    RemoteTimeout,
)
from connectors.models import AccountInfo, RecordPage, TokenGrant

logger = logging.getLogger(__name__)

_EXCERPT_CHARS = 500


def _excerpt(response: httpx.Response) -> str:
    return response.text[:_EXCERPT_CHARS]


def provider_message(response: httpx.Response, fallback: str) -> str:
    """Pull the most useful error text out of a provider error response."""
    try:
        body = response.json()
    except ValueError:
        return f"{fallback}: {response.status_code} - {_excerpt(response)}"
    if isinstance(body, dict):
        for key in ("message", "error_description", "error"):
            if body.get(key):
                return str(body[key])
    return f"{fallback}: {response.status_code} - {_excerpt(response)}"


class BaseConnector(ABC):
    """Abstract base for all OAuth2 CRM connectors."""

    def __init__(
        self,
        *,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    # ── Identity ────────────────────────────────────────────────────────
    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Unique slug stored as ``integration_type``: 'hubspot', …"""
        ...

    @property
    @abstractmethod
    def display_name(self) -> str:
        ...

    @property
    @abstractmethod
    def scopes(self) -> List[str]:
        """Least-privilege scopes the sync pipeline needs."""
        ...

    @property
    @abstractmethod
    def authorize_url(self) -> str:
        ...

    @property
    @abstractmethod
    def token_url(self) -> str:
        ...

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    def client(self) -> httpx.AsyncClient:
        """New HTTP client; every outbound call is bounded by the timeout."""
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    # ── OAuth flow ──────────────────────────────────────────────────────

    def get_auth_url(self, state: str) -> str:
        """
        Build the provider's OAuth2 consent URL.

        Parameters
        ----------
        state : str
            Opaque state string bound to the requesting user.
        """
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
        }
        return f"{self.authorize_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Trade an authorization code for tokens."""
        return await self._token_request(
            {
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
            error_cls=ProviderExchangeFailed,
            fallback="Token exchange failed",
        )

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Trade a refresh token for a new access token (and maybe a new refresh token)."""
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
            error_cls=RefreshFailed,
            fallback="Token refresh failed",
        )

    async def _token_request(
        self,
        form: Dict[str, str],
        *,
        error_cls: type[ProviderExchangeFailed],
        fallback: str,
    ) -> TokenGrant:
        try:
            async with self.client() as client:
                resp = await client.post(
                    self.token_url,
                    data=form,
                    headers={"Accept": "application/json"},
                )
        except httpx.TimeoutException as exc:
            raise RemoteTimeout(f"{self.display_name} token endpoint timed out") from exc
        except httpx.HTTPError as exc:
            raise error_cls(f"{fallback}: {exc}") from exc

        if resp.status_code >= 400:
            raise error_cls(provider_message(resp, fallback))

        try:
            data = resp.json()
        except ValueError as exc:
            raise error_cls(f"{fallback}: non-JSON response from token endpoint") from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            # some providers answer 200 with an error body
            raise error_cls(provider_message(resp, f"{fallback}: response lacks access_token"))

        scope = data.get("scope") or ""
        if isinstance(scope, str):
            scopes = scope.split()
        elif isinstance(scope, list):
            scopes = [str(s) for s in scope]
        else:
            scopes = []
        try:
            return TokenGrant(
                access_token=data["access_token"],
                refresh_token=data.get("refresh_token"),
                expires_in=_int_or_none(data.get("expires_in")),
                scopes=scopes,
            )
        except ValidationError as exc:
            raise error_cls(f"{fallback}: malformed token response ({exc.error_count()} invalid fields)") from exc

    # ── Remote API ──────────────────────────────────────────────────────

    async def _get_json(
        self,
        url: str,
        access_token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        what: str,
    ) -> Dict[str, Any]:
        """Bearer-authenticated GET returning a JSON object."""
        try:
            async with self.client() as client:
                resp = await client.get(
                    url,
                    params=params,
                    headers={
                        "Authorization": f"Bearer {access_token}",
                        "Accept": "application/json",
                    },
                )
        except httpx.TimeoutException as exc:
            raise RemoteTimeout(f"{self.display_name} {what} request timed out") from exc
        except httpx.HTTPError as exc:
            raise RemoteFetchFailed(f"Failed to fetch {what}: {exc}") from exc

        if resp.status_code >= 400:
            raise RemoteFetchFailed(
                f"Failed to fetch {what}: {resp.status_code} - {_excerpt(resp)}"
            )
        try:
            data = resp.json()
        except ValueError as exc:
            raise ProviderProtocolError(f"Invalid JSON in {what} response") from exc
        if not isinstance(data, dict):
            raise ProviderProtocolError(f"Unexpected {what} response shape")
        return data

    @abstractmethod
    async def fetch_account(self, access_token: str) -> AccountInfo:
        """Fetch tenant id / display name for a freshly issued token."""
        ...

    @abstractmethod
    async def fetch_records_page(
        self,
        access_token: str,
        *,
        limit: int,
        after: Optional[str] = None,
    ) -> RecordPage:
        """Fetch one page of remote records starting at cursor ``after``."""
        ...


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
