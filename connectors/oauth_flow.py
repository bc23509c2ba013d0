"""
Authorization flow — consent-URL initiation and the callback handler.

The callback walks one attempt through

    Received → Validated → Exchanged → AccountFetched → Persisted → Redirected

and every failure short-circuits to an error redirect carrying the reason.
Raw tokens never leave this module towards the browser.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urlencode

from pydantic import BaseModel

from connectors.base import BaseConnector
from connectors.exceptions import AuthenticationError, ConnectorError, ProviderExchangeFailed
from connectors.models import StoredCredential
from connectors.state import StateCodec
from connectors.store import CredentialStore
from connectors.token_manager import expires_at_from

logger = logging.getLogger(__name__)

_INTEGRATIONS_PAGE = "/dashboard/data-sources/integrations"


class CallbackOutcome(BaseModel):
    success: bool
    message: Optional[str] = None
    redirect_url: str


class AuthorizationFlow:
    """Initiator + callback handler for one connector."""

    def __init__(
        self,
        connector: BaseConnector,
        store: CredentialStore,
        state_codec: StateCodec,
        frontend_url: str,
    ) -> None:
        self._connector = connector
        self._store = store
        self._state = state_codec
        self._frontend_url = frontend_url.rstrip("/")

    @property
    def integration_type(self) -> str:
        return self._connector.provider_name

    # ── Initiator ──────────────────────────────────────────────────────

    def build_authorization_url(self, user_id: str) -> str:
        """Consent URL for an already-authenticated caller."""
        if not user_id:
            raise AuthenticationError("User not authenticated")
        return self._connector.get_auth_url(self._state.encode(user_id))

    # ── Callback ───────────────────────────────────────────────────────

    def _redirect(self, success: bool, message: Optional[str] = None) -> str:
        params = {
            "integration": self.integration_type,
            "status": "success" if success else "error",
        }
        if not success and message:
            params["message"] = message
        return f"{self._frontend_url}{_INTEGRATIONS_PAGE}?{urlencode(params)}"

    async def complete(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> CallbackOutcome:
        """Finish one authorization attempt; never raises ``ConnectorError``."""
        try:
            user_id = await self._complete(code, state, error)
        except ConnectorError as exc:
            logger.warning("OAuth callback failed for %s: %s", self.integration_type, exc.message)
            return CallbackOutcome(
                success=False,
                message=exc.message,
                redirect_url=self._redirect(False, exc.message),
            )

        logger.info("OAuth connected: user=%s provider=%s", user_id, self.integration_type)
        return CallbackOutcome(success=True, redirect_url=self._redirect(True))

    async def _complete(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
    ) -> str:
        # Validated
        if error:
            raise ProviderExchangeFailed(f"{self._connector.display_name} Error: {error}")
        if not code or not state:
            raise AuthenticationError("Missing code or state")
        user_id = self._state.decode(state)

        # Exchanged
        grant = await self._connector.exchange_code(code)
        logger.debug("Code exchanged for %s user %s", self.integration_type, user_id)

        # AccountFetched
        account = await self._connector.fetch_account(grant.access_token)

        # Persisted
        now = datetime.now(timezone.utc)
        additional = {
            **{k: v for k, v in account.meta.items() if v is not None},
            "account_name": account.display_name,
            "scopes": grant.scopes,
            "connected_at": now.isoformat(),
        }
        await self._store.upsert(
            StoredCredential(
                user_id=user_id,
                integration_type=self.integration_type,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_expires_at=expires_at_from(grant.expires_in, now),
                workspace_id=account.workspace_id,
                additional_settings=additional,
            )
        )
        return user_id
