"""
HubSpotConnector — OAuth2 web flow and company fetch for HubSpot CRM.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from pydantic import ValidationError

from connectors.base import BaseConnector
from connectors.exceptions import ProviderProtocolError, RemoteProtocolError
from connectors.models import AccountInfo, RecordPage

logger = logging.getLogger(__name__)

# HubSpot endpoints
_HS_AUTH_URL = "https://app.hubspot.com/oauth/authorize"
_HS_API = "https://api.hubapi.com"
_HS_TOKEN_URL = f"{_HS_API}/oauth/v1/token"
_HS_ACCOUNT_URL = f"{_HS_API}/integrations/v1/me"
_HS_COMPANIES_URL = f"{_HS_API}/crm/v3/objects/companies"

COMPANY_PROPERTIES = [
    "name",
    "domain",
    "industry",
    "annualrevenue",
    "numberofemployees",
    "city",
    "country",
    "hs_created_date",
    "hs_lastmodifieddate",
]


class HubSpotConnector(BaseConnector):
    """OAuth2 connector for HubSpot."""

    @property
    def provider_name(self) -> str:
        return "hubspot"

    @property
    def display_name(self) -> str:
        return "HubSpot"

    @property
    def scopes(self) -> List[str]:
        return ["crm.objects.companies.read"]

    @property
    def authorize_url(self) -> str:
        return _HS_AUTH_URL

    @property
    def token_url(self) -> str:
        return _HS_TOKEN_URL

    async def fetch_account(self, access_token: str) -> AccountInfo:
        """Look up the portal (hub) the token was issued for."""
        data = await self._get_json(_HS_ACCOUNT_URL, access_token, what="HubSpot account")
        hub_id = data.get("hub_id", data.get("portalId"))
        try:
            return AccountInfo(
                workspace_id=str(hub_id) if hub_id is not None else None,
                display_name=data.get("hub_name") or data.get("accountName"),
                meta={"hub_domain": data.get("hub_domain")},
            )
        except ValidationError as exc:
            raise ProviderProtocolError(
                f"Invalid HubSpot account response: {exc.error_count()} invalid fields"
            ) from exc

    async def fetch_records_page(
        self,
        access_token: str,
        *,
        limit: int,
        after: Optional[str] = None,
    ) -> RecordPage:
        params = {"limit": limit, "properties": ",".join(COMPANY_PROPERTIES)}
        if after:
            params["after"] = after

        data = await self._get_json(
            _HS_COMPANIES_URL, access_token, params=params, what="companies"
        )
        results = data.get("results")
        if not isinstance(results, list):
            raise RemoteProtocolError("Invalid response from HubSpot API: missing 'results'")

        next_cursor = ((data.get("paging") or {}).get("next") or {}).get("after")
        return RecordPage(
            results=results,
            next_cursor=str(next_cursor) if next_cursor else None,
        )
