"""
ConnectorRegistry — builds and provides access to the configured connectors.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from config.settings import Settings
from connectors.base import BaseConnector
from connectors.hubspot import HubSpotConnector

logger = logging.getLogger(__name__)


class ConnectorRegistry:
    """Maps ``integration_type`` to its connector instance."""

    def __init__(self, connectors: List[BaseConnector]) -> None:
        self._connectors: Dict[str, BaseConnector] = {}
        for conn in connectors:
            if conn.is_configured():
                self._connectors[conn.provider_name] = conn
                logger.info(
                    "Connector registered: %s (%s)",
                    conn.display_name,
                    conn.provider_name,
                )
            else:
                logger.warning(
                    "Connector %s skipped — not configured (missing client_id/secret/redirect URI)",
                    conn.provider_name,
                )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorRegistry":
        """All known connectors — add new ones here."""
        return cls([
            HubSpotConnector(
                client_id=settings.hubspot_client_id,
                client_secret=settings.hubspot_client_secret,
                redirect_uri=settings.hubspot_redirect_uri,
                timeout=settings.http_timeout_seconds,
                transport=transport,
            ),
        ])

    def get(self, provider: str) -> Optional[BaseConnector]:
        return self._connectors.get(provider)

    def list_configured(self) -> List[str]:
        return list(self._connectors.keys())
