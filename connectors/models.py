"""
Pydantic schemas passed between connectors, the credential store and the
sync pipeline.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TokenGrant(BaseModel):
    """Parsed response of the provider's ``/oauth/token`` endpoint."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scopes: List[str] = Field(default_factory=list)


class AccountInfo(BaseModel):
    """Minimal remote account metadata fetched right after the exchange."""

    workspace_id: Optional[str] = None
    display_name: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class StoredCredential(BaseModel):
    """
    One integration's credential for one user, tokens already decrypted.

    ``token_expires_at`` of ``None`` means unknown / never expires.
    """

    user_id: str
    integration_type: str
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    workspace_id: Optional[str] = None
    additional_settings: Dict[str, Any] = Field(default_factory=dict)


class RecordPage(BaseModel):
    """One page of remote objects plus the cursor for the next page, if any."""

    results: List[Any]
    next_cursor: Optional[str] = None
