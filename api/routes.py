"""
Integration API routes — OAuth init/callback, company sync, connection list.

    GET  /auth/init          → 200 {url}               | 500 {error}
    GET  /auth/callback      → 302 to the frontend with status=success|error
    POST /sync/companies     → 200 {success, message, count}
                               | 401/500 {error, message}
    GET  /integrations       → the caller's connections (no tokens)
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.responses import JSONResponse, RedirectResponse

from api.dependencies import Services, get_services
from auth.identity import resolve_user
from connectors.exceptions import AuthenticationError, ConnectorError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["integrations"])


@router.get("/auth/init")
async def auth_init(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Return the provider consent URL for the authenticated caller."""
    try:
        user_id = await resolve_user(services.identity, authorization)
        url = services.auth_flow.build_authorization_url(user_id)
    except ConnectorError as exc:
        logger.warning("auth init failed: %s", exc.message)
        return JSONResponse({"error": exc.message}, status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse({"url": url})


@router.get("/auth/callback")
async def auth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    services: Services = Depends(get_services),
) -> RedirectResponse:
    """
    OAuth callback — the provider redirects here after consent.

    Always answers with a 302 to the frontend integrations page.
    """
    outcome = await services.auth_flow.complete(code, state, error)
    return RedirectResponse(outcome.redirect_url, status_code=status.HTTP_302_FOUND)


@router.post("/sync/companies")
async def sync_companies(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """Fetch the caller's companies from the CRM and upsert them locally."""
    try:
        user_id = await resolve_user(services.identity, authorization)
        summary = await services.sync_pipeline.sync(user_id)
    except AuthenticationError as exc:
        return JSONResponse(
            {"error": True, "message": exc.message},
            status_code=status.HTTP_401_UNAUTHORIZED,
        )
    except ConnectorError as exc:
        logger.error("Error in company sync: %s", exc.message)
        return JSONResponse(
            {"error": True, "message": exc.message},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return JSONResponse(
        {
            "success": True,
            "message": f"Successfully fetched and stored {summary.count} companies",
            "count": summary.count,
            "has_more": summary.has_more,
        }
    )


@router.get("/integrations")
async def list_integrations(
    authorization: Optional[str] = Header(None),
    services: Services = Depends(get_services),
) -> JSONResponse:
    """List the caller's integration connections (no tokens exposed)."""
    try:
        user_id = await resolve_user(services.identity, authorization)
        connections = await services.store.list_for_user(user_id)
    except ConnectorError as exc:
        return JSONResponse({"error": True, "message": exc.message}, status_code=exc.status_code)
    return JSONResponse({"integrations": connections})
