"""
CRM integration connector — application entry point.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.dependencies import build_services
from api.middleware import register_middleware
from api.routes import router as integrations_router
from config.settings import Settings, load_settings
from database.session import build_engine, build_session_factory, create_tables

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        stream=sys.stdout,
    )
    for _noisy in ("httpcore", "httpx", "sqlalchemy.engine"):
        logging.getLogger(_noisy).setLevel(logging.WARNING)


def create_app(
    settings: Optional[Settings] = None,
    *,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application.

    Missing OAuth configuration raises ``ConfigurationError`` here, so a
    misconfigured process never starts serving.
    """
    settings = settings or load_settings()
    configure_logging(settings)
    settings.require_oauth()

    engine = None
    if session_factory is None:
        engine = build_engine(
            settings.database_url, echo=settings.debug, timeout=settings.db_timeout_seconds
        )
        session_factory = build_session_factory(engine)

    app = FastAPI(
        title="CRM Integration Connector",
        version="1.0.0",
        description="OAuth2 CRM connection, token refresh and company sync.",
    )
    app.state.services = build_services(settings, session_factory, transport=transport)

    register_middleware(app, settings)
    app.include_router(integrations_router)

    @app.on_event("startup")
    async def on_startup():
        if engine is not None and settings.auto_create_tables:
            logger.info("Creating tables…")
            await create_tables(engine)
        logger.info(
            "Connectors ready: %s", ", ".join(app.state.services.registry.list_configured())
        )

    @app.on_event("shutdown")
    async def on_shutdown():
        if engine is not None:
            await engine.dispose()

    return app


if __name__ == "__main__":
    _settings = load_settings()
    uvicorn.run(
        "main:create_app",
        factory=True,
        host=_settings.host,
        port=_settings.port,
        reload=_settings.debug,
        log_level="debug" if _settings.debug else "info",
    )
