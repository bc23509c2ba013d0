"""
Sync pipeline — pull remote companies and upsert them into ``company_data``.

    token (TokenRefreshManager) → fetch page → map → de-dup → upsert
                                      ↑_____ continuation cursor _____|

Each page is committed on its own, so a failure on page N leaves pages
1..N-1 in place.  Re-running a sync rewrites the same rows (keyed on
``(user_id, remote_id)``) instead of appending new ones.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.base import BaseConnector
from connectors.exceptions import StorageError
from connectors.store import CredentialStore
from connectors.token_manager import TokenRefreshManager
from database.helpers import upsert_rows
from database.models import CompanyRecord
from sync_pipeline.mapper import map_company

logger = logging.getLogger(__name__)

_COMPANY_KEY = ("user_id", "remote_id")


class SyncSummary(BaseModel):
    count: int
    pages: int
    has_more: bool = False


class SyncPipeline:
    """Company sync for one connector."""

    def __init__(
        self,
        connector: BaseConnector,
        token_manager: TokenRefreshManager,
        store: CredentialStore,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        page_size: int = 100,
        max_pages: int = 1,
    ) -> None:
        self._connector = connector
        self._tokens = token_manager
        self._store = store
        self._session_factory = session_factory
        self._page_size = page_size
        self._max_pages = max_pages

    @property
    def integration_type(self) -> str:
        return self._connector.provider_name

    async def sync(self, user_id: str, *, max_pages: Optional[int] = None) -> SyncSummary:
        """
        Run one sync for ``user_id``.

        Parameters
        ----------
        max_pages : int, optional
            Upper bound on pages followed this call (defaults to the
            configured ``sync_max_pages``).  ``has_more`` in the summary
            tells whether the remote side still had a cursor left.

        Token and remote errors propagate unchanged.
        """
        limit_pages = max(1, max_pages or self._max_pages)
        access_token = await self._tokens.get_access_token(user_id, self.integration_type)

        total = 0
        pages = 0
        cursor: Optional[str] = None
        while True:
            page = await self._connector.fetch_records_page(
                access_token, limit=self._page_size, after=cursor
            )
            pages += 1
            logger.info(
                "Fetched %d %s companies (page %d) for user %s",
                len(page.results), self.integration_type, pages, user_id,
            )
            rows = self._map_page(page.results, user_id)
            total += await self._write(rows)

            cursor = page.next_cursor
            if not cursor or pages >= limit_pages:
                break

        await self._store.merge_settings(
            user_id,
            self.integration_type,
            {
                "last_synced": datetime.now(timezone.utc).isoformat(),
                "last_sync_count": total,
            },
        )
        logger.info("Successfully stored %d companies for user %s", total, user_id)
        return SyncSummary(count=total, pages=pages, has_more=bool(cursor))

    def _map_page(self, results: List[Dict[str, Any]], user_id: str) -> List[Dict[str, Any]]:
        synced_at = datetime.now(timezone.utc)
        # one row per remote id: a single upsert statement cannot touch a key twice
        by_id: Dict[str, Dict[str, Any]] = {}
        for remote in results:
            if not isinstance(remote, dict):
                continue
            row = map_company(
                remote, user_id=user_id, source=self.integration_type, synced_at=synced_at
            )
            if row is None:
                logger.debug("Skipping %s company without id", self.integration_type)
                continue
            by_id[row["remote_id"]] = row
        return list(by_id.values())

    async def _write(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    return await upsert_rows(session, CompanyRecord, rows, _COMPANY_KEY)
        except SQLAlchemyError as exc:
            detail = getattr(exc, "orig", None) or exc
            raise StorageError(f"Failed to store companies: {detail}") from exc
