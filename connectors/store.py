"""
Credential store — the durable record of each user's integration tokens.

At most one row exists per ``(user_id, integration_type)``; every write is
an upsert on that pair.  Tokens are encrypted with ``TokenCipher`` on the
way in and decrypted on the way out, so callers only ever see plaintext.
Rows are never deleted here (disconnecting is handled elsewhere).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from connectors.encryption import TokenCipher
from connectors.exceptions import StorageError
from connectors.models import StoredCredential
from database.helpers import upsert_rows
from database.models import IntegrationCredential

logger = logging.getLogger(__name__)

_KEY_COLUMNS = ("user_id", "integration_type")


def _storage_error(action: str, exc: SQLAlchemyError) -> StorageError:
    detail = getattr(exc, "orig", None) or exc
    return StorageError(f"Failed to {action}: {detail}")


class CredentialStore:
    """Async access to the ``integration_settings`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cipher: TokenCipher,
    ) -> None:
        self._session_factory = session_factory
        self._cipher = cipher

    def _to_model(self, row: IntegrationCredential) -> StoredCredential:
        return StoredCredential(
            user_id=row.user_id,
            integration_type=row.integration_type,
            access_token=self._cipher.decrypt(row.access_token),
            refresh_token=self._cipher.decrypt(row.refresh_token),
            token_expires_at=_as_utc(row.token_expires_at),
            workspace_id=row.workspace_id,
            additional_settings=dict(row.additional_settings or {}),
        )

    @staticmethod
    async def _load(
        session: AsyncSession,
        user_id: str,
        integration_type: str,
        *,
        for_update: bool = False,
    ) -> Optional[IntegrationCredential]:
        stmt = select(IntegrationCredential).where(
            IntegrationCredential.user_id == user_id,
            IntegrationCredential.integration_type == integration_type,
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    # ── Reads ──────────────────────────────────────────────────────────

    async def get(self, user_id: str, integration_type: str) -> Optional[StoredCredential]:
        """Return the credential, or ``None`` when the user never connected."""
        try:
            async with self._session_factory() as session:
                row = await self._load(session, user_id, integration_type)
                return self._to_model(row) if row else None
        except SQLAlchemyError as exc:
            raise _storage_error("load integration credential", exc) from exc

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """Return every connection of a user (no tokens exposed)."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(IntegrationCredential).where(IntegrationCredential.user_id == user_id)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise _storage_error("list integration credentials", exc) from exc

        return [
            {
                "integration_type": r.integration_type,
                "workspace_id": r.workspace_id,
                "token_expires_at": _iso(r.token_expires_at),
                "additional_settings": r.additional_settings or {},
                "updated_at": _iso(r.updated_at),
            }
            for r in rows
        ]

    # ── Writes ─────────────────────────────────────────────────────────

    async def upsert(self, credential: StoredCredential) -> None:
        """Insert the credential or replace the existing one for the same key."""
        row = {
            "user_id": credential.user_id,
            "integration_type": credential.integration_type,
            "access_token": self._cipher.encrypt(credential.access_token),
            "refresh_token": self._cipher.encrypt(credential.refresh_token),
            "token_expires_at": credential.token_expires_at,
            "workspace_id": credential.workspace_id,
            "additional_settings": credential.additional_settings,
            "updated_at": datetime.now(timezone.utc),
        }
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await upsert_rows(session, IntegrationCredential, [row], _KEY_COLUMNS)
        except SQLAlchemyError as exc:
            raise _storage_error("store integration credential", exc) from exc
        logger.info(
            "Stored %s credential for user %s", credential.integration_type, credential.user_id
        )

    async def swap_tokens(
        self,
        user_id: str,
        integration_type: str,
        *,
        expected_refresh_token: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
    ) -> bool:
        """
        Compare-and-swap the token triple.

        The update only applies while the stored refresh token still equals
        ``expected_refresh_token``.  Returns ``False`` when another writer
        rotated it first (or the row vanished); nothing is written then.
        """
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._load(session, user_id, integration_type, for_update=True)
                    if row is None:
                        return False
                    stored_raw = row.refresh_token
                    if self._cipher.decrypt(stored_raw) != expected_refresh_token:
                        return False
                    result = await session.execute(
                        update(IntegrationCredential)
                        .where(
                            IntegrationCredential.id == row.id,
                            IntegrationCredential.refresh_token == stored_raw,
                        )
                        .values(
                            access_token=self._cipher.encrypt(access_token),
                            refresh_token=self._cipher.encrypt(refresh_token),
                            token_expires_at=token_expires_at,
                            updated_at=datetime.now(timezone.utc),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    return result.rowcount == 1
        except SQLAlchemyError as exc:
            raise _storage_error("update refreshed tokens", exc) from exc

    async def merge_settings(
        self,
        user_id: str,
        integration_type: str,
        updates: Dict[str, Any],
    ) -> None:
        """Merge ``updates`` into ``additional_settings`` key by key."""
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    row = await self._load(session, user_id, integration_type, for_update=True)
                    if row is None:
                        return
                    merged = dict(row.additional_settings or {})
                    merged.update(updates)
                    row.additional_settings = merged
        except SQLAlchemyError as exc:
            raise _storage_error("update integration settings", exc) from exc


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = _as_utc(value)
    return value.isoformat() if value else None
