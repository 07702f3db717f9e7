"""Links between contacts and external directory records (``contact_sources``)."""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import asyncpg

from rolodex.db import translate_db_errors
from rolodex.models import ContactSource, DirectoryProvider, SyncDirection

logger = logging.getLogger(__name__)


class ContactSourceStore:
    """asyncpg-backed repository for ``contact_sources``.

    Sources carry no owner column; every lookup joins through ``contacts`` so
    one owner can never see another owner's links.
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def get_by_resource(
        self,
        owner_id: str,
        provider: DirectoryProvider,
        account_email: str,
        resource_name: str,
    ) -> ContactSource | None:
        with translate_db_errors("get contact source"):
            row = await self._pool.fetchrow(
                """
                SELECT s.* FROM contact_sources s
                JOIN contacts c ON c.id = s.contact_id
                WHERE c.owner_id = $1
                  AND s.provider = $2
                  AND s.account_email = $3
                  AND s.external_resource_name = $4
                """,
                owner_id,
                provider.value,
                account_email,
                resource_name,
            )
        return ContactSource.from_row(row) if row is not None else None

    async def list_for_contact(self, owner_id: str, contact_id: uuid.UUID) -> list[ContactSource]:
        with translate_db_errors("list contact sources"):
            rows = await self._pool.fetch(
                """
                SELECT s.* FROM contact_sources s
                JOIN contacts c ON c.id = s.contact_id
                WHERE c.owner_id = $1 AND s.contact_id = $2
                ORDER BY s.created_at
                """,
                owner_id,
                contact_id,
            )
        return [ContactSource.from_row(row) for row in rows]

    async def create(
        self,
        contact_id: uuid.UUID,
        *,
        provider: DirectoryProvider,
        account_email: str,
        resource_name: str,
        external_id: str,
        etag: str | None,
        metadata: dict[str, Any] | None = None,
        sync_direction: SyncDirection = SyncDirection.IMPORT,
    ) -> ContactSource:
        """Insert a link; an existing link for the same resource is refreshed instead."""
        with translate_db_errors("create contact source"):
            row = await self._pool.fetchrow(
                """
                INSERT INTO contact_sources (
                    contact_id, provider, external_id, external_resource_name,
                    account_email, etag, sync_direction, metadata, last_synced_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, now())
                ON CONFLICT (external_resource_name, account_email, provider) DO UPDATE SET
                    contact_id = EXCLUDED.contact_id,
                    external_id = EXCLUDED.external_id,
                    etag = EXCLUDED.etag,
                    metadata = EXCLUDED.metadata,
                    last_synced_at = now(),
                    updated_at = now()
                RETURNING *
                """,
                contact_id,
                provider.value,
                external_id,
                resource_name,
                account_email,
                etag,
                sync_direction.value,
                json.dumps(metadata or {}),
            )
        return ContactSource.from_row(row)

    async def update(
        self,
        source_id: uuid.UUID,
        *,
        external_id: str,
        etag: str | None,
        metadata: dict[str, Any] | None = None,
        sync_direction: SyncDirection | None = None,
    ) -> ContactSource | None:
        """Refresh a link after a sync or export; the direction is kept unless given."""
        with translate_db_errors("update contact source"):
            row = await self._pool.fetchrow(
                """
                UPDATE contact_sources SET
                    external_id = $2,
                    etag = $3,
                    metadata = metadata || $4::jsonb,
                    sync_direction = COALESCE($5, sync_direction),
                    last_synced_at = now(),
                    updated_at = now()
                WHERE id = $1
                RETURNING *
                """,
                source_id,
                external_id,
                etag,
                json.dumps(metadata or {}),
                sync_direction.value if sync_direction is not None else None,
            )
        return ContactSource.from_row(row) if row is not None else None

    async def delete(self, source_id: uuid.UUID) -> bool:
        with translate_db_errors("delete contact source"):
            result = await self._pool.execute(
                "DELETE FROM contact_sources WHERE id = $1",
                source_id,
            )
        return result.endswith(" 1")


__all__ = ["ContactSourceStore"]
