"""Per-account sync state and the sync lease.

``contact_sync_state`` holds one row per (owner, external account). Its
``sync_status`` doubles as the lease: a run may only start when no other run
is ``syncing`` or when that run's lease has gone stale.

Every acquisition mints a fresh ``lease_id``. Renewal and release are fenced
on it, so a run whose stale lease was taken over can no longer write.

Legal transitions::

    never_synced -> syncing -> completed | failed
    completed | failed -> syncing
    syncing -> never_synced    (cursor invalidation only)
"""

from __future__ import annotations

import logging
import uuid

import asyncpg

from rolodex.db import translate_db_errors
from rolodex.errors import SyncInProgressError, SyncLeaseLostError
from rolodex.models import SyncState

logger = logging.getLogger(__name__)

LEASE_EXPIRED_MESSAGE = "lease expired"
CURSOR_INVALIDATED_MESSAGE = "Sync token expired - full sync required"
DEFAULT_LEASE_TIMEOUT_S = 900.0

_MAX_ERROR_CHARS = 500


def truncate_error(message: str) -> str:
    return " ".join(str(message).split())[:_MAX_ERROR_CHARS] or "unknown error"


class SyncStateStore:
    """asyncpg-backed repository for ``contact_sync_state``."""

    def __init__(
        self, pool: asyncpg.Pool, *, lease_timeout_s: float = DEFAULT_LEASE_TIMEOUT_S
    ) -> None:
        self._pool = pool
        self._lease_timeout_s = float(lease_timeout_s)

    async def get(self, owner_id: str, account_email: str) -> SyncState | None:
        with translate_db_errors("get sync state"):
            row = await self._pool.fetchrow(
                """
                SELECT * FROM contact_sync_state
                WHERE owner_id = $1 AND account_email = $2
                """,
                owner_id,
                account_email,
            )
        return SyncState.from_row(row) if row is not None else None

    async def list_states(self, owner_id: str) -> list[SyncState]:
        with translate_db_errors("list sync states"):
            rows = await self._pool.fetch(
                "SELECT * FROM contact_sync_state WHERE owner_id = $1 ORDER BY account_email",
                owner_id,
            )
        return [SyncState.from_row(row) for row in rows]

    async def acquire_lease(self, owner_id: str, account_email: str) -> SyncState:
        """Move the account to ``syncing`` under a new ``lease_id``.

        Raises ``SyncInProgressError`` while another run holds a fresh lease.
        A stale lease is recorded as ``failed`` before being taken over.
        """
        with translate_db_errors("acquire sync lease"):
            async with self._pool.acquire() as conn, conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO contact_sync_state (owner_id, account_email)
                    VALUES ($1, $2)
                    ON CONFLICT (owner_id, account_email) DO NOTHING
                    """,
                    owner_id,
                    account_email,
                )
                row = await conn.fetchrow(
                    """
                    SELECT sync_status,
                           (lease_acquired_at IS NULL
                            OR lease_acquired_at < now() - make_interval(secs => $3))
                               AS lease_expired
                    FROM contact_sync_state
                    WHERE owner_id = $1 AND account_email = $2
                    FOR UPDATE
                    """,
                    owner_id,
                    account_email,
                    self._lease_timeout_s,
                )
                if row["sync_status"] == "syncing":
                    if not row["lease_expired"]:
                        raise SyncInProgressError(owner_id, account_email)
                    logger.warning(
                        "Sync lease for %s/%s expired; taking it over", owner_id, account_email
                    )

                acquired = await conn.fetchrow(
                    """
                    UPDATE contact_sync_state SET
                        sync_status = 'syncing',
                        error_message = CASE
                            WHEN sync_status = 'syncing' THEN $4 ELSE error_message
                        END,
                        lease_id = $3,
                        lease_acquired_at = now(),
                        updated_at = now()
                    WHERE owner_id = $1 AND account_email = $2
                    RETURNING *
                    """,
                    owner_id,
                    account_email,
                    uuid.uuid4(),
                    LEASE_EXPIRED_MESSAGE,
                )
        return SyncState.from_row(acquired)

    async def renew_lease(
        self, owner_id: str, account_email: str, *, lease_id: uuid.UUID
    ) -> SyncState:
        """Restart the lease clock for the run holding *lease_id*."""
        with translate_db_errors("renew sync lease"):
            row = await self._pool.fetchrow(
                """
                UPDATE contact_sync_state SET
                    lease_acquired_at = now(),
                    updated_at = now()
                WHERE owner_id = $1 AND account_email = $2
                  AND sync_status = 'syncing' AND lease_id = $3
                RETURNING *
                """,
                owner_id,
                account_email,
                lease_id,
            )
        return await self._require_lease(owner_id, account_email, row)

    async def complete(
        self,
        owner_id: str,
        account_email: str,
        *,
        lease_id: uuid.UUID,
        sync_token: str | None,
        full: bool,
    ) -> SyncState:
        """Release the lease after a successful run and persist the new cursor."""
        with translate_db_errors("complete sync"):
            row = await self._pool.fetchrow(
                """
                UPDATE contact_sync_state SET
                    sync_status = 'completed',
                    sync_token = $4,
                    last_full_sync_at = CASE WHEN $5 THEN now() ELSE last_full_sync_at END,
                    last_incremental_sync_at = CASE
                        WHEN $5 THEN last_incremental_sync_at ELSE now()
                    END,
                    error_message = NULL,
                    lease_id = NULL,
                    lease_acquired_at = NULL,
                    updated_at = now()
                WHERE owner_id = $1 AND account_email = $2
                  AND sync_status = 'syncing' AND lease_id = $3
                RETURNING *
                """,
                owner_id,
                account_email,
                lease_id,
                sync_token,
                full,
            )
        return await self._require_lease(owner_id, account_email, row)

    async def fail(
        self, owner_id: str, account_email: str, message: str, *, lease_id: uuid.UUID
    ) -> SyncState:
        """Release the lease after a failed run; the stored cursor is kept."""
        with translate_db_errors("record sync failure"):
            row = await self._pool.fetchrow(
                """
                UPDATE contact_sync_state SET
                    sync_status = 'failed',
                    error_message = $4,
                    lease_id = NULL,
                    lease_acquired_at = NULL,
                    updated_at = now()
                WHERE owner_id = $1 AND account_email = $2
                  AND sync_status = 'syncing' AND lease_id = $3
                RETURNING *
                """,
                owner_id,
                account_email,
                lease_id,
                truncate_error(message),
            )
        return await self._require_lease(owner_id, account_email, row)

    async def invalidate(
        self,
        owner_id: str,
        account_email: str,
        *,
        lease_id: uuid.UUID,
        message: str = CURSOR_INVALIDATED_MESSAGE,
    ) -> SyncState:
        """Release the lease and drop the cursor so the next run is a full sync."""
        with translate_db_errors("invalidate sync cursor"):
            row = await self._pool.fetchrow(
                """
                UPDATE contact_sync_state SET
                    sync_status = 'never_synced',
                    sync_token = NULL,
                    error_message = $4,
                    lease_id = NULL,
                    lease_acquired_at = NULL,
                    updated_at = now()
                WHERE owner_id = $1 AND account_email = $2
                  AND sync_status = 'syncing' AND lease_id = $3
                RETURNING *
                """,
                owner_id,
                account_email,
                lease_id,
                message,
            )
        return await self._require_lease(owner_id, account_email, row)

    async def accounts_needing_sync(
        self, *, interval_s: float, owner_id: str | None = None
    ) -> list[SyncState]:
        """Accounts idle for at least *interval_s* (or never synced) and not leased."""
        with translate_db_errors("list accounts needing sync"):
            rows = await self._pool.fetch(
                """
                SELECT * FROM contact_sync_state
                WHERE ($1::text IS NULL OR owner_id = $1)
                  AND (
                        sync_status <> 'syncing'
                        OR lease_acquired_at IS NULL
                        OR lease_acquired_at < now() - make_interval(secs => $3)
                  )
                  AND (
                        sync_status = 'never_synced'
                        OR GREATEST(last_full_sync_at, last_incremental_sync_at) IS NULL
                        OR GREATEST(last_full_sync_at, last_incremental_sync_at)
                           < now() - make_interval(secs => $2)
                  )
                ORDER BY GREATEST(last_full_sync_at, last_incremental_sync_at) NULLS FIRST,
                         owner_id, account_email
                """,
                owner_id,
                float(interval_s),
                self._lease_timeout_s,
            )
        return [SyncState.from_row(row) for row in rows]

    async def _require_lease(
        self, owner_id: str, account_email: str, row: asyncpg.Record | None
    ) -> SyncState:
        if row is not None:
            return SyncState.from_row(row)
        current = await self.get(owner_id, account_email)
        raise SyncLeaseLostError(
            owner_id,
            account_email,
            current=current.sync_status.value if current else "missing",
        )


__all__ = [
    "CURSOR_INVALIDATED_MESSAGE",
    "LEASE_EXPIRED_MESSAGE",
    "SyncStateStore",
    "truncate_error",
]
