"""PostgreSQL persistence for the contact verification queue.

A partial unique index keeps at most one ``pending`` item per contact; every
write that touches both a queue item and its contact runs in one transaction.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass

import asyncpg

from rolodex.contacts.decision import QueueSuggestion
from rolodex.db import translate_db_errors
from rolodex.errors import InvalidTransitionError, NotFoundError, ValidationError
from rolodex.models import (
    METHOD_AUTO_QUEUE,
    Contact,
    QueueItemUpdate,
    QueueStatus,
    VerificationQueueItem,
    VerificationStatus,
    clamp_confidence,
    dedupe,
)

logger = logging.getLogger(__name__)

QUEUE_ITEM_ENTITY = "verification queue item"


@dataclass(frozen=True)
class Resolution:
    """Terminal reviewer action applied to a pending queue item and its contact."""

    target: QueueStatus
    contact_status: VerificationStatus
    method: str
    actor: str
    expected_contact_id: uuid.UUID | None = None
    updates: QueueItemUpdate | None = None


def check_resolvable(item: VerificationQueueItem, resolution: Resolution) -> None:
    """Raise when *resolution* cannot be applied to *item*."""
    if item.status != QueueStatus.PENDING:
        raise InvalidTransitionError(
            entity=QUEUE_ITEM_ENTITY,
            current=item.status.value,
            target=resolution.target.value,
        )
    if (
        resolution.expected_contact_id is not None
        and resolution.expected_contact_id != item.contact_id
    ):
        raise ValidationError(
            f"Queue item {item.id} belongs to contact {item.contact_id}, "
            f"not {resolution.expected_contact_id}"
        )


class VerificationQueueStore:
    """asyncpg-backed repository for ``contact_verification_queue``."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def enqueue(
        self,
        owner_id: str,
        contact_id: uuid.UUID,
        suggestion: QueueSuggestion,
        *,
        sample_email_ids: Sequence[str] = (),
    ) -> tuple[VerificationQueueItem | None, bool]:
        """Open a review item and mark the contact ``pending``.

        Returns ``(item, created)``. When the contact already has an open item
        that item is returned with ``created=False``; when the contact is no
        longer unverified and has no open item, ``(None, False)``.
        """
        with translate_db_errors("enqueue verification"):
            async with self._pool.acquire() as conn, conn.transaction():
                transitioned = await conn.fetchval(
                    """
                    UPDATE contacts SET
                        verification_status = 'pending',
                        verification_method = $3,
                        updated_at = now()
                    WHERE owner_id = $1 AND id = $2 AND verification_status = 'unverified'
                    RETURNING id
                    """,
                    owner_id,
                    contact_id,
                    METHOD_AUTO_QUEUE,
                )
                row = None
                if transitioned is not None:
                    row = await conn.fetchrow(
                        """
                        INSERT INTO contact_verification_queue (
                            owner_id, contact_id, suggested_type, suggested_tags,
                            reasoning, confidence, sample_email_ids
                        )
                        VALUES ($1, $2, $3, $4::text[], $5, $6, $7::text[])
                        ON CONFLICT (contact_id) WHERE status = 'pending' DO NOTHING
                        RETURNING *
                        """,
                        owner_id,
                        contact_id,
                        suggestion.source_type.value if suggestion.source_type else None,
                        dedupe(suggestion.tags),
                        suggestion.reasoning,
                        clamp_confidence(suggestion.confidence)
                        if suggestion.confidence is not None
                        else None,
                        dedupe(sample_email_ids),
                    )
                if row is not None:
                    return VerificationQueueItem.from_row(row), True

                existing = await conn.fetchrow(
                    """
                    SELECT * FROM contact_verification_queue
                    WHERE owner_id = $1 AND contact_id = $2 AND status = 'pending'
                    """,
                    owner_id,
                    contact_id,
                )
        if existing is None:
            return None, False
        logger.debug("Contact %s already has open queue item %s", contact_id, existing["id"])
        return VerificationQueueItem.from_row(existing), False

    async def get(self, owner_id: str, queue_id: uuid.UUID) -> VerificationQueueItem | None:
        with translate_db_errors("get queue item"):
            row = await self._pool.fetchrow(
                "SELECT * FROM contact_verification_queue WHERE owner_id = $1 AND id = $2",
                owner_id,
                queue_id,
            )
        return VerificationQueueItem.from_row(row) if row is not None else None

    async def list_items(
        self,
        owner_id: str,
        *,
        status: QueueStatus | None = QueueStatus.PENDING,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VerificationQueueItem]:
        """Newest first; ``status=None`` lists every item."""
        with translate_db_errors("list queue items"):
            rows = await self._pool.fetch(
                """
                SELECT * FROM contact_verification_queue
                WHERE owner_id = $1 AND ($2::text IS NULL OR status = $2)
                ORDER BY created_at DESC, id
                LIMIT $3 OFFSET $4
                """,
                owner_id,
                status.value if status else None,
                max(1, int(limit)),
                max(0, int(offset)),
            )
        return [VerificationQueueItem.from_row(row) for row in rows]

    async def list_pending_by_domain(
        self, owner_id: str, domain: str
    ) -> list[VerificationQueueItem]:
        with translate_db_errors("list queue items by domain"):
            rows = await self._pool.fetch(
                """
                SELECT q.* FROM contact_verification_queue q
                JOIN contacts c ON c.id = q.contact_id
                WHERE q.owner_id = $1 AND q.status = 'pending' AND c.domain = $2
                ORDER BY q.created_at, q.id
                """,
                owner_id,
                domain.strip().lower(),
            )
        return [VerificationQueueItem.from_row(row) for row in rows]

    async def pending_count(self, owner_id: str) -> int:
        with translate_db_errors("count pending queue items"):
            count = await self._pool.fetchval(
                """
                SELECT count(*) FROM contact_verification_queue
                WHERE owner_id = $1 AND status = 'pending'
                """,
                owner_id,
            )
        return int(count or 0)

    async def resolve(
        self, owner_id: str, queue_id: uuid.UUID, resolution: Resolution
    ) -> tuple[VerificationQueueItem, Contact]:
        """Close a pending item and update its contact atomically."""
        updates = resolution.updates or QueueItemUpdate()
        with translate_db_errors("resolve queue item"):
            async with self._pool.acquire() as conn, conn.transaction():
                row = await conn.fetchrow(
                    """
                    SELECT * FROM contact_verification_queue
                    WHERE owner_id = $1 AND id = $2
                    FOR UPDATE
                    """,
                    owner_id,
                    queue_id,
                )
                if row is None:
                    raise NotFoundError(f"Queue item {queue_id} not found")
                check_resolvable(VerificationQueueItem.from_row(row), resolution)

                item_row = await conn.fetchrow(
                    """
                    UPDATE contact_verification_queue SET
                        status = $2,
                        suggested_type = COALESCE($3, suggested_type),
                        suggested_tags = COALESCE($4::text[], suggested_tags),
                        reasoning = COALESCE($5, reasoning),
                        confidence = COALESCE($6::double precision, confidence),
                        user_action_at = now()
                    WHERE id = $1
                    RETURNING *
                    """,
                    queue_id,
                    resolution.target.value,
                    updates.suggested_type.value if updates.suggested_type else None,
                    dedupe(t.lower() for t in updates.suggested_tags)
                    if updates.suggested_tags is not None
                    else None,
                    updates.reasoning,
                    clamp_confidence(updates.confidence)
                    if updates.confidence is not None
                    else None,
                )
                item = VerificationQueueItem.from_row(item_row)
                apply_suggestion = resolution.target == QueueStatus.MODIFIED

                contact_row = await conn.fetchrow(
                    """
                    UPDATE contacts SET
                        verification_status = $3,
                        verification_method = $4,
                        verified_at = CASE WHEN $3 = 'verified' THEN now() ELSE verified_at END,
                        verified_by = CASE WHEN $3 = 'verified' THEN $5 ELSE verified_by END,
                        source_type = CASE WHEN $6 THEN COALESCE($7, source_type)
                                           ELSE source_type END,
                        tags = CASE WHEN $6 AND cardinality($8::text[]) > 0 THEN $8::text[]
                                    ELSE tags END,
                        updated_at = now()
                    WHERE owner_id = $1 AND id = $2
                    RETURNING *
                    """,
                    owner_id,
                    item.contact_id,
                    resolution.contact_status.value,
                    resolution.method,
                    resolution.actor,
                    apply_suggestion,
                    item.suggested_type.value if item.suggested_type else None,
                    list(item.suggested_tags),
                )
                if contact_row is None:
                    raise NotFoundError(f"Contact {item.contact_id} not found")
        return item, Contact.from_row(contact_row)


__all__ = ["QUEUE_ITEM_ENTITY", "Resolution", "VerificationQueueStore", "check_resolvable"]
