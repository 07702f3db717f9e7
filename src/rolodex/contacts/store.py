"""PostgreSQL persistence for contacts.

The merge/upsert is a single ``INSERT ... ON CONFLICT DO UPDATE`` statement,
so concurrent observations of the same (owner, email) serialize on the row
and every occurrence is counted exactly once.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import asyncpg
from email_validator import EmailNotValidError, validate_email

from rolodex.db import translate_db_errors
from rolodex.errors import NotFoundError, ValidationError
from rolodex.models import (
    Contact,
    ContactFilters,
    ContactUpdate,
    ObservedFields,
    VerificationStatus,
    clamp_confidence,
    dedupe,
    extract_domain,
)

logger = logging.getLogger(__name__)

_SET_COLUMNS = (
    "phone_numbers",
    "addresses",
    "tags",
    "linked_calendar_events",
    "linked_family_members",
)


def normalize_email(email: str) -> str:
    """Return the canonical (stripped, lower-cased) form of *email*.

    Raises ``ValidationError`` when the address is not syntactically valid.
    """
    if not isinstance(email, str) or not email.strip():
        raise ValidationError("email must be a non-empty string")
    candidate = email.strip().lower()
    try:
        validate_email(candidate, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email address {email!r}: {exc}") from exc
    return candidate


def require_owner(owner_id: str) -> str:
    if not isinstance(owner_id, str) or not owner_id.strip():
        raise ValidationError("owner_id must be a non-empty string")
    return owner_id.strip()


def _blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _union_sql(column: str) -> str:
    # Order-preserving set union of the stored and observed arrays.
    return (
        f"ARRAY(SELECT u.v FROM unnest(contacts.{column} || EXCLUDED.{column}) "
        f"WITH ORDINALITY AS u(v, n) GROUP BY u.v ORDER BY min(u.n))"
    )


_UPSERT_SQL = f"""
    INSERT INTO contacts (
        owner_id, email, domain, display_name, organization,
        phone_numbers, addresses, tags, source_type, confidence_score,
        email_count, linked_calendar_events, linked_family_members,
        extraction_metadata, notes
    )
    VALUES (
        $1, $2, $3, $4, $5,
        $6::text[], $7::text[], $8::text[], $9, COALESCE($10::double precision, 0.5),
        $11, $12::text[], $13::text[],
        COALESCE($14::jsonb, '{{}}'::jsonb), $15
    )
    ON CONFLICT (owner_id, email) DO UPDATE SET
        display_name = COALESCE(EXCLUDED.display_name, contacts.display_name),
        organization = COALESCE(EXCLUDED.organization, contacts.organization),
        phone_numbers = {_union_sql("phone_numbers")},
        addresses = {_union_sql("addresses")},
        tags = {_union_sql("tags")},
        source_type = CASE
            WHEN contacts.verification_status = 'verified'
                THEN COALESCE(contacts.source_type, EXCLUDED.source_type)
            ELSE COALESCE(EXCLUDED.source_type, contacts.source_type)
        END,
        confidence_score = COALESCE($10::double precision, contacts.confidence_score),
        email_count = contacts.email_count + EXCLUDED.email_count,
        last_seen = CASE
            WHEN EXCLUDED.email_count > 0 THEN GREATEST(now(), contacts.last_seen)
            ELSE contacts.last_seen
        END,
        linked_calendar_events = {_union_sql("linked_calendar_events")},
        linked_family_members = {_union_sql("linked_family_members")},
        extraction_metadata = contacts.extraction_metadata || COALESCE($14::jsonb, '{{}}'::jsonb),
        notes = COALESCE(EXCLUDED.notes, contacts.notes),
        updated_at = now()
    RETURNING *
"""


class ContactStore:
    """asyncpg-backed repository for the ``contacts`` table."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def upsert_contact(
        self,
        owner_id: str,
        email: str,
        observed: ObservedFields | None = None,
        *,
        occurrence: bool = True,
    ) -> Contact:
        """Merge one observation into the (owner, email) identity.

        Observed fields only replace stored values when non-empty; set fields
        are unioned. ``occurrence=False`` merges without counting a sighting.
        """
        owner_id = require_owner(owner_id)
        normalized = normalize_email(email)
        observed = observed or ObservedFields()
        confidence = (
            clamp_confidence(observed.confidence_score)
            if observed.confidence_score is not None
            else None
        )
        metadata = (
            json.dumps(observed.extraction_metadata) if observed.extraction_metadata else None
        )

        with translate_db_errors("upsert contact"):
            row = await self._pool.fetchrow(
                _UPSERT_SQL,
                owner_id,
                normalized,
                extract_domain(normalized),
                _blank_to_none(observed.display_name),
                _blank_to_none(observed.organization),
                dedupe(observed.phone_numbers),
                dedupe(observed.addresses),
                dedupe(t.lower() for t in observed.tags),
                observed.source_type.value if observed.source_type else None,
                confidence,
                1 if occurrence else 0,
                dedupe(observed.linked_calendar_events),
                dedupe(observed.linked_family_members),
                metadata,
                _blank_to_none(observed.notes),
            )
        contact = Contact.from_row(row)
        logger.debug(
            "Upserted contact %s for owner=%s (email_count=%d)",
            contact.email,
            owner_id,
            contact.email_count,
        )
        return contact

    async def get_contact(self, owner_id: str, contact_id: uuid.UUID) -> Contact | None:
        with translate_db_errors("get contact"):
            row = await self._pool.fetchrow(
                "SELECT * FROM contacts WHERE owner_id = $1 AND id = $2",
                owner_id,
                contact_id,
            )
        return Contact.from_row(row) if row is not None else None

    async def get_by_email(self, owner_id: str, email: str) -> Contact | None:
        with translate_db_errors("get contact by email"):
            row = await self._pool.fetchrow(
                "SELECT * FROM contacts WHERE owner_id = $1 AND email = $2",
                owner_id,
                normalize_email(email),
            )
        return Contact.from_row(row) if row is not None else None

    async def list_contacts(
        self, owner_id: str, filters: ContactFilters | None = None
    ) -> list[Contact]:
        """List an owner's contacts, most frequently seen first."""
        filters = filters or ContactFilters()
        conditions = ["owner_id = $1"]
        params: list[Any] = [owner_id]

        def _bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        if filters.source_type is not None:
            conditions.append(f"source_type = {_bind(filters.source_type.value)}")
        if filters.verification_status is not None:
            conditions.append(f"verification_status = {_bind(filters.verification_status.value)}")
        if filters.tags:
            conditions.append(f"tags && {_bind(dedupe(t.lower() for t in filters.tags))}::text[]")
        if filters.domain:
            conditions.append(f"domain = {_bind(filters.domain.strip().lower())}")
        if filters.min_confidence is not None:
            conditions.append(f"confidence_score >= {_bind(float(filters.min_confidence))}")
        if filters.min_email_count is not None:
            conditions.append(f"email_count >= {_bind(int(filters.min_email_count))}")

        limit = _bind(max(1, int(filters.limit)))
        offset = _bind(max(0, int(filters.offset)))
        query = (
            "SELECT * FROM contacts WHERE "
            + " AND ".join(conditions)
            + f" ORDER BY email_count DESC, last_seen DESC LIMIT {limit} OFFSET {offset}"
        )
        with translate_db_errors("list contacts"):
            rows = await self._pool.fetch(query, *params)
        return [Contact.from_row(row) for row in rows]

    async def update_contact(
        self, owner_id: str, contact_id: uuid.UUID, update: ContactUpdate
    ) -> Contact:
        """Apply owner edits (each field coalesced); tags replace the stored set."""
        tags = dedupe(t.lower() for t in update.tags) if update.tags is not None else None
        with translate_db_errors("update contact"):
            row = await self._pool.fetchrow(
                """
                UPDATE contacts SET
                    source_type = COALESCE($3, source_type),
                    tags = COALESCE($4::text[], tags),
                    notes = COALESCE($5, notes),
                    updated_at = now()
                WHERE owner_id = $1 AND id = $2
                RETURNING *
                """,
                owner_id,
                contact_id,
                update.source_type.value if update.source_type else None,
                tags,
                update.notes,
            )
        if row is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        return Contact.from_row(row)

    async def delete_contact(self, owner_id: str, contact_id: uuid.UUID) -> bool:
        with translate_db_errors("delete contact"):
            result = await self._pool.execute(
                "DELETE FROM contacts WHERE owner_id = $1 AND id = $2",
                owner_id,
                contact_id,
            )
        return result.endswith(" 1")

    async def link_calendar_event(
        self, owner_id: str, contact_id: uuid.UUID, event_id: str
    ) -> Contact:
        """Attach a calendar event id to a contact (idempotent)."""
        if not event_id or not event_id.strip():
            raise ValidationError("event_id must be a non-empty string")
        with translate_db_errors("link calendar event"):
            row = await self._pool.fetchrow(
                """
                UPDATE contacts SET
                    linked_calendar_events = CASE
                        WHEN $3 = ANY(linked_calendar_events) THEN linked_calendar_events
                        ELSE array_append(linked_calendar_events, $3)
                    END,
                    updated_at = now()
                WHERE owner_id = $1 AND id = $2
                RETURNING *
                """,
                owner_id,
                contact_id,
                event_id.strip(),
            )
        if row is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        return Contact.from_row(row)

    async def update_verification(
        self,
        owner_id: str,
        contact_id: uuid.UUID,
        *,
        status: VerificationStatus,
        method: str,
        verified_by: str | None = None,
        expected_status: VerificationStatus | None = None,
    ) -> Contact | None:
        """Set a contact's verification status.

        With *expected_status*, the update only applies when the stored status
        still matches; ``None`` is returned when it no longer does.
        """
        with translate_db_errors("update contact verification"):
            row = await self._pool.fetchrow(
                """
                UPDATE contacts SET
                    verification_status = $3,
                    verification_method = $4,
                    verified_at = CASE WHEN $3 = 'verified' THEN now() ELSE verified_at END,
                    verified_by = CASE WHEN $3 = 'verified' THEN $5 ELSE verified_by END,
                    updated_at = now()
                WHERE owner_id = $1
                  AND id = $2
                  AND ($6::text IS NULL OR verification_status = $6)
                RETURNING *
                """,
                owner_id,
                contact_id,
                status.value,
                method,
                verified_by,
                expected_status.value if expected_status else None,
            )
        return Contact.from_row(row) if row is not None else None

    async def find_pending_verification(
        self,
        owner_id: str,
        *,
        min_confidence: float,
        min_emails: int,
        limit: int = 50,
    ) -> list[Contact]:
        """Unverified contacts that meet the queueing thresholds."""
        with translate_db_errors("find pending verification"):
            rows = await self._pool.fetch(
                """
                SELECT * FROM contacts
                WHERE owner_id = $1
                  AND verification_status = 'unverified'
                  AND confidence_score > $2
                  AND email_count >= $3
                ORDER BY confidence_score DESC, email_count DESC
                LIMIT $4
                """,
                owner_id,
                float(min_confidence),
                int(min_emails),
                max(1, int(limit)),
            )
        return [Contact.from_row(row) for row in rows]


__all__ = ["ContactStore", "normalize_email", "require_owner"]
