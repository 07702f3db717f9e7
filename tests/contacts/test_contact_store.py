"""Unit tests for ContactStore with a mocked asyncpg pool."""

from __future__ import annotations

import json
import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from rolodex.contacts.store import ContactStore, normalize_email, require_owner
from rolodex.errors import NotFoundError, PersistenceError, ValidationError
from rolodex.models import (
    ContactFilters,
    ContactUpdate,
    ObservedFields,
    SourceType,
    VerificationStatus,
)

pytestmark = pytest.mark.unit

NOW = datetime(2026, 3, 1, tzinfo=UTC)


def _row(**overrides) -> dict:
    row = {
        "id": uuid.uuid4(),
        "owner_id": "owner-1",
        "email": "pat@example.com",
        "domain": "example.com",
        "first_seen": NOW,
        "last_seen": NOW,
        "display_name": None,
        "organization": None,
        "phone_numbers": [],
        "addresses": [],
        "tags": [],
        "source_type": None,
        "verification_status": "unverified",
        "verification_method": None,
        "verified_at": None,
        "verified_by": None,
        "confidence_score": 0.5,
        "email_count": 1,
        "linked_calendar_events": [],
        "linked_family_members": [],
        "extraction_metadata": "{}",
        "notes": None,
    }
    row.update(overrides)
    return row


@pytest.fixture
def pool() -> MagicMock:
    pool = MagicMock()
    pool.fetchrow = AsyncMock()
    pool.fetch = AsyncMock(return_value=[])
    pool.execute = AsyncMock()
    return pool


class TestNormalizeEmail:
    def test_strips_and_lowercases(self):
        assert normalize_email("  Pat.Smith@Example.COM ") == "pat.smith@example.com"

    @pytest.mark.parametrize("value", ["", "   ", "no-at-sign", "two@@example.com", None])
    def test_invalid_addresses(self, value):
        with pytest.raises(ValidationError):
            normalize_email(value)

    def test_require_owner(self):
        assert require_owner(" owner-1 ") == "owner-1"
        with pytest.raises(ValidationError):
            require_owner("  ")


class TestUpsert:
    async def test_binds_normalized_values(self, pool: MagicMock):
        pool.fetchrow.return_value = _row(
            email="coach@teamsnap.com", domain="teamsnap.com", source_type="coach"
        )
        store = ContactStore(pool)

        contact = await store.upsert_contact(
            "owner-1",
            "Coach@TeamSnap.com",
            ObservedFields(
                display_name="  ",
                tags=["Soccer", "soccer", "U10"],
                source_type=SourceType.COACH,
                confidence_score=1.4,
                extraction_metadata={"classifier": "quick"},
            ),
        )

        args = pool.fetchrow.await_args.args
        sql = args[0]
        assert "ON CONFLICT (owner_id, email) DO UPDATE" in sql
        assert "email_count = contacts.email_count + EXCLUDED.email_count" in sql
        assert args[1:4] == ("owner-1", "coach@teamsnap.com", "teamsnap.com")
        assert args[4] is None
        assert args[8] == ["soccer", "u10"]
        assert args[9] == "coach"
        assert args[10] == 1.0
        assert args[11] == 1
        assert json.loads(args[14]) == {"classifier": "quick"}
        assert contact.source_type == SourceType.COACH

    async def test_non_occurrence_merge_does_not_count(self, pool: MagicMock):
        pool.fetchrow.return_value = _row(email_count=0)
        await ContactStore(pool).upsert_contact("owner-1", "pat@example.com", occurrence=False)
        args = pool.fetchrow.await_args.args
        assert args[11] == 0
        assert args[10] is None
        assert args[14] is None

    async def test_invalid_email_never_reaches_database(self, pool: MagicMock):
        with pytest.raises(ValidationError):
            await ContactStore(pool).upsert_contact("owner-1", "nope")
        pool.fetchrow.assert_not_awaited()

    async def test_driver_errors_become_persistence_errors(self, pool: MagicMock):
        pool.fetchrow.side_effect = asyncpg.PostgresError("boom")
        with pytest.raises(PersistenceError):
            await ContactStore(pool).upsert_contact("owner-1", "pat@example.com")


class TestQueries:
    async def test_get_contact_missing_returns_none(self, pool: MagicMock):
        pool.fetchrow.return_value = None
        assert await ContactStore(pool).get_contact("owner-1", uuid.uuid4()) is None

    async def test_list_contacts_builds_filters(self, pool: MagicMock):
        pool.fetch.return_value = [_row(), _row(email="b@example.com")]
        contacts = await ContactStore(pool).list_contacts(
            "owner-1",
            ContactFilters(
                source_type=SourceType.TEACHER,
                verification_status=VerificationStatus.VERIFIED,
                tags=["Math"],
                domain=" Lincoln.edu ",
                min_email_count=2,
                limit=10,
                offset=5,
            ),
        )
        sql, *params = pool.fetch.await_args.args
        assert "source_type = $2" in sql
        assert "verification_status = $3" in sql
        assert "tags && $4::text[]" in sql
        assert "domain = $5" in sql
        assert "email_count >= $6" in sql
        assert "LIMIT $7 OFFSET $8" in sql
        assert params == ["owner-1", "teacher", "verified", ["math"], "lincoln.edu", 2, 10, 5]
        assert len(contacts) == 2

    async def test_update_missing_contact_raises(self, pool: MagicMock):
        pool.fetchrow.return_value = None
        with pytest.raises(NotFoundError):
            await ContactStore(pool).update_contact(
                "owner-1", uuid.uuid4(), ContactUpdate(notes="hi")
            )

    async def test_delete_reports_whether_a_row_was_removed(self, pool: MagicMock):
        store = ContactStore(pool)
        pool.execute.return_value = "DELETE 1"
        assert await store.delete_contact("owner-1", uuid.uuid4()) is True
        pool.execute.return_value = "DELETE 0"
        assert await store.delete_contact("owner-1", uuid.uuid4()) is False

    async def test_link_calendar_event_requires_id(self, pool: MagicMock):
        with pytest.raises(ValidationError):
            await ContactStore(pool).link_calendar_event("owner-1", uuid.uuid4(), " ")

    async def test_conditional_verification_returns_none_when_status_moved(
        self, pool: MagicMock
    ):
        pool.fetchrow.return_value = None
        result = await ContactStore(pool).update_verification(
            "owner-1",
            uuid.uuid4(),
            status=VerificationStatus.VERIFIED,
            method="auto_multiple_emails",
            verified_by="system",
            expected_status=VerificationStatus.UNVERIFIED,
        )
        assert result is None
        args = pool.fetchrow.await_args.args
        assert args[3] == "verified"
        assert args[6] == "unverified"

    async def test_find_pending_verification_binds_thresholds(self, pool: MagicMock):
        pool.fetch.return_value = [_row(confidence_score=0.9, email_count=2)]
        contacts = await ContactStore(pool).find_pending_verification(
            "owner-1", min_confidence=0.85, min_emails=2, limit=0
        )
        sql, *params = pool.fetch.await_args.args
        assert "verification_status = 'unverified'" in sql
        assert params == ["owner-1", 0.85, 2, 1]
        assert contacts[0].confidence_score == 0.9
