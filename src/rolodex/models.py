"""Row models for contacts, directory links, sync state and the verification queue.

Each dataclass maps 1:1 to a database table and carries ``from_row()`` for
asyncpg records (or any mapping) and ``to_dict()`` for JSON-safe responses.
"""

from __future__ import annotations

import enum
import json
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class SourceType(enum.StrEnum):
    """Kind of correspondent a contact represents."""

    COACH = "coach"
    TEACHER = "teacher"
    SCHOOL_ADMIN = "school_admin"
    TEAM = "team"
    CLUB = "club"
    THERAPIST = "therapist"
    MEDICAL = "medical"
    VENDOR = "vendor"
    OTHER = "other"

    @classmethod
    def coerce(cls, value: Any) -> SourceType:
        """Map arbitrary input to a member, falling back to ``OTHER``."""
        if isinstance(value, SourceType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.OTHER


class VerificationStatus(enum.StrEnum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class QueueStatus(enum.StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


class SyncStatus(enum.StrEnum):
    NEVER_SYNCED = "never_synced"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


class DirectoryProvider(enum.StrEnum):
    GOOGLE_CONTACTS = "google_contacts"
    MICROSOFT_CONTACTS = "microsoft_contacts"


class SyncDirection(enum.StrEnum):
    IMPORT = "import"
    EXPORT = "export"
    BIDIRECTIONAL = "bidirectional"


# Verification methods recorded on contacts.
METHOD_AUTO_MULTIPLE_EMAILS = "auto_multiple_emails"
METHOD_AUTO_QUEUE = "auto_queue"
METHOD_MANUAL_APPROVAL = "manual_approval"
METHOD_MANUAL_MODIFICATION = "manual_modification"
METHOD_MANUAL_REJECTION = "manual_rejection"

SYSTEM_ACTOR = "system"


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def _get(row: Any, key: str, default: Any = None) -> Any:
    if hasattr(row, "get"):
        return row.get(key, default)
    try:
        return row[key]
    except KeyError:
        return default


def _parse_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _parse_optional_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _parse_jsonb(value: Any) -> dict[str, Any]:
    """Parse a JSONB value (may be a string, a dict, or NULL)."""
    if value is None:
        return {}
    if isinstance(value, str):
        decoded = json.loads(value)
        return decoded if isinstance(decoded, dict) else {}
    if isinstance(value, dict):
        return value
    return dict(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def dedupe(values: Iterable[str] | None) -> list[str]:
    """Return stripped, non-empty values with duplicates removed (first seen wins)."""
    if not values:
        return []
    seen: dict[str, None] = {}
    for value in values:
        if not isinstance(value, str):
            continue
        normalized = value.strip()
        if normalized and normalized not in seen:
            seen[normalized] = None
    return list(seen)


def clamp_confidence(value: float) -> float:
    """Clamp a confidence score into [0.0, 1.0]."""
    return max(0.0, min(1.0, float(value)))


def extract_domain(email: str) -> str:
    """Return the lower-cased domain of *email*, or ``""`` when malformed."""
    if not isinstance(email, str):
        return ""
    parts = email.strip().split("@")
    return parts[1].lower() if len(parts) == 2 else ""


# ---------------------------------------------------------------------------
# Contact
# ---------------------------------------------------------------------------


@dataclass
class Contact:
    """One identity per (owner, email address).

    Maps 1:1 to the ``contacts`` table.
    """

    id: uuid.UUID
    owner_id: str
    email: str
    domain: str
    first_seen: datetime
    last_seen: datetime
    display_name: str | None = None
    organization: str | None = None
    phone_numbers: list[str] = field(default_factory=list)
    addresses: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    source_type: SourceType | None = None
    verification_status: VerificationStatus = VerificationStatus.UNVERIFIED
    verification_method: str | None = None
    verified_at: datetime | None = None
    verified_by: str | None = None
    confidence_score: float = 0.5
    email_count: int = 0
    linked_calendar_events: list[str] = field(default_factory=list)
    linked_family_members: list[str] = field(default_factory=list)
    extraction_metadata: dict[str, Any] = field(default_factory=dict)
    notes: str | None = None

    @classmethod
    def from_row(cls, row: Any) -> Contact:
        raw_type = _get(row, "source_type")
        return cls(
            id=_parse_uuid(row["id"]),
            owner_id=row["owner_id"],
            email=row["email"],
            domain=_get(row, "domain") or extract_domain(row["email"]),
            first_seen=_parse_optional_datetime(row["first_seen"]),
            last_seen=_parse_optional_datetime(row["last_seen"]),
            display_name=_get(row, "display_name"),
            organization=_get(row, "organization"),
            phone_numbers=dedupe(_get(row, "phone_numbers")),
            addresses=dedupe(_get(row, "addresses")),
            tags=dedupe(_get(row, "tags")),
            source_type=SourceType.coerce(raw_type) if raw_type is not None else None,
            verification_status=VerificationStatus(
                _get(row, "verification_status") or VerificationStatus.UNVERIFIED
            ),
            verification_method=_get(row, "verification_method"),
            verified_at=_parse_optional_datetime(_get(row, "verified_at")),
            verified_by=_get(row, "verified_by"),
            confidence_score=float(_get(row, "confidence_score", 0.5) or 0.0),
            email_count=int(_get(row, "email_count", 0) or 0),
            linked_calendar_events=dedupe(_get(row, "linked_calendar_events")),
            linked_family_members=dedupe(_get(row, "linked_family_members")),
            extraction_metadata=_parse_jsonb(_get(row, "extraction_metadata")),
            notes=_get(row, "notes"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "email": self.email,
            "domain": self.domain,
            "display_name": self.display_name,
            "organization": self.organization,
            "phone_numbers": list(self.phone_numbers),
            "addresses": list(self.addresses),
            "tags": list(self.tags),
            "source_type": self.source_type.value if self.source_type else None,
            "verification_status": self.verification_status.value,
            "verification_method": self.verification_method,
            "verified_at": _iso(self.verified_at),
            "verified_by": self.verified_by,
            "confidence_score": self.confidence_score,
            "email_count": self.email_count,
            "first_seen": _iso(self.first_seen),
            "last_seen": _iso(self.last_seen),
            "linked_calendar_events": list(self.linked_calendar_events),
            "linked_family_members": list(self.linked_family_members),
            "extraction_metadata": self.extraction_metadata,
            "notes": self.notes,
        }


@dataclass
class ObservedFields:
    """Partial contact fields observed in one occurrence or directory record.

    ``None`` / empty values mean "not observed" and never overwrite stored data.
    """

    display_name: str | None = None
    organization: str | None = None
    phone_numbers: list[str] = field(default_factory=list)
    addresses: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    source_type: SourceType | None = None
    confidence_score: float | None = None
    linked_calendar_events: list[str] = field(default_factory=list)
    linked_family_members: list[str] = field(default_factory=list)
    extraction_metadata: dict[str, Any] | None = None
    notes: str | None = None


@dataclass
class ContactFilters:
    """Filters accepted by contact listing."""

    source_type: SourceType | None = None
    verification_status: VerificationStatus | None = None
    tags: list[str] = field(default_factory=list)
    domain: str | None = None
    min_confidence: float | None = None
    min_email_count: int | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class ContactUpdate:
    """Owner-initiated edits to a contact (coalesced)."""

    source_type: SourceType | None = None
    tags: list[str] | None = None
    notes: str | None = None


# ---------------------------------------------------------------------------
# ContactSource
# ---------------------------------------------------------------------------


@dataclass
class ContactSource:
    """Link from a contact to one external directory record.

    Maps 1:1 to the ``contact_sources`` table.
    """

    id: uuid.UUID
    contact_id: uuid.UUID
    provider: DirectoryProvider
    external_id: str
    external_resource_name: str
    account_email: str
    etag: str | None = None
    sync_direction: SyncDirection = SyncDirection.IMPORT
    metadata: dict[str, Any] = field(default_factory=dict)
    last_synced_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> ContactSource:
        return cls(
            id=_parse_uuid(row["id"]),
            contact_id=_parse_uuid(row["contact_id"]),
            provider=DirectoryProvider(row["provider"]),
            external_id=row["external_id"],
            external_resource_name=row["external_resource_name"],
            account_email=row["account_email"],
            etag=_get(row, "etag"),
            sync_direction=SyncDirection(_get(row, "sync_direction") or SyncDirection.IMPORT),
            metadata=_parse_jsonb(_get(row, "metadata")),
            last_synced_at=_parse_optional_datetime(_get(row, "last_synced_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "contact_id": str(self.contact_id),
            "provider": self.provider.value,
            "external_id": self.external_id,
            "external_resource_name": self.external_resource_name,
            "account_email": self.account_email,
            "etag": self.etag,
            "sync_direction": self.sync_direction.value,
            "metadata": self.metadata,
            "last_synced_at": _iso(self.last_synced_at),
        }


# ---------------------------------------------------------------------------
# SyncState
# ---------------------------------------------------------------------------


@dataclass
class SyncState:
    """Sync cursor and status for one (owner, external account).

    Maps 1:1 to the ``contact_sync_state`` table.
    """

    owner_id: str
    account_email: str
    sync_status: SyncStatus = SyncStatus.NEVER_SYNCED
    sync_token: str | None = None
    last_full_sync_at: datetime | None = None
    last_incremental_sync_at: datetime | None = None
    error_message: str | None = None
    lease_acquired_at: datetime | None = None
    lease_id: uuid.UUID | None = None

    @classmethod
    def from_row(cls, row: Any) -> SyncState:
        return cls(
            owner_id=row["owner_id"],
            account_email=row["account_email"],
            sync_status=SyncStatus(_get(row, "sync_status") or SyncStatus.NEVER_SYNCED),
            sync_token=_get(row, "sync_token"),
            last_full_sync_at=_parse_optional_datetime(_get(row, "last_full_sync_at")),
            last_incremental_sync_at=_parse_optional_datetime(
                _get(row, "last_incremental_sync_at")
            ),
            error_message=_get(row, "error_message"),
            lease_acquired_at=_parse_optional_datetime(_get(row, "lease_acquired_at")),
            lease_id=_parse_uuid(lease_id) if (lease_id := _get(row, "lease_id")) else None,
        )

    @property
    def last_sync_at(self) -> datetime | None:
        stamps = [s for s in (self.last_full_sync_at, self.last_incremental_sync_at) if s]
        return max(stamps) if stamps else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "account_email": self.account_email,
            "sync_status": self.sync_status.value,
            "sync_token": self.sync_token,
            "last_full_sync_at": _iso(self.last_full_sync_at),
            "last_incremental_sync_at": _iso(self.last_incremental_sync_at),
            "error_message": self.error_message,
            "lease_acquired_at": _iso(self.lease_acquired_at),
            "lease_id": str(self.lease_id) if self.lease_id else None,
        }


# ---------------------------------------------------------------------------
# VerificationQueueItem
# ---------------------------------------------------------------------------


@dataclass
class VerificationQueueItem:
    """A human-review task for one contact.

    Maps 1:1 to the ``contact_verification_queue`` table.
    """

    id: uuid.UUID
    owner_id: str
    contact_id: uuid.UUID
    status: QueueStatus = QueueStatus.PENDING
    suggested_type: SourceType | None = None
    suggested_tags: list[str] = field(default_factory=list)
    reasoning: str | None = None
    confidence: float | None = None
    sample_email_ids: list[str] = field(default_factory=list)
    user_action_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Any) -> VerificationQueueItem:
        raw_type = _get(row, "suggested_type")
        raw_confidence = _get(row, "confidence")
        return cls(
            id=_parse_uuid(row["id"]),
            owner_id=row["owner_id"],
            contact_id=_parse_uuid(row["contact_id"]),
            status=QueueStatus(row["status"]),
            suggested_type=SourceType.coerce(raw_type) if raw_type is not None else None,
            suggested_tags=dedupe(_get(row, "suggested_tags")),
            reasoning=_get(row, "reasoning"),
            confidence=float(raw_confidence) if raw_confidence is not None else None,
            sample_email_ids=[str(v) for v in (_get(row, "sample_email_ids") or [])],
            user_action_at=_parse_optional_datetime(_get(row, "user_action_at")),
            created_at=_parse_optional_datetime(_get(row, "created_at")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "owner_id": self.owner_id,
            "contact_id": str(self.contact_id),
            "status": self.status.value,
            "suggested_type": self.suggested_type.value if self.suggested_type else None,
            "suggested_tags": list(self.suggested_tags),
            "reasoning": self.reasoning,
            "confidence": self.confidence,
            "sample_email_ids": list(self.sample_email_ids),
            "user_action_at": _iso(self.user_action_at),
            "created_at": _iso(self.created_at),
        }


@dataclass
class QueueItemUpdate:
    """Reviewer edits applied by the ``modify`` action (each field coalesced)."""

    suggested_type: SourceType | None = None
    suggested_tags: list[str] | None = None
    reasoning: str | None = None
    confidence: float | None = None
