"""Directory sync: reconcile an external contact directory into contacts.

One ``sync`` call is one run for one (owner, external account):

1. resolve an access token (no token, no run, no state change);
2. take the lease on ``contact_sync_state``;
3. page through either a full listing or the changes since the stored cursor,
   applying each record as its page arrives;
4. release the lease as ``completed`` with the new cursor, ``never_synced``
   when the provider invalidated the cursor, or ``failed`` otherwise.

The lease is renewed after every page. Renewal and release are fenced on the
run's ``lease_id``: a run whose stale lease was taken over stops writing
state and reports ``failed``.

Records are matched to contacts through ``contact_sources`` and merged with
``occurrence=False``: a directory import is not an observed email.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict

from rolodex.contacts.pipeline import ContactRepository
from rolodex.contacts.store import normalize_email, require_owner
from rolodex.core import metrics
from rolodex.core.logging import set_owner_context
from rolodex.core.telemetry import operation_span
from rolodex.errors import (
    CredentialUnavailableError,
    CursorInvalidatedError,
    SyncLeaseLostError,
    ValidationError,
)
from rolodex.models import (
    ContactSource,
    DirectoryProvider,
    ObservedFields,
    SyncDirection,
    SyncState,
)
from rolodex.sync.provider import ContactsProvider, CredentialSource, DirectoryRecord, RecordPage
from rolodex.sync.state import CURSOR_INVALIDATED_MESSAGE, truncate_error

logger = logging.getLogger(__name__)

LEASE_LOST_MESSAGE = "lease lost to another run"


class SyncMode(enum.StrEnum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncOutcome(enum.StrEnum):
    COMPLETED = "completed"
    INVALIDATED = "invalidated"
    FAILED = "failed"


class SyncStateRepository(Protocol):
    async def acquire_lease(self, owner_id: str, account_email: str) -> SyncState: ...

    async def renew_lease(
        self, owner_id: str, account_email: str, *, lease_id: uuid.UUID
    ) -> SyncState: ...

    async def complete(
        self,
        owner_id: str,
        account_email: str,
        *,
        lease_id: uuid.UUID,
        sync_token: str | None,
        full: bool,
    ) -> SyncState: ...

    async def fail(
        self, owner_id: str, account_email: str, message: str, *, lease_id: uuid.UUID
    ) -> SyncState: ...

    async def invalidate(
        self,
        owner_id: str,
        account_email: str,
        *,
        lease_id: uuid.UUID,
        message: str = CURSOR_INVALIDATED_MESSAGE,
    ) -> SyncState: ...


class SourceRepository(Protocol):
    async def get_by_resource(
        self,
        owner_id: str,
        provider: DirectoryProvider,
        account_email: str,
        resource_name: str,
    ) -> ContactSource | None: ...

    async def list_for_contact(
        self, owner_id: str, contact_id: uuid.UUID
    ) -> list[ContactSource]: ...

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
    ) -> ContactSource: ...

    async def update(
        self,
        source_id: uuid.UUID,
        *,
        external_id: str,
        etag: str | None,
        metadata: dict[str, Any] | None = None,
        sync_direction: SyncDirection | None = None,
    ) -> ContactSource | None: ...

    async def delete(self, source_id: uuid.UUID) -> bool: ...


class SyncResult(BaseModel):
    """Outcome summary from one sync run."""

    model_config = ConfigDict(extra="forbid")

    owner_id: str
    account_email: str
    mode: SyncMode
    status: SyncOutcome
    fetched: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    deleted: int = 0
    next_sync_cursor: str | None = None
    error: str | None = None


class ContactsSyncEngine:
    """Runs full/incremental sync runs guarded by the per-account lease."""

    def __init__(
        self,
        *,
        provider: ContactsProvider,
        credentials: CredentialSource,
        states: SyncStateRepository,
        sources: SourceRepository,
        contacts: ContactRepository,
    ) -> None:
        self._provider = provider
        self._credentials = credentials
        self._states = states
        self._sources = sources
        self._contacts = contacts

    async def sync(self, owner_id: str, account_email: str) -> SyncResult:
        """Run one sync for (*owner_id*, *account_email*).

        Provider and storage failures are recorded on the sync state and
        reported in the result. ``CredentialUnavailableError`` (before the
        lease) and ``SyncInProgressError`` are raised. Cancellation is
        recorded as a failure and re-raised.
        A run whose lease was taken over reports ``failed`` and leaves the
        new holder's state untouched.
        """
        owner_id = require_owner(owner_id)
        if not isinstance(account_email, str) or not account_email.strip():
            raise ValidationError("account_email must be a non-empty string")
        account_email = account_email.strip().lower()
        set_owner_context(owner_id)

        access_token = await self._credentials.get_access_token(owner_id, account_email)
        if not access_token:
            raise CredentialUnavailableError(
                f"No access token available for {owner_id}/{account_email}"
            )

        state = await self._states.acquire_lease(owner_id, account_email)
        mode = SyncMode.INCREMENTAL if state.sync_token else SyncMode.FULL
        result = SyncResult(
            owner_id=owner_id,
            account_email=account_email,
            mode=mode,
            status=SyncOutcome.COMPLETED,
        )
        logger.info("Starting %s contacts sync for %s/%s", mode, owner_id, account_email)
        started = time.monotonic()

        with operation_span(
            "sync", owner_id=owner_id, account=account_email, mode=mode.value
        ):
            try:
                await self._run_leased(state, access_token, result, started)
            except SyncLeaseLostError as exc:
                logger.warning(
                    "Contacts sync for %s/%s lost its lease; result dropped: %s",
                    owner_id,
                    account_email,
                    exc,
                )
                result.status = SyncOutcome.FAILED
                result.error = LEASE_LOST_MESSAGE
                result.next_sync_cursor = None

        self._record_metrics(result, started, status=result.status)
        logger.info(
            "Contacts sync for %s/%s %s: fetched=%d created=%d updated=%d skipped=%d deleted=%d",
            owner_id,
            account_email,
            result.status,
            result.fetched,
            result.created,
            result.updated,
            result.skipped,
            result.deleted,
        )
        return result

    async def _run_leased(
        self, state: SyncState, access_token: str, result: SyncResult, started: float
    ) -> None:
        """Page through the directory and release the lease held by *state*."""
        owner_id, account_email = state.owner_id, state.account_email
        lease_id = state.lease_id
        try:
            cursor = await self._run(state, access_token, result)
        except CursorInvalidatedError as exc:
            logger.warning(
                "Sync cursor for %s/%s invalidated by provider: %s",
                owner_id,
                account_email,
                exc,
            )
            await self._states.invalidate(owner_id, account_email, lease_id=lease_id)
            result.status = SyncOutcome.INVALIDATED
            result.error = CURSOR_INVALIDATED_MESSAGE
        except asyncio.CancelledError:
            logger.warning("Contacts sync for %s/%s cancelled", owner_id, account_email)
            try:
                await self._states.fail(
                    owner_id, account_email, "sync cancelled", lease_id=lease_id
                )
            except SyncLeaseLostError as exc:
                logger.warning("Cancelled sync could not release its lease: %s", exc)
            self._record_metrics(result, started, status=SyncOutcome.FAILED)
            raise
        except SyncLeaseLostError:
            raise
        except Exception as exc:
            logger.error("Contacts sync for %s/%s failed: %s", owner_id, account_email, exc)
            await self._states.fail(owner_id, account_email, str(exc), lease_id=lease_id)
            result.status = SyncOutcome.FAILED
            result.error = truncate_error(str(exc))
        else:
            await self._states.complete(
                owner_id,
                account_email,
                lease_id=lease_id,
                sync_token=cursor,
                full=result.mode == SyncMode.FULL,
            )
            result.next_sync_cursor = cursor

    async def _run(self, state: SyncState, access_token: str, result: SyncResult) -> str | None:
        owner_id, account_email = state.owner_id, state.account_email
        page_token: str | None = None
        next_cursor: str | None = None
        while True:
            page = await self._fetch_page(access_token, state.sync_token, page_token)
            for record in page.records:
                outcome = await self._apply_record(owner_id, account_email, record)
                result.fetched += 1
                setattr(result, outcome, getattr(result, outcome) + 1)
                metrics.sync_records_total().add(1, {"outcome": outcome})
            if page.next_sync_cursor is not None:
                next_cursor = page.next_sync_cursor
            page_token = page.next_page_token
            if page_token is None:
                break
            await self._states.renew_lease(owner_id, account_email, lease_id=state.lease_id)
        return next_cursor

    async def _fetch_page(
        self, access_token: str, cursor: str | None, page_token: str | None
    ) -> RecordPage:
        if cursor is None:
            return await self._provider.full_sync(access_token=access_token, page_token=page_token)
        return await self._provider.incremental_sync(
            access_token=access_token, cursor=cursor, page_token=page_token
        )

    async def _apply_record(
        self, owner_id: str, account_email: str, record: DirectoryRecord
    ) -> str:
        """Apply one record; returns the result counter it belongs to."""
        provider = self._provider.name
        source = await self._sources.get_by_resource(
            owner_id, provider, account_email, record.resource_name
        )

        if record.deleted:
            if source is None:
                return "skipped"
            await self._sources.delete(source.id)
            logger.debug("Removed source %s for deleted record", record.resource_name)
            return "deleted"

        email = _record_email(record)
        if email is None:
            logger.debug("Skipping directory record %s without email", record.resource_name)
            return "skipped"

        if source is not None and record.etag is not None and source.etag == record.etag:
            return "skipped"

        contact = await self._contacts.upsert_contact(
            owner_id, email, _observed_fields(record), occurrence=False
        )
        metadata = {"display_name": record.display_name} if record.display_name else {}

        if source is not None and source.contact_id == contact.id:
            await self._sources.update(
                source.id, external_id=record.external_id, etag=record.etag, metadata=metadata
            )
            return "updated"

        await self._sources.create(
            contact.id,
            provider=provider,
            account_email=account_email,
            resource_name=record.resource_name,
            external_id=record.external_id,
            etag=record.etag,
            metadata=metadata,
        )
        return "created" if source is None else "updated"

    @staticmethod
    def _record_metrics(result: SyncResult, started: float, *, status: SyncOutcome) -> None:
        attributes = {"mode": result.mode.value, "status": status.value}
        metrics.sync_runs_total().add(1, attributes)
        metrics.sync_duration_ms().record((time.monotonic() - started) * 1000.0, attributes)


def _record_email(record: DirectoryRecord) -> str | None:
    candidate = record.primary_email
    if candidate is None:
        return None
    try:
        return normalize_email(candidate)
    except ValidationError:
        logger.debug("Ignoring invalid directory email on %s", record.resource_name)
        return None


def _observed_fields(record: DirectoryRecord) -> ObservedFields:
    return ObservedFields(
        display_name=record.display_name,
        organization=record.organization,
        phone_numbers=[phone.value for phone in record.phones],
        addresses=list(record.addresses),
        notes=record.notes,
    )


__all__ = [
    "ContactsSyncEngine",
    "LEASE_LOST_MESSAGE",
    "SourceRepository",
    "SyncMode",
    "SyncOutcome",
    "SyncResult",
    "SyncStateRepository",
]
