"""Directory export: push one local contact to an external directory.

The first export of a contact to an account creates the directory entry and
links it through an ``export`` contact source. Later exports update that
entry under its stored etag and refresh the link; a link first created by an
import becomes ``bidirectional``.
"""

from __future__ import annotations

import enum
import logging
import uuid
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from rolodex.contacts.store import require_owner
from rolodex.core import metrics
from rolodex.core.logging import set_owner_context
from rolodex.core.telemetry import operation_span
from rolodex.errors import CredentialUnavailableError, NotFoundError, ValidationError
from rolodex.models import Contact, SyncDirection
from rolodex.sync.engine import SourceRepository
from rolodex.sync.provider import ContactDraft, ContactsProvider, CredentialSource

logger = logging.getLogger(__name__)


class ContactLookup(Protocol):
    async def get_contact(self, owner_id: str, contact_id: uuid.UUID) -> Contact | None: ...


class ExportAction(enum.StrEnum):
    CREATED = "created"
    UPDATED = "updated"


class ExportResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    contact_id: uuid.UUID
    account_email: str
    resource_name: str
    etag: str | None = None
    action: ExportAction


class ContactExporter:
    def __init__(
        self,
        *,
        provider: ContactsProvider,
        credentials: CredentialSource,
        sources: SourceRepository,
        contacts: ContactLookup,
    ) -> None:
        self._provider = provider
        self._credentials = credentials
        self._sources = sources
        self._contacts = contacts

    async def export_contact(
        self, owner_id: str, contact_id: uuid.UUID, account_email: str
    ) -> ExportResult:
        """Create or update the directory entry for one contact.

        Raises ``NotFoundError`` for a contact the owner does not have,
        ``CredentialUnavailableError`` without a token and ``ConflictError``
        when the directory entry changed since it was last synced.
        """
        owner_id = require_owner(owner_id)
        if not isinstance(account_email, str) or not account_email.strip():
            raise ValidationError("account_email must be a non-empty string")
        account_email = account_email.strip().lower()
        set_owner_context(owner_id)

        contact = await self._contacts.get_contact(owner_id, contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")

        access_token = await self._credentials.get_access_token(owner_id, account_email)
        if not access_token:
            raise CredentialUnavailableError(
                f"No access token available for {owner_id}/{account_email}"
            )

        provider = self._provider.name
        linked = next(
            (
                source
                for source in await self._sources.list_for_contact(owner_id, contact.id)
                if source.provider == provider and source.account_email == account_email
            ),
            None,
        )
        draft = ContactDraft.from_contact(contact)

        with operation_span("export_contact", owner_id=owner_id, account=account_email):
            if linked is None:
                record = await self._provider.create_contact(
                    access_token=access_token, draft=draft
                )
                await self._sources.create(
                    contact.id,
                    provider=provider,
                    account_email=account_email,
                    resource_name=record.resource_name,
                    external_id=record.external_id,
                    etag=record.etag,
                    sync_direction=SyncDirection.EXPORT,
                )
                action = ExportAction.CREATED
            else:
                record = await self._provider.update_contact(
                    access_token=access_token,
                    resource_name=linked.external_resource_name,
                    etag=linked.etag,
                    draft=draft,
                )
                await self._sources.update(
                    linked.id,
                    external_id=record.external_id,
                    etag=record.etag,
                    sync_direction=SyncDirection.BIDIRECTIONAL
                    if linked.sync_direction == SyncDirection.IMPORT
                    else None,
                )
                action = ExportAction.UPDATED

        metrics.contacts_exported_total().add(1, {"action": action.value})
        logger.info(
            "Exported %s to %s/%s (%s %s)",
            contact.email,
            owner_id,
            account_email,
            action,
            record.resource_name,
        )
        return ExportResult(
            contact_id=contact.id,
            account_email=account_email,
            resource_name=record.resource_name,
            etag=record.etag,
            action=action,
        )


__all__ = ["ContactExporter", "ExportAction", "ExportResult"]
