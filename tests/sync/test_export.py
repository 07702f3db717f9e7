"""Unit tests for pushing local contacts to an external directory."""

from __future__ import annotations

import uuid

import pytest

from rolodex.errors import ConflictError, CredentialUnavailableError, NotFoundError, ValidationError
from rolodex.models import DirectoryProvider, ObservedFields, SyncDirection
from rolodex.sync.export import ContactExporter, ExportAction
from rolodex.sync.provider import ContactDraft
from rolodex.testing.memory import ScriptedContactsProvider, StaticCredentialSource

pytestmark = pytest.mark.unit

OWNER = "owner-1"
ACCOUNT = "me@gmail.com"


@pytest.fixture
def provider() -> ScriptedContactsProvider:
    return ScriptedContactsProvider()


@pytest.fixture
def exporter(provider, source_store, contact_store) -> ContactExporter:
    return ContactExporter(
        provider=provider,
        credentials=StaticCredentialSource(),
        sources=source_store,
        contacts=contact_store,
    )


@pytest.fixture
async def contact(contact_store):
    return await contact_store.upsert_contact(
        OWNER,
        "pat@example.com",
        ObservedFields(display_name="Pat Lee", phone_numbers=["555-1"], notes="Coach"),
    )


class TestExportContact:
    async def test_first_export_creates_entry_and_link(
        self, exporter, provider, source_store, contact
    ):
        result = await exporter.export_contact(OWNER, contact.id, " Me@Gmail.com ")

        assert result.action == ExportAction.CREATED
        assert result.account_email == ACCOUNT
        assert result.resource_name == "people/x1"
        (kind, resource, draft) = provider.writes[0]
        assert (kind, resource) == ("create", "people/x1")
        assert draft.display_name == "Pat Lee"
        assert draft.phones == ["555-1"]

        (source,) = await source_store.list_for_contact(OWNER, contact.id)
        assert source.sync_direction == SyncDirection.EXPORT
        assert source.external_resource_name == "people/x1"
        assert source.external_id == "x1"
        assert source.etag == result.etag

    async def test_second_export_updates_under_stored_etag(
        self, exporter, provider, source_store, contact_store, contact
    ):
        first = await exporter.export_contact(OWNER, contact.id, ACCOUNT)
        await contact_store.upsert_contact(
            OWNER, contact.email, ObservedFields(organization="Riverside"), occurrence=False
        )
        second = await exporter.export_contact(OWNER, contact.id, ACCOUNT)

        assert second.action == ExportAction.UPDATED
        assert second.resource_name == first.resource_name
        assert second.etag != first.etag
        assert provider.writes[-1][2].organization == "Riverside"
        (source,) = await source_store.list_for_contact(OWNER, contact.id)
        assert source.etag == second.etag
        assert source.sync_direction == SyncDirection.EXPORT

    async def test_imported_link_becomes_bidirectional(
        self, exporter, provider, source_store, contact
    ):
        await provider.create_contact(access_token="t", draft=ContactDraft(email=contact.email))
        await source_store.create(
            contact.id,
            provider=DirectoryProvider.GOOGLE_CONTACTS,
            account_email=ACCOUNT,
            resource_name="people/x1",
            external_id="x1",
            etag="etag-1",
        )

        result = await exporter.export_contact(OWNER, contact.id, ACCOUNT)

        assert result.action == ExportAction.UPDATED
        (source,) = await source_store.list_for_contact(OWNER, contact.id)
        assert source.sync_direction == SyncDirection.BIDIRECTIONAL

    async def test_link_for_another_account_is_not_reused(
        self, exporter, provider, source_store, contact
    ):
        await exporter.export_contact(OWNER, contact.id, "other@gmail.com")
        result = await exporter.export_contact(OWNER, contact.id, ACCOUNT)

        assert result.action == ExportAction.CREATED
        assert len(await source_store.list_for_contact(OWNER, contact.id)) == 2

    async def test_changed_entry_is_a_conflict(self, exporter, provider, source_store, contact):
        await exporter.export_contact(OWNER, contact.id, ACCOUNT)
        await provider.update_contact(
            access_token="t",
            resource_name="people/x1",
            etag="etag-1",
            draft=ContactDraft(email=contact.email),
        )

        with pytest.raises(ConflictError):
            await exporter.export_contact(OWNER, contact.id, ACCOUNT)
        (source,) = await source_store.list_for_contact(OWNER, contact.id)
        assert source.etag == "etag-1"

    async def test_other_owner_cannot_export(self, exporter, provider, contact):
        with pytest.raises(NotFoundError):
            await exporter.export_contact("owner-2", contact.id, ACCOUNT)
        with pytest.raises(NotFoundError):
            await exporter.export_contact(OWNER, uuid.uuid4(), ACCOUNT)
        assert provider.writes == []

    async def test_missing_token(self, provider, source_store, contact_store, contact):
        exporter = ContactExporter(
            provider=provider,
            credentials=StaticCredentialSource(token=None),
            sources=source_store,
            contacts=contact_store,
        )
        with pytest.raises(CredentialUnavailableError):
            await exporter.export_contact(OWNER, contact.id, ACCOUNT)
        assert provider.writes == []

    @pytest.mark.parametrize("account", ["", "   ", None])
    async def test_blank_account_is_rejected(self, exporter, contact, account):
        with pytest.raises(ValidationError):
            await exporter.export_contact(OWNER, contact.id, account)
