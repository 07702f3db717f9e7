"""External contact directory providers.

A provider fetches one page of directory records at a time, either a full
listing or the changes since an opaque sync cursor, and pushes single local
contacts back to the directory. The engines own paging, state and
persistence; providers only speak HTTP and normalize payloads.
"""

from __future__ import annotations

import abc
import logging
import os
from typing import Annotated, Any, Protocol

import httpx
from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from rolodex.errors import (
    ConflictError,
    CredentialUnavailableError,
    CursorInvalidatedError,
    ExternalServiceError,
    RetryableServiceError,
)
from rolodex.models import Contact, DirectoryProvider

logger = logging.getLogger(__name__)

GOOGLE_PEOPLE_API_BASE_URL = "https://people.googleapis.com/v1"
GOOGLE_PEOPLE_API_CONNECTIONS_URL = f"{GOOGLE_PEOPLE_API_BASE_URL}/people/me/connections"
GOOGLE_PERSON_FIELDS = (
    "names,emailAddresses,phoneNumbers,addresses,organizations,biographies,metadata"
)
DEFAULT_GOOGLE_PAGE_SIZE = 200
MAX_GOOGLE_PAGE_SIZE = 1000

_ERROR_DETAIL_LIMIT = 200


class CredentialSource(Protocol):
    """Supplies a bearer token for one (owner, external account) pair."""

    async def get_access_token(self, owner_id: str, account_email: str) -> str | None: ...


class EnvCredentialSource:
    """Reads a single access token from an environment variable.

    Meant for the CLI and local runs where one account is synced at a time.
    """

    def __init__(self, env_var: str) -> None:
        self._env_var = env_var

    async def get_access_token(self, owner_id: str, account_email: str) -> str | None:
        return os.environ.get(self._env_var, "").strip() or None


# ---------------------------------------------------------------------------
# Provider-neutral records
# ---------------------------------------------------------------------------


def _non_blank(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must be a non-empty string")
    return value


NonBlank = Annotated[str, AfterValidator(_non_blank)]


class ContactPhone(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: NonBlank
    label: str | None = None
    primary: bool = False


class ContactEmail(BaseModel):
    """An address as listed by the directory; stored lower-cased."""

    model_config = ConfigDict(extra="forbid")

    value: NonBlank
    label: str | None = None
    primary: bool = False

    @field_validator("value")
    @classmethod
    def _lower(cls, value: str) -> str:
        return value.lower()


class DirectoryRecord(BaseModel):
    """One person from an external directory."""

    model_config = ConfigDict(extra="forbid")

    resource_name: NonBlank
    external_id: NonBlank
    etag: str | None = None
    display_name: str | None = None
    organization: str | None = None
    emails: list[ContactEmail] = Field(default_factory=list)
    phones: list[ContactPhone] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)
    notes: str | None = None
    deleted: bool = False

    @property
    def primary_email(self) -> str | None:
        """The address flagged primary, else the first one listed."""
        flagged = next((e.value for e in self.emails if e.primary), None)
        return flagged or (self.emails[0].value if self.emails else None)


class RecordPage(BaseModel):
    model_config = ConfigDict(extra="forbid")

    records: list[DirectoryRecord] = Field(default_factory=list)
    next_page_token: str | None = None
    next_sync_cursor: str | None = None

    @field_validator("next_page_token", "next_sync_cursor")
    @classmethod
    def _blank_is_none(cls, value: str | None) -> str | None:
        return value.strip() or None if value is not None else None


class ContactDraft(BaseModel):
    """Local contact fields written to a directory on export."""

    model_config = ConfigDict(extra="forbid")

    email: NonBlank
    display_name: str | None = None
    organization: str | None = None
    phones: list[str] = Field(default_factory=list)
    addresses: list[str] = Field(default_factory=list)
    notes: str | None = None

    @classmethod
    def from_contact(cls, contact: Contact) -> ContactDraft:
        return cls(
            email=contact.email,
            display_name=contact.display_name,
            organization=contact.organization,
            phones=list(contact.phone_numbers),
            addresses=list(contact.addresses),
            notes=contact.notes,
        )


class ContactsProvider(abc.ABC):
    """Provider contract for directory sync and export."""

    @property
    @abc.abstractmethod
    def name(self) -> DirectoryProvider:
        """Stable provider identifier stored on contact sources."""

    @abc.abstractmethod
    async def full_sync(self, *, access_token: str, page_token: str | None = None) -> RecordPage:
        """Fetch one full-listing page."""

    @abc.abstractmethod
    async def incremental_sync(
        self,
        *,
        access_token: str,
        cursor: str,
        page_token: str | None = None,
    ) -> RecordPage:
        """Fetch one page of changes since *cursor*."""

    @abc.abstractmethod
    async def create_contact(self, *, access_token: str, draft: ContactDraft) -> DirectoryRecord:
        """Create a directory entry from *draft* and return it as stored."""

    @abc.abstractmethod
    async def update_contact(
        self,
        *,
        access_token: str,
        resource_name: str,
        etag: str | None,
        draft: ContactDraft,
    ) -> DirectoryRecord:
        """Overwrite the fields *draft* carries on an existing entry.

        Raises ``ConflictError`` when *etag* no longer matches the entry.
        """

    @abc.abstractmethod
    async def shutdown(self) -> None:
        """Release provider resources."""


# ---------------------------------------------------------------------------
# Google People API
# ---------------------------------------------------------------------------


class GoogleContactsProvider(ContactsProvider):
    """People API client.

    Lists ``people/me/connections`` for sync; a 410 on a sync-token request
    drops the cursor. Exports go through ``createContact`` and
    ``updateContact``, the latter guarded by the entry's etag.
    """

    def __init__(
        self,
        *,
        person_fields: str = GOOGLE_PERSON_FIELDS,
        page_size: int = DEFAULT_GOOGLE_PAGE_SIZE,
        timeout_s: float = 20.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._person_fields = person_fields.strip() or GOOGLE_PERSON_FIELDS
        self._page_size = min(max(int(page_size), 1), MAX_GOOGLE_PAGE_SIZE)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s, connect=10.0)
        )

    @property
    def name(self) -> DirectoryProvider:
        return DirectoryProvider.GOOGLE_CONTACTS

    async def full_sync(self, *, access_token: str, page_token: str | None = None) -> RecordPage:
        return await self._list_page(access_token, cursor=None, page_token=page_token)

    async def incremental_sync(
        self,
        *,
        access_token: str,
        cursor: str,
        page_token: str | None = None,
    ) -> RecordPage:
        return await self._list_page(access_token, cursor=cursor, page_token=page_token)

    async def create_contact(self, *, access_token: str, draft: ContactDraft) -> DirectoryRecord:
        person, _ = build_person(draft)
        payload = await self._request(
            "POST",
            f"{GOOGLE_PEOPLE_API_BASE_URL}/people:createContact",
            access_token,
            params={"personFields": self._person_fields},
            json=person,
        )
        return _written_person(payload)

    async def update_contact(
        self,
        *,
        access_token: str,
        resource_name: str,
        etag: str | None,
        draft: ContactDraft,
    ) -> DirectoryRecord:
        person, mask = build_person(draft)
        person["resourceName"] = resource_name
        if etag is not None:
            person["etag"] = etag
        payload = await self._request(
            "PATCH",
            f"{GOOGLE_PEOPLE_API_BASE_URL}/{resource_name}:updateContact",
            access_token,
            params={"updatePersonFields": ",".join(mask), "personFields": self._person_fields},
            json=person,
        )
        return _written_person(payload)

    async def shutdown(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _list_page(
        self, access_token: str, *, cursor: str | None, page_token: str | None
    ) -> RecordPage:
        params: dict[str, Any] = {
            "personFields": self._person_fields,
            "pageSize": self._page_size,
            "requestSyncToken": "true",
        }
        if cursor is not None:
            params["syncToken"] = cursor
        if page_token is not None:
            params["pageToken"] = page_token

        payload = await self._request(
            "GET",
            GOOGLE_PEOPLE_API_CONNECTIONS_URL,
            access_token,
            params=params,
            incremental=cursor is not None,
        )
        return parse_people_page(payload)

    async def _request(
        self,
        method: str,
        url: str,
        access_token: str,
        *,
        params: dict[str, Any],
        json: dict[str, Any] | None = None,
        incremental: bool = False,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
            )
        except httpx.TransportError as exc:
            raise RetryableServiceError(f"Google People API transport error: {exc}") from exc

        _raise_for_status(response, incremental=incremental)

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExternalServiceError("Google People API returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise ExternalServiceError("Google People API payload is not a JSON object")
        return payload


def _written_person(payload: dict[str, Any]) -> DirectoryRecord:
    record = parse_person(payload)
    if record is None:
        raise ExternalServiceError("Google People API returned a person without resourceName")
    return record


def _raise_for_status(response: httpx.Response, *, incremental: bool) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    if status == 410 and incremental:
        raise CursorInvalidatedError("Google People sync token expired or invalid")

    detail = _error_detail(response)
    if status == 401:
        raise CredentialUnavailableError(f"Google People API rejected the access token: {detail}")
    if status == 409 or _error_status(response) == "FAILED_PRECONDITION":
        raise ConflictError(f"Google contact changed since it was last read: {detail}")
    message = f"Google People API request failed ({status}): {detail}"
    if status == 429 or status >= 500:
        raise RetryableServiceError(message, status_code=status)
    raise ExternalServiceError(message)


def _error_status(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    return error.get("status") if isinstance(error, dict) else None


def _error_detail(response: httpx.Response) -> str:
    """Best human-readable message from an error response, whitespace-collapsed."""
    candidates: list[Any] = []
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            candidates.append(error.get("message"))
        candidates += [body.get("error_description"), body.get("message")]
    candidates.append(response.text)

    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return " ".join(candidate.split())[:_ERROR_DETAIL_LIMIT]
    return "unknown error"


# ---------------------------------------------------------------------------
# Payload conversion
# ---------------------------------------------------------------------------


def _text(value: Any) -> str | None:
    return value.strip() or None if isinstance(value, str) else None


def _entries(person: dict[str, Any], field: str) -> list[dict[str, Any]]:
    raw = person.get(field)
    return [item for item in raw if isinstance(item, dict)] if isinstance(raw, list) else []


def _flag(entry: dict[str, Any], name: str) -> bool:
    metadata = entry.get("metadata")
    return isinstance(metadata, dict) and bool(metadata.get(name))


def _primary_text(person: dict[str, Any], field: str, key: str) -> str | None:
    entries = _entries(person, field)
    chosen = next((e for e in entries if _flag(e, "primary")), entries[0] if entries else None)
    return _text(chosen.get(key)) if chosen is not None else None


def parse_people_page(payload: dict[str, Any]) -> RecordPage:
    """Convert one ``connections.list`` response into a ``RecordPage``."""
    records = [
        record
        for person in _entries(payload, "connections")
        if (record := parse_person(person)) is not None
    ]
    return RecordPage(
        records=records,
        next_page_token=_text(payload.get("nextPageToken")),
        next_sync_cursor=_text(payload.get("nextSyncToken")),
    )


def parse_person(person: dict[str, Any]) -> DirectoryRecord | None:
    """Normalize one People API person; entries without ``resourceName`` are skipped."""
    resource_name = _text(person.get("resourceName"))
    if resource_name is None:
        logger.warning("Skipping Google contact without resourceName")
        return None

    emails = [
        ContactEmail(value=value, label=_text(e.get("type")), primary=_flag(e, "primary"))
        for e in _entries(person, "emailAddresses")
        if (value := _text(e.get("value")))
    ]
    phones = [
        ContactPhone(value=value, label=_text(p.get("type")), primary=_flag(p, "primary"))
        for p in _entries(person, "phoneNumbers")
        if (value := _text(p.get("canonicalForm")) or _text(p.get("value")))
    ]
    addresses = [
        " ".join(formatted.split())
        for a in _entries(person, "addresses")
        if (formatted := _text(a.get("formattedValue")))
    ]
    metadata = person.get("metadata")

    return DirectoryRecord(
        resource_name=resource_name,
        external_id=resource_name.rsplit("/", 1)[-1] or resource_name,
        etag=_text(person.get("etag")),
        display_name=_primary_text(person, "names", "displayName"),
        organization=_primary_text(person, "organizations", "name"),
        emails=emails,
        phones=phones,
        addresses=addresses,
        notes=_primary_text(person, "biographies", "value"),
        deleted=isinstance(metadata, dict) and bool(metadata.get("deleted")),
    )


def build_person(draft: ContactDraft) -> tuple[dict[str, Any], list[str]]:
    """People API person body for *draft* and the person fields it sets.

    Only fields the draft carries are listed; an update leaves the rest of
    the directory entry untouched.
    """
    person: dict[str, Any] = {"emailAddresses": [{"value": draft.email, "type": "home"}]}
    if display_name := _text(draft.display_name):
        given, _, family = display_name.partition(" ")
        name: dict[str, Any] = {"givenName": given, "unstructuredName": display_name}
        if family.strip():
            name["familyName"] = family.strip()
        person["names"] = [name]
    if draft.phones:
        person["phoneNumbers"] = [{"value": phone, "type": "mobile"} for phone in draft.phones]
    if draft.addresses:
        person["addresses"] = [
            {"streetAddress": address, "type": "home"} for address in draft.addresses
        ]
    if organization := _text(draft.organization):
        person["organizations"] = [{"name": organization}]
    if notes := _text(draft.notes):
        person["biographies"] = [{"value": notes, "contentType": "TEXT_PLAIN"}]
    return person, list(person)


__all__ = [
    "ContactDraft",
    "ContactEmail",
    "ContactPhone",
    "ContactsProvider",
    "CredentialSource",
    "DirectoryRecord",
    "EnvCredentialSource",
    "GoogleContactsProvider",
    "RecordPage",
    "build_person",
    "parse_people_page",
    "parse_person",
]
