"""ContactService: the operations rolodex exposes to callers.

Wires the stores, the observation pipeline, the verification workflow, the
sync engine and the exporter around one asyncpg pool, and owns the lifecycle
of the shared classification cache, the AI client and the directory provider.
Sync runs and exports are serialized per owner within the process.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Protocol

import asyncpg

from rolodex.classification.ai import AIClassifier
from rolodex.classification.results import AIMatch
from rolodex.config import RolodexConfig
from rolodex.contacts.decision import VerificationPolicy
from rolodex.contacts.pipeline import (
    ContactPipeline,
    ContactRepository,
    EnqueueRepository,
    Observation,
)
from rolodex.contacts.store import ContactStore, require_owner
from rolodex.core.expiring import ExpiringMap
from rolodex.errors import NotFoundError
from rolodex.models import (
    Contact,
    ContactFilters,
    ContactUpdate,
    QueueItemUpdate,
    QueueStatus,
    SyncState,
    VerificationQueueItem,
)
from rolodex.sync.engine import (
    ContactsSyncEngine,
    SourceRepository,
    SyncResult,
    SyncStateRepository,
)
from rolodex.sync.export import ContactExporter, ContactLookup, ExportResult
from rolodex.sync.provider import (
    ContactsProvider,
    CredentialSource,
    EnvCredentialSource,
    GoogleContactsProvider,
)
from rolodex.sync.sources import ContactSourceStore
from rolodex.sync.state import SyncStateStore
from rolodex.verification.queue import VerificationQueueStore
from rolodex.verification.workflow import (
    ActionResult,
    BatchResult,
    QueueRepository,
    VerificationWorkflow,
)

logger = logging.getLogger(__name__)


class ContactStoreLike(ContactRepository, ContactLookup, Protocol):
    async def list_contacts(
        self, owner_id: str, filters: ContactFilters | None = None
    ) -> list[Contact]: ...

    async def update_contact(
        self, owner_id: str, contact_id: uuid.UUID, update: ContactUpdate
    ) -> Contact: ...

    async def delete_contact(self, owner_id: str, contact_id: uuid.UUID) -> bool: ...

    async def link_calendar_event(
        self, owner_id: str, contact_id: uuid.UUID, event_id: str
    ) -> Contact: ...

    async def find_pending_verification(
        self, owner_id: str, *, min_confidence: float, min_emails: int, limit: int = 50
    ) -> list[Contact]: ...


class QueueStoreLike(EnqueueRepository, QueueRepository, Protocol):
    async def list_items(
        self,
        owner_id: str,
        *,
        status: QueueStatus | None = QueueStatus.PENDING,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VerificationQueueItem]: ...

    async def pending_count(self, owner_id: str) -> int: ...


class SyncStateStoreLike(SyncStateRepository, Protocol):
    async def get(self, owner_id: str, account_email: str) -> SyncState | None: ...

    async def list_states(self, owner_id: str) -> list[SyncState]: ...

    async def accounts_needing_sync(
        self, *, interval_s: float, owner_id: str | None = None
    ) -> list[SyncState]: ...


class ContactService:
    def __init__(
        self,
        *,
        contacts: ContactStoreLike,
        queue: QueueStoreLike,
        states: SyncStateStoreLike,
        sources: SourceRepository,
        provider: ContactsProvider,
        credentials: CredentialSource,
        ai: AIClassifier | None = None,
        policy: VerificationPolicy = VerificationPolicy(),
        batch_concurrency: int = 5,
        classification_cache: ExpiringMap[tuple[str, str], AIMatch] | None = None,
    ) -> None:
        self._contacts = contacts
        self._queue = queue
        self._states = states
        self._provider = provider
        self._ai = ai
        self._policy = policy
        self._cache = classification_cache
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._pipeline = ContactPipeline(
            contacts,
            queue,
            ai=ai,
            policy=policy,
            classification_cache=classification_cache,
        )
        self._workflow = VerificationWorkflow(queue, batch_concurrency=batch_concurrency)
        self._sync_engine = ContactsSyncEngine(
            provider=provider,
            credentials=credentials,
            states=states,
            sources=sources,
            contacts=contacts,
        )
        self._exporter = ContactExporter(
            provider=provider,
            credentials=credentials,
            sources=sources,
            contacts=contacts,
        )

    @classmethod
    def from_pool(
        cls,
        pool: asyncpg.Pool,
        config: RolodexConfig,
        *,
        provider: ContactsProvider | None = None,
        credentials: CredentialSource | None = None,
    ) -> ContactService:
        """Build the production service from a pool and a parsed config."""
        ai = None
        if config.classifier.enabled:
            ai = AIClassifier(
                api_key=config.classifier.api_key,
                model=config.classifier.model,
                timeout_s=config.classifier.timeout_s,
                max_body_chars=config.classifier.max_body_chars,
            )
        else:
            logger.info("No classifier API key configured; AI classification disabled")

        return cls(
            contacts=ContactStore(pool),
            queue=VerificationQueueStore(pool),
            states=SyncStateStore(pool, lease_timeout_s=config.sync.lease_timeout_s),
            sources=ContactSourceStore(pool),
            provider=provider
            or GoogleContactsProvider(
                page_size=config.sync.page_size,
                timeout_s=config.sync.request_timeout_s,
            ),
            credentials=credentials or EnvCredentialSource(config.sync.access_token_env),
            ai=ai,
            policy=VerificationPolicy.from_config(config.verification),
            batch_concurrency=config.verification.batch_concurrency,
            classification_cache=ExpiringMap(
                ttl_s=config.classifier.cache_ttl_s, name="classification-cache"
            ),
        )

    async def start(self) -> None:
        if self._cache is not None:
            await self._cache.start_eviction()

    async def shutdown(self) -> None:
        if self._cache is not None:
            await self._cache.stop_eviction()
        if self._ai is not None:
            await self._ai.shutdown()
        await self._provider.shutdown()

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def observe_contact(
        self,
        owner_id: str,
        sender_address: str,
        *,
        signature_text: str = "",
        subject: str = "",
        display_name: str | None = None,
        message_id: str | None = None,
    ) -> Observation:
        return await self._pipeline.observe_contact(
            owner_id,
            sender_address,
            signature_text=signature_text,
            subject=subject,
            display_name=display_name,
            message_id=message_id,
        )

    async def get_contact(self, owner_id: str, contact_id: uuid.UUID) -> Contact:
        contact = await self._contacts.get_contact(require_owner(owner_id), contact_id)
        if contact is None:
            raise NotFoundError(f"Contact {contact_id} not found")
        return contact

    async def list_contacts(
        self, owner_id: str, filters: ContactFilters | None = None
    ) -> list[Contact]:
        return await self._contacts.list_contacts(require_owner(owner_id), filters)

    async def update_contact(
        self, owner_id: str, contact_id: uuid.UUID, update: ContactUpdate
    ) -> Contact:
        return await self._contacts.update_contact(require_owner(owner_id), contact_id, update)

    async def delete_contact(self, owner_id: str, contact_id: uuid.UUID) -> None:
        if not await self._contacts.delete_contact(require_owner(owner_id), contact_id):
            raise NotFoundError(f"Contact {contact_id} not found")
        logger.info("Deleted contact %s for owner=%s", contact_id, owner_id)

    async def link_calendar_event(
        self, owner_id: str, contact_id: uuid.UUID, event_id: str
    ) -> Contact:
        return await self._contacts.link_calendar_event(
            require_owner(owner_id), contact_id, event_id
        )

    # ------------------------------------------------------------------
    # Verification queue
    # ------------------------------------------------------------------

    async def list_queue(
        self,
        owner_id: str,
        *,
        status: QueueStatus | None = QueueStatus.PENDING,
        limit: int = 50,
        offset: int = 0,
    ) -> list[VerificationQueueItem]:
        return await self._queue.list_items(
            require_owner(owner_id), status=status, limit=limit, offset=offset
        )

    async def pending_count(self, owner_id: str) -> int:
        return await self._queue.pending_count(require_owner(owner_id))

    async def find_pending_verification(self, owner_id: str, *, limit: int = 50) -> list[Contact]:
        """Unverified contacts above the queueing thresholds, best candidates first."""
        return await self._contacts.find_pending_verification(
            require_owner(owner_id),
            min_confidence=self._policy.queue_min_confidence,
            min_emails=self._policy.queue_min_emails,
            limit=limit,
        )

    async def approve(
        self, owner_id: str, queue_id: uuid.UUID, contact_id: uuid.UUID | None = None
    ) -> ActionResult:
        return await self._workflow.approve(require_owner(owner_id), queue_id, contact_id)

    async def reject(self, owner_id: str, queue_id: uuid.UUID) -> ActionResult:
        return await self._workflow.reject(require_owner(owner_id), queue_id)

    async def modify(
        self,
        owner_id: str,
        queue_id: uuid.UUID,
        contact_id: uuid.UUID | None,
        updates: QueueItemUpdate,
    ) -> ActionResult:
        return await self._workflow.modify(require_owner(owner_id), queue_id, contact_id, updates)

    async def batch_approve_by_domain(self, owner_id: str, domain: str) -> BatchResult:
        return await self._workflow.batch_approve_by_domain(require_owner(owner_id), domain)

    # ------------------------------------------------------------------
    # Directory sync
    # ------------------------------------------------------------------

    async def sync(self, owner_id: str, account_email: str) -> SyncResult:
        async with self._owner_lock(require_owner(owner_id)):
            return await self._sync_engine.sync(owner_id, account_email)

    async def export_contact(
        self, owner_id: str, contact_id: uuid.UUID, account_email: str
    ) -> ExportResult:
        """Push one contact to the owner's directory *account_email*.

        Runs one at a time per owner together with ``sync``.
        """
        async with self._owner_lock(require_owner(owner_id)):
            return await self._exporter.export_contact(owner_id, contact_id, account_email)

    async def get_sync_state(self, owner_id: str, account_email: str) -> SyncState:
        state = await self._states.get(require_owner(owner_id), account_email.strip().lower())
        if state is None:
            raise NotFoundError(f"No sync state for {owner_id}/{account_email}")
        return state

    async def list_sync_states(self, owner_id: str) -> list[SyncState]:
        return await self._states.list_states(require_owner(owner_id))

    async def accounts_needing_sync(
        self, interval: timedelta, *, owner_id: str | None = None
    ) -> list[SyncState]:
        return await self._states.accounts_needing_sync(
            interval_s=interval.total_seconds(), owner_id=owner_id
        )

    def _owner_lock(self, owner_id: str) -> asyncio.Lock:
        lock = self._owner_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._owner_locks[owner_id] = lock
        return lock


__all__ = ["ContactService", "ContactStoreLike", "QueueStoreLike", "SyncStateStoreLike"]
