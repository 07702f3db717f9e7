"""Observation pipeline: classify -> merge -> decide -> apply.

One call per sender occurrence (for example one received message). The
classification of a sender is cached for a short TTL so bursts of mail from
the same address do not trigger repeated model calls.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from rolodex.classification import classify_occurrence
from rolodex.classification.ai import AIClassifier
from rolodex.classification.results import AIMatch, ClassificationResult
from rolodex.classification.signature import extract_contact_from_signature
from rolodex.contacts.decision import (
    Decision,
    Enqueue,
    NoAction,
    QueueSuggestion,
    VerificationPolicy,
    Verify,
    decide,
)
from rolodex.contacts.store import normalize_email, require_owner
from rolodex.core import metrics
from rolodex.core.expiring import ExpiringMap
from rolodex.core.logging import set_owner_context
from rolodex.core.telemetry import operation_span
from rolodex.models import (
    METHOD_AUTO_QUEUE,
    SYSTEM_ACTOR,
    Contact,
    ObservedFields,
    VerificationQueueItem,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class ContactRepository(Protocol):
    async def upsert_contact(
        self,
        owner_id: str,
        email: str,
        observed: ObservedFields | None = None,
        *,
        occurrence: bool = True,
    ) -> Contact: ...

    async def update_verification(
        self,
        owner_id: str,
        contact_id: uuid.UUID,
        *,
        status: VerificationStatus,
        method: str,
        verified_by: str | None = None,
        expected_status: VerificationStatus | None = None,
    ) -> Contact | None: ...


class EnqueueRepository(Protocol):
    async def enqueue(
        self,
        owner_id: str,
        contact_id: uuid.UUID,
        suggestion: QueueSuggestion,
        *,
        sample_email_ids: Sequence[str] = (),
    ) -> tuple[VerificationQueueItem | None, bool]: ...


@dataclass
class Observation:
    """Result of processing one occurrence."""

    contact: Contact
    classification: ClassificationResult
    decision: Decision
    queue_item: VerificationQueueItem | None = None

    def to_dict(self) -> dict:
        return {
            "contact": self.contact.to_dict(),
            "classification": self.classification.to_metadata(),
            "action": type(self.decision).__name__.lower(),
            "queue_item": self.queue_item.to_dict() if self.queue_item else None,
        }


class ContactPipeline:
    def __init__(
        self,
        contacts: ContactRepository,
        queue: EnqueueRepository,
        *,
        ai: AIClassifier | None = None,
        policy: VerificationPolicy = VerificationPolicy(),
        classification_cache: ExpiringMap[tuple[str, str], AIMatch] | None = None,
    ) -> None:
        self._contacts = contacts
        self._queue = queue
        self._ai = ai
        self._policy = policy
        self._cache = classification_cache

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
        """Record one sighting of *sender_address* and route it for verification."""
        owner_id = require_owner(owner_id)
        email = normalize_email(sender_address)
        set_owner_context(owner_id)

        with operation_span("observe_contact", owner_id=owner_id):
            classification = await self._classify(owner_id, email, signature_text, subject)
            signature = extract_contact_from_signature(signature_text)
            metadata = classification.to_metadata()
            if message_id:
                metadata["last_message_id"] = message_id

            contact = await self._contacts.upsert_contact(
                owner_id,
                email,
                ObservedFields(
                    display_name=display_name,
                    organization=signature.organization,
                    phone_numbers=signature.phones,
                    tags=list(classification.tags),
                    source_type=classification.source_type,
                    confidence_score=classification.confidence,
                    extraction_metadata=metadata,
                ),
            )
            metrics.contacts_observed_total().add(1, {"classifier": classification.kind})

            decision = decide(contact, policy=self._policy)
            contact, queue_item = await self._apply(
                owner_id, contact, decision, message_id=message_id
            )

        return Observation(
            contact=contact,
            classification=classification,
            decision=decision,
            queue_item=queue_item,
        )

    async def _classify(
        self, owner_id: str, email: str, signature_text: str, subject: str
    ) -> ClassificationResult:
        key = (owner_id, email)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

        result = await classify_occurrence(signature_text, email, subject, ai=self._ai)
        if self._cache is not None and isinstance(result, AIMatch):
            self._cache.set(key, result)
        return result

    async def _apply(
        self,
        owner_id: str,
        contact: Contact,
        decision: Decision,
        *,
        message_id: str | None,
    ) -> tuple[Contact, VerificationQueueItem | None]:
        match decision:
            case Verify(method=method):
                verified = await self._contacts.update_verification(
                    owner_id,
                    contact.id,
                    status=VerificationStatus.VERIFIED,
                    method=method,
                    verified_by=SYSTEM_ACTOR,
                    expected_status=VerificationStatus.UNVERIFIED,
                )
                if verified is None:
                    # A concurrent observation already moved the contact on.
                    return contact, None
                metrics.contacts_auto_verified_total().add(1)
                logger.info(
                    "Auto-verified %s after %d emails", verified.email, verified.email_count
                )
                return verified, None

            case Enqueue(suggestion=suggestion):
                item, created = await self._queue.enqueue(
                    owner_id,
                    contact.id,
                    suggestion,
                    sample_email_ids=[message_id] if message_id else (),
                )
                if created:
                    metrics.contacts_queued_total().add(1)
                    logger.info("Queued %s for verification (item %s)", contact.email, item.id)
                    contact.verification_status = VerificationStatus.PENDING
                    contact.verification_method = METHOD_AUTO_QUEUE
                return contact, item

            case NoAction():
                return contact, None

        raise AssertionError(f"Unhandled decision: {decision!r}")


__all__ = ["ContactPipeline", "ContactRepository", "EnqueueRepository", "Observation"]
