"""Reviewer actions on the verification queue.

Each action is validated against the item's current status and committed in
one transaction by the queue repository. ``batch_approve_by_domain`` fans out
one approval per item and collects per-item outcomes.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Protocol

from rolodex.core import metrics
from rolodex.core.logging import set_owner_context
from rolodex.core.telemetry import operation_span
from rolodex.errors import RolodexError, ValidationError
from rolodex.models import (
    METHOD_MANUAL_APPROVAL,
    METHOD_MANUAL_MODIFICATION,
    METHOD_MANUAL_REJECTION,
    Contact,
    QueueItemUpdate,
    QueueStatus,
    VerificationQueueItem,
    VerificationStatus,
)
from rolodex.verification.queue import Resolution

logger = logging.getLogger(__name__)

DEFAULT_BATCH_CONCURRENCY = 5


class QueueRepository(Protocol):
    async def get(self, owner_id: str, queue_id: uuid.UUID) -> VerificationQueueItem | None: ...

    async def list_pending_by_domain(
        self, owner_id: str, domain: str
    ) -> list[VerificationQueueItem]: ...

    async def resolve(
        self, owner_id: str, queue_id: uuid.UUID, resolution: Resolution
    ) -> tuple[VerificationQueueItem, Contact]: ...


@dataclass
class ActionResult:
    item: VerificationQueueItem
    contact: Contact

    def to_dict(self) -> dict:
        return {"item": self.item.to_dict(), "contact": self.contact.to_dict()}


@dataclass
class BatchResult:
    """Per-item outcome of a domain-wide approval."""

    domain: str
    approved: list[uuid.UUID] = field(default_factory=list)
    failed: dict[uuid.UUID, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.approved) + len(self.failed)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "approved": [str(i) for i in self.approved],
            "failed": {str(k): v for k, v in self.failed.items()},
            "total": self.total,
        }


class VerificationWorkflow:
    def __init__(
        self,
        queue: QueueRepository,
        *,
        batch_concurrency: int = DEFAULT_BATCH_CONCURRENCY,
    ) -> None:
        if batch_concurrency < 1:
            raise ValueError("batch_concurrency must be at least 1")
        self._queue = queue
        self._batch_concurrency = batch_concurrency

    async def approve(
        self, owner_id: str, queue_id: uuid.UUID, contact_id: uuid.UUID | None = None
    ) -> ActionResult:
        """Accept the suggestion; the contact becomes verified by the owner."""
        return await self._resolve(
            owner_id,
            queue_id,
            Resolution(
                target=QueueStatus.APPROVED,
                contact_status=VerificationStatus.VERIFIED,
                method=METHOD_MANUAL_APPROVAL,
                actor=owner_id,
                expected_contact_id=contact_id,
            ),
        )

    async def reject(self, owner_id: str, queue_id: uuid.UUID) -> ActionResult:
        """Decline the suggestion; the contact is marked rejected and never re-queued."""
        return await self._resolve(
            owner_id,
            queue_id,
            Resolution(
                target=QueueStatus.REJECTED,
                contact_status=VerificationStatus.REJECTED,
                method=METHOD_MANUAL_REJECTION,
                actor=owner_id,
            ),
        )

    async def modify(
        self,
        owner_id: str,
        queue_id: uuid.UUID,
        contact_id: uuid.UUID | None,
        updates: QueueItemUpdate,
    ) -> ActionResult:
        """Correct the suggestion, then verify the contact with the corrected values."""
        if (
            updates.suggested_type is None
            and updates.suggested_tags is None
            and updates.reasoning is None
            and updates.confidence is None
        ):
            raise ValidationError("modify requires at least one field to update")
        return await self._resolve(
            owner_id,
            queue_id,
            Resolution(
                target=QueueStatus.MODIFIED,
                contact_status=VerificationStatus.VERIFIED,
                method=METHOD_MANUAL_MODIFICATION,
                actor=owner_id,
                expected_contact_id=contact_id,
                updates=updates,
            ),
        )

    async def batch_approve_by_domain(self, owner_id: str, domain: str) -> BatchResult:
        """Approve every pending item whose contact belongs to *domain*.

        Items are approved concurrently (bounded); one failure never stops
        the others.
        """
        normalized = (domain or "").strip().lower().lstrip("@")
        if not normalized:
            raise ValidationError("domain must be a non-empty string")

        set_owner_context(owner_id)
        with operation_span("batch_approve_by_domain", owner_id=owner_id, domain=normalized):
            items = await self._queue.list_pending_by_domain(owner_id, normalized)
            semaphore = asyncio.Semaphore(self._batch_concurrency)

            async def _approve(item: VerificationQueueItem) -> tuple[uuid.UUID, str | None]:
                async with semaphore:
                    try:
                        await self.approve(owner_id, item.id, item.contact_id)
                    except RolodexError as exc:
                        logger.warning("Batch approval of queue item %s failed: %s", item.id, exc)
                        return item.id, str(exc)
                    except Exception as exc:
                        logger.exception("Batch approval of queue item %s crashed", item.id)
                        return item.id, f"{type(exc).__name__}: {exc}"
                return item.id, None

            outcomes = await asyncio.gather(*(_approve(item) for item in items))

        result = BatchResult(domain=normalized)
        for queue_id, error in outcomes:
            if error is None:
                result.approved.append(queue_id)
            else:
                result.failed[queue_id] = error
        logger.info(
            "Batch approval for domain %s: %d approved, %d failed",
            normalized,
            len(result.approved),
            len(result.failed),
        )
        return result

    async def _resolve(
        self, owner_id: str, queue_id: uuid.UUID, resolution: Resolution
    ) -> ActionResult:
        set_owner_context(owner_id)
        action = resolution.target.value
        with operation_span(f"queue.{action}", owner_id=owner_id):
            item, contact = await self._queue.resolve(owner_id, queue_id, resolution)
        metrics.verification_actions_total().add(1, {"action": action})
        logger.info(
            "Queue item %s %s; contact %s is now %s",
            item.id,
            action,
            contact.email,
            contact.verification_status,
        )
        return ActionResult(item=item, contact=contact)


__all__ = ["ActionResult", "BatchResult", "QueueRepository", "VerificationWorkflow"]
