"""Auto-verification rules.

``decide`` is pure: it inspects a post-merge contact and returns what should
happen next. Applying the decision is the pipeline's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from rolodex.models import (
    METHOD_AUTO_MULTIPLE_EMAILS,
    Contact,
    SourceType,
    VerificationStatus,
)


@dataclass(frozen=True)
class VerificationPolicy:
    """Thresholds for automatic verification and queueing."""

    auto_verify_min_emails: int = 3
    queue_min_confidence: float = 0.85
    queue_min_emails: int = 2

    @classmethod
    def from_config(cls, config) -> VerificationPolicy:  # noqa: ANN001
        return cls(
            auto_verify_min_emails=config.auto_verify_min_emails,
            queue_min_confidence=config.queue_min_confidence,
            queue_min_emails=config.queue_min_emails,
        )


@dataclass(frozen=True)
class QueueSuggestion:
    source_type: SourceType | None
    tags: tuple[str, ...] = field(default_factory=tuple)
    reasoning: str | None = None
    confidence: float | None = None


@dataclass(frozen=True)
class Verify:
    method: str = METHOD_AUTO_MULTIPLE_EMAILS


@dataclass(frozen=True)
class Enqueue:
    suggestion: QueueSuggestion


@dataclass(frozen=True)
class NoAction:
    pass


Decision = Verify | Enqueue | NoAction


def decide(contact: Contact, *, policy: VerificationPolicy = VerificationPolicy()) -> Decision:
    """Pick the next verification step for *contact*.

    Only unverified contacts are ever acted on; repeated sightings verify
    automatically, high-confidence ones go to a human first.
    """
    if contact.verification_status != VerificationStatus.UNVERIFIED:
        return NoAction()

    if contact.email_count >= policy.auto_verify_min_emails:
        return Verify(METHOD_AUTO_MULTIPLE_EMAILS)

    if (
        contact.confidence_score > policy.queue_min_confidence
        and contact.email_count >= policy.queue_min_emails
    ):
        reasoning = contact.extraction_metadata.get("reasoning")
        return Enqueue(
            QueueSuggestion(
                source_type=contact.source_type,
                tags=tuple(contact.tags),
                reasoning=reasoning if isinstance(reasoning, str) else None,
                confidence=contact.confidence_score,
            )
        )

    return NoAction()


__all__ = [
    "Decision",
    "Enqueue",
    "NoAction",
    "QueueSuggestion",
    "VerificationPolicy",
    "Verify",
    "decide",
]
