"""Classification outcomes.

Every classifier returns one of three variants sharing the same
(source_type, tags, confidence, reasoning) contract, so downstream code can
``match`` on the variant instead of probing optional fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from rolodex.models import SourceType, clamp_confidence

# Quick results below this confidence (or typed ``other``) are escalated to the AI classifier.
QUICK_CONFIDENCE_THRESHOLD = 0.7
FALLBACK_CONFIDENCE = 0.3


@dataclass(frozen=True)
class _Classification:
    source_type: SourceType
    tags: tuple[str, ...] = field(default_factory=tuple)
    confidence: float = 0.5
    reasoning: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))
        object.__setattr__(self, "tags", tuple(dict.fromkeys(self.tags)))

    @property
    def kind(self) -> str:
        raise NotImplementedError

    def to_metadata(self) -> dict[str, Any]:
        """Annotation stored in ``contacts.extraction_metadata``."""
        return {
            "classifier": self.kind,
            "source_type": self.source_type.value,
            "tags": list(self.tags),
            "confidence": self.confidence,
            "reasoning": self.reasoning,
        }


@dataclass(frozen=True)
class QuickMatch(_Classification):
    """Deterministic domain/keyword heuristic result."""

    @property
    def kind(self) -> str:
        return "quick"

    @property
    def needs_ai(self) -> bool:
        return (
            self.source_type == SourceType.OTHER or self.confidence < QUICK_CONFIDENCE_THRESHOLD
        )


@dataclass(frozen=True)
class AIMatch(_Classification):
    """Structured classification returned by the language model."""

    @property
    def kind(self) -> str:
        return "ai"


@dataclass(frozen=True)
class Fallback(_Classification):
    """Quick result re-issued at reduced confidence after the AI call failed."""

    @property
    def kind(self) -> str:
        return "fallback"

    @classmethod
    def from_quick(cls, quick: QuickMatch, reason: str) -> Fallback:
        return cls(
            source_type=quick.source_type,
            tags=quick.tags,
            confidence=FALLBACK_CONFIDENCE,
            reasoning=f"Fallback classification (AI failed): {reason}",
        )


ClassificationResult = QuickMatch | AIMatch | Fallback

__all__ = [
    "AIMatch",
    "ClassificationResult",
    "FALLBACK_CONFIDENCE",
    "Fallback",
    "QUICK_CONFIDENCE_THRESHOLD",
    "QuickMatch",
]
