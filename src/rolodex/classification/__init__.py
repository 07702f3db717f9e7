"""Contact classification: domain/keyword heuristics with an AI fallback."""

from __future__ import annotations

from rolodex.classification.ai import AIClassifier
from rolodex.classification.quick import classify_quick
from rolodex.classification.results import (
    AIMatch,
    ClassificationResult,
    Fallback,
    QuickMatch,
)
from rolodex.classification.signature import SignatureInfo, extract_contact_from_signature


async def classify_occurrence(
    signature_text: str,
    sender_address: str,
    subject: str,
    *,
    ai: AIClassifier | None = None,
) -> ClassificationResult:
    """Classify one sender occurrence.

    The heuristic result is returned unless it is weak and an AI classifier
    is available, in which case the AI result (or its fallback) wins.
    """
    quick = classify_quick(signature_text, sender_address, subject)
    if ai is None or not quick.needs_ai:
        return quick
    return await ai.classify(signature_text, sender_address, subject, quick=quick)


__all__ = [
    "AIClassifier",
    "AIMatch",
    "ClassificationResult",
    "Fallback",
    "QuickMatch",
    "SignatureInfo",
    "classify_occurrence",
    "classify_quick",
    "extract_contact_from_signature",
]
