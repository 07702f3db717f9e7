"""Deterministic domain/keyword classifier.

Pure and I/O-free: the sender's domain picks a category from curated tables,
and signature keywords decide how confident that guess is.
"""

from __future__ import annotations

from rolodex.classification.results import QuickMatch
from rolodex.models import SourceType, extract_domain

# Youth-sports directory platforms whose senders are almost always coaches.
COACH_DOMAINS: tuple[str, ...] = (
    "teamsnap.com",
    "leagueapps.com",
    "sportsengine.com",
    "bluesombrero.com",
)
TEACHER_DOMAIN_KEYWORDS: tuple[str, ...] = ("teacher", "school")
ADMIN_DOMAIN_KEYWORDS: tuple[str, ...] = ("school", "principal", "superintendent", "district")
MEDICAL_DOMAIN_KEYWORDS: tuple[str, ...] = ("dr.", "doctor", "therapy", "pediatric", "clinic")
TEAM_DOMAIN_KEYWORDS: tuple[str, ...] = ("team", "league", "sports")

SIGNATURE_KEYWORDS: dict[SourceType, tuple[str, ...]] = {
    SourceType.COACH: ("coach", "team", "practice", "game"),
    SourceType.TEACHER: ("teacher", "class", "homework", "assignment", "school"),
    SourceType.SCHOOL_ADMIN: ("principal", "superintendent", "district", "administration"),
    SourceType.MEDICAL: ("doctor", "dr.", "appointment", "patient", "therapy"),
    SourceType.TEAM: ("team", "league", "roster", "tournament"),
}
GENERIC_ROLE_KEYWORDS: tuple[str, ...] = ("coach", "teacher", "doctor", "team", "school")

SPORT_TAGS: tuple[str, ...] = (
    "soccer",
    "basketball",
    "baseball",
    "football",
    "hockey",
    "volleyball",
    "tennis",
    "swimming",
)
SUBJECT_TAGS: tuple[str, ...] = ("math", "science", "english", "history", "reading", "art", "music")
ACTIVITY_TAGS: tuple[str, ...] = (
    "practice",
    "game",
    "tournament",
    "meeting",
    "homework",
    "assignment",
)

CONFIDENCE_DOMAIN_AND_KEYWORDS = 0.9
CONFIDENCE_DOMAIN_ONLY = 0.7
CONFIDENCE_KEYWORDS_ONLY = 0.6
CONFIDENCE_NO_SIGNAL = 0.5


def infer_source_type_from_domain(sender_address: str) -> SourceType:
    """Classify a sender by the domain part of its address."""
    domain = extract_domain(sender_address)
    if not domain:
        return SourceType.OTHER

    if any(d in domain for d in COACH_DOMAINS):
        return SourceType.COACH
    if domain.endswith(".edu"):
        return SourceType.TEACHER
    if any(k in domain for k in TEACHER_DOMAIN_KEYWORDS):
        return SourceType.TEACHER
    if any(k in domain for k in ADMIN_DOMAIN_KEYWORDS):
        return SourceType.SCHOOL_ADMIN
    if any(k in domain for k in MEDICAL_DOMAIN_KEYWORDS):
        return SourceType.MEDICAL
    if any(k in domain for k in TEAM_DOMAIN_KEYWORDS):
        return SourceType.TEAM
    return SourceType.OTHER


def quick_confidence(source_type: SourceType, text: str, sender_address: str) -> float:
    lower_text = (text or "").lower()
    lower_sender = (sender_address or "").lower()

    if source_type != SourceType.OTHER:
        keywords = SIGNATURE_KEYWORDS.get(source_type, ())
        if any(k in lower_text or k in lower_sender for k in keywords):
            return CONFIDENCE_DOMAIN_AND_KEYWORDS
        return CONFIDENCE_DOMAIN_ONLY

    if any(k in lower_text for k in GENERIC_ROLE_KEYWORDS):
        return CONFIDENCE_KEYWORDS_ONLY
    return CONFIDENCE_NO_SIGNAL


def extract_quick_tags(text: str, subject: str) -> tuple[str, ...]:
    """Collect curated sport/subject/activity keywords found in subject + body."""
    combined = f"{subject or ''} {text or ''}".lower()
    tags: list[str] = []
    for vocabulary in (SPORT_TAGS, SUBJECT_TAGS, ACTIVITY_TAGS):
        for word in vocabulary:
            if word in combined and word not in tags:
                tags.append(word)
    return tuple(tags)


def classify_quick(signature_text: str, sender_address: str, subject: str) -> QuickMatch:
    """Heuristically classify one occurrence without any network access."""
    source_type = infer_source_type_from_domain(sender_address)
    confidence = quick_confidence(source_type, signature_text, sender_address)
    return QuickMatch(
        source_type=source_type,
        tags=extract_quick_tags(signature_text, subject),
        confidence=confidence,
        reasoning=f"Domain-based classification: {sender_address}",
    )


__all__ = [
    "classify_quick",
    "extract_quick_tags",
    "infer_source_type_from_domain",
    "quick_confidence",
]
