"""Signature block parsing: emails, phone numbers and an organization guess."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
# (xxx) xxx-xxxx, xxx-xxx-xxxx, xxx.xxx.xxxx
_PHONE_RE = re.compile(r"(?:\(\d{3}\)\s*\d{3}[-.]?\d{4}|\d{3}[-.]?\d{3}[-.]?\d{4})")
_COMPANY_PREFIX_RE = re.compile(r"^company:\s*", re.IGNORECASE)
_MAX_ORG_LINE_LENGTH = 50


@dataclass
class SignatureInfo:
    emails: list[str] = field(default_factory=list)
    phones: list[str] = field(default_factory=list)
    organization: str | None = None


def _guess_organization(lines: list[str], index: int) -> str | None:
    """Walk upwards from *index* to the nearest short, capitalized, non-email line."""
    for prev in reversed(lines[:index]):
        candidate = prev.strip()
        if not candidate or "@" in candidate:
            continue
        if len(candidate) < _MAX_ORG_LINE_LENGTH and candidate[0].isupper():
            return candidate
    return None


def extract_contact_from_signature(plain_text: str) -> SignatureInfo:
    """Parse contact details out of a plain-text message signature.

    An explicit ``Company:`` line wins; otherwise the organization is guessed
    from the line preceding the first email or phone match.
    """
    if not plain_text or not isinstance(plain_text, str):
        return SignatureInfo()

    emails: dict[str, None] = {}
    phones: dict[str, None] = {}
    organization: str | None = None
    guessed: str | None = None

    lines = plain_text.split("\n")
    for index, line in enumerate(lines):
        email_matches = _EMAIL_RE.findall(line)
        phone_matches = _PHONE_RE.findall(line)
        emails.update(dict.fromkeys(email_matches))
        phones.update(dict.fromkeys(phone_matches))

        if _COMPANY_PREFIX_RE.match(line.strip()):
            organization = _COMPANY_PREFIX_RE.sub("", line.strip()).strip() or None

        if guessed is None and (email_matches or phone_matches):
            guessed = _guess_organization(lines, index)

    return SignatureInfo(
        emails=list(emails),
        phones=list(phones),
        organization=organization or guessed,
    )


__all__ = ["SignatureInfo", "extract_contact_from_signature"]
