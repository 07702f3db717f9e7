"""Language-model contact classification over the Anthropic Messages API.

One structured-output request per invocation: the model is forced to call a
single tool whose schema admits exactly one contact classification. Failures
never propagate; callers always receive either an ``AIMatch`` or a
``Fallback`` derived from the heuristic result.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from rolodex.classification.results import AIMatch, Fallback, QuickMatch
from rolodex.core import metrics
from rolodex.errors import ExternalServiceError
from rolodex.models import SourceType

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"
DEFAULT_CLASSIFIER_MODEL = "claude-haiku-4-5-20251001"
DEFAULT_MAX_BODY_CHARS = 2000
DEFAULT_TIMEOUT_S = 20.0
DEFAULT_AI_CONFIDENCE = 0.5

EXTRACT_CONTACTS_TOOL_NAME = "extract_email_contacts"
EXTRACT_CONTACTS_TOOL: dict[str, Any] = {
    "name": EXTRACT_CONTACTS_TOOL_NAME,
    "description": "Classify the sender of an email and extract descriptive tags.",
    "input_schema": {
        "type": "object",
        "properties": {
            "contacts": {
                "type": "array",
                "minItems": 1,
                "maxItems": 1,
                "items": {
                    "type": "object",
                    "properties": {
                        "email": {"type": "string"},
                        "source_type": {
                            "type": "string",
                            "enum": [member.value for member in SourceType],
                        },
                        "tags": {"type": "array", "items": {"type": "string"}},
                        "confidence_score": {"type": "number", "minimum": 0, "maximum": 1},
                        "reasoning": {"type": "string"},
                    },
                    "required": ["source_type", "confidence_score", "reasoning"],
                },
            }
        },
        "required": ["contacts"],
    },
}


class AIClassificationError(ExternalServiceError):
    """The model call failed or returned no usable classification."""


def build_prompt(signature_text: str, sender_address: str, subject: str, max_chars: int) -> str:
    body = (signature_text or "")[:max_chars]
    return (
        "Extract contact information from this email and classify the sender.\n\n"
        f"FROM: {sender_address}\n"
        f"SUBJECT: {subject}\n\n"
        f"EMAIL BODY:\n{body}\n\n"
        "Instructions:\n"
        "- Identify the sender's role/type (coach, teacher, medical, etc.)\n"
        "- Extract relevant tags (sport names, subjects, activities)\n"
        "- Provide confidence score (0-1)\n"
        "- Explain your reasoning"
    )


class AIClassifier:
    """Fallback classifier used when the heuristic result is weak."""

    def __init__(
        self,
        *,
        api_key: str,
        model: str = DEFAULT_CLASSIFIER_MODEL,
        api_url: str = ANTHROPIC_MESSAGES_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        max_body_chars: int = DEFAULT_MAX_BODY_CHARS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise ValueError("api_key must be a non-empty string")
        self._api_key = api_key.strip()
        self._model = model
        self._api_url = api_url
        self._timeout_s = float(timeout_s)
        self._max_body_chars = max(1, int(max_body_chars))
        self._owns_http_client = http_client is None
        self._http_client = (
            http_client
            if http_client is not None
            else httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_s, connect=5.0))
        )

    async def classify(
        self,
        signature_text: str,
        sender_address: str,
        subject: str,
        *,
        quick: QuickMatch,
    ) -> AIMatch | Fallback:
        """Classify one occurrence, degrading to *quick* at reduced confidence on failure."""
        try:
            async with asyncio.timeout(self._timeout_s):
                payload = await self._request(signature_text, sender_address, subject)
            return _parse_classification(payload)
        except TimeoutError:
            reason = f"timed out after {self._timeout_s:g}s"
        except httpx.HTTPError as exc:
            reason = f"{type(exc).__name__}: {exc}"
        except AIClassificationError as exc:
            reason = str(exc)

        logger.warning("AI contact classification failed for %s: %s", sender_address, reason)
        metrics.classifier_fallback_total().add(1)
        return Fallback.from_quick(quick, reason)

    async def shutdown(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def _request(self, signature_text: str, sender_address: str, subject: str) -> Any:
        response = await self._http_client.post(
            self._api_url,
            json={
                "model": self._model,
                "max_tokens": 1024,
                "tools": [EXTRACT_CONTACTS_TOOL],
                "tool_choice": {"type": "tool", "name": EXTRACT_CONTACTS_TOOL_NAME},
                "messages": [
                    {
                        "role": "user",
                        "content": build_prompt(
                            signature_text, sender_address, subject, self._max_body_chars
                        ),
                    }
                ],
            },
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "content-type": "application/json",
            },
        )
        if response.status_code < 200 or response.status_code >= 300:
            raise AIClassificationError(
                f"Model request failed ({response.status_code}): {_safe_error_message(response)}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise AIClassificationError("Model response was not valid JSON") from exc


def _parse_classification(payload: Any) -> AIMatch:
    if not isinstance(payload, dict):
        raise AIClassificationError("Model response must be a JSON object")

    content = payload.get("content")
    tool_input: Any = None
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "tool_use":
                tool_input = block.get("input")
                break
    if not isinstance(tool_input, dict):
        raise AIClassificationError("Model did not return a tool use result")

    contacts = tool_input.get("contacts")
    first = contacts[0] if isinstance(contacts, list) and contacts else None
    if not isinstance(first, dict):
        raise AIClassificationError("No contact extracted from tool result")

    raw_tags = first.get("tags")
    tags = tuple(t.strip().lower() for t in raw_tags if isinstance(t, str) and t.strip()) if (
        isinstance(raw_tags, list)
    ) else ()

    raw_confidence = first.get("confidence_score")
    if isinstance(raw_confidence, bool) or not isinstance(raw_confidence, int | float):
        confidence = DEFAULT_AI_CONFIDENCE
    else:
        confidence = float(raw_confidence)

    reasoning = first.get("reasoning")
    return AIMatch(
        source_type=SourceType.coerce(first.get("source_type") or SourceType.OTHER),
        tags=tags,
        confidence=confidence,
        reasoning=reasoning.strip() if isinstance(reasoning, str) and reasoning.strip()
        else "AI classification",
    )


def _safe_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]

    text = response.text.strip()
    if text:
        return " ".join(text.split())[:200]
    return "unknown error"


__all__ = [
    "AIClassificationError",
    "AIClassifier",
    "ANTHROPIC_MESSAGES_URL",
    "EXTRACT_CONTACTS_TOOL",
    "build_prompt",
]
