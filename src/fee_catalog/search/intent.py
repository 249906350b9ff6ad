"""
Query intent classification.

Decides whether a query names a specific item number, an item number plus
descriptive text, or is plain free text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from ..models import QueryIntent

_PURE_NUMBER_RE = re.compile(r"^(\d{1,6})$")
_PREFIXED_NUMBER_RE = re.compile(r"^(?:item\s+|mbs\s+|#)(\d{1,6})$", re.IGNORECASE)
_PREFIXED_NUMBER_TEXT_RE = re.compile(r"^(?:item\s+|mbs\s+|#)(\d{1,6})\s+(.+)$", re.IGNORECASE)
_TEXT_PREFIXED_NUMBER_RE = re.compile(r"^(.+?)\s+(?:item\s+|mbs\s+|#)(\d{1,6})$", re.IGNORECASE)
_LEADING_NUMBER_RE = re.compile(r"^(\d{1,6})\s+(.+)$")
_TRAILING_NUMBER_RE = re.compile(r"^(.+?)\s+(\d{1,6})$")

_NUMBER_INTENTS = frozenset({"exact_item_number", "item_number_text"})


@dataclass(frozen=True)
class ParsedQuery:
    """Classified query."""

    intent: QueryIntent
    original_query: str
    item_number: int | None = None
    text_query: str | None = None
    confidence: float = 0.8

    @property
    def names_item(self) -> bool:
        return self.intent in _NUMBER_INTENTS and self.item_number is not None

    def to_dict(self) -> dict[str, object]:
        return {
            "intent": self.intent,
            "item_number": self.item_number,
            "text_query": self.text_query,
            "confidence": self.confidence,
        }


def _detect(query: str) -> ParsedQuery:
    text = query.strip()

    match = _PURE_NUMBER_RE.match(text)
    if match:
        return ParsedQuery(
            intent="exact_item_number",
            original_query=query,
            item_number=int(match.group(1)),
            confidence=1.0,
        )

    match = _PREFIXED_NUMBER_RE.match(text)
    if match:
        return ParsedQuery(
            intent="exact_item_number",
            original_query=query,
            item_number=int(match.group(1)),
            confidence=0.9,
        )

    match = _PREFIXED_NUMBER_TEXT_RE.match(text)
    if match:
        return ParsedQuery(
            intent="item_number_text",
            original_query=query,
            item_number=int(match.group(1)),
            text_query=match.group(2).strip(),
            confidence=0.9,
        )

    match = _TEXT_PREFIXED_NUMBER_RE.match(text)
    if match:
        return ParsedQuery(
            intent="item_number_text",
            original_query=query,
            item_number=int(match.group(2)),
            text_query=match.group(1).strip(),
            confidence=0.9,
        )

    match = _LEADING_NUMBER_RE.match(text)
    if match:
        return ParsedQuery(
            intent="item_number_text",
            original_query=query,
            item_number=int(match.group(1)),
            text_query=match.group(2).strip(),
            confidence=0.7,
        )

    match = _TRAILING_NUMBER_RE.match(text)
    if match:
        return ParsedQuery(
            intent="item_number_text",
            original_query=query,
            item_number=int(match.group(2)),
            text_query=match.group(1).strip(),
            confidence=0.7,
        )

    return ParsedQuery(
        intent="text_search",
        original_query=query,
        text_query=text,
        confidence=0.8,
    )


def classify_query(
    query: str,
    *,
    intent: QueryIntent | None = None,
    item_number: int | None = None,
    text_query: str | None = None,
) -> ParsedQuery:
    """Classify a raw query, letting explicit caller hints win.

    A number intent without any item number (neither detected nor supplied)
    falls back to ``text_search``.
    """
    detected = _detect(query)
    if intent is None and item_number is None and text_query is None:
        return detected

    resolved_number = item_number if item_number is not None else detected.item_number
    resolved_text = text_query.strip() if text_query and text_query.strip() else detected.text_query
    resolved_intent: QueryIntent = intent or detected.intent
    if intent is None and item_number is not None and detected.intent == "text_search":
        resolved_intent = "item_number_text"

    if resolved_intent in _NUMBER_INTENTS and resolved_number is None:
        return ParsedQuery(
            intent="text_search",
            original_query=query,
            text_query=resolved_text or query.strip(),
            confidence=detected.confidence,
        )
    if resolved_intent == "text_search":
        return ParsedQuery(
            intent="text_search",
            original_query=query,
            text_query=resolved_text or query.strip(),
            confidence=1.0 if intent else detected.confidence,
        )
    return ParsedQuery(
        intent=resolved_intent,
        original_query=query,
        item_number=resolved_number,
        text_query=resolved_text if resolved_intent == "item_number_text" else None,
        confidence=1.0 if intent else detected.confidence,
    )
