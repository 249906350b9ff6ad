"""
Lexical scoring over item numbers, descriptions and categories.
"""

from __future__ import annotations

import html
import re
from dataclasses import dataclass
from typing import Iterable

from ..storage import CatalogItem

_TOKEN_RE = re.compile(r"[a-z0-9]+")
# Words that introduce an item number rather than describe the service.
_NUMBER_MARKERS = frozenset({"item", "mbs"})

SHORT_WEIGHT = 0.45
DESCRIPTION_WEIGHT = 0.35
CATEGORY_WEIGHT = 0.10
PHRASE_WEIGHT = 0.10
PREFIX_NUMBER_SCORE = 0.4
PARTIAL_WORD_CREDIT = 0.5


def tokenize(text: str | None) -> list[str]:
    """Lowercase, drop punctuation and normalize leading zeros."""
    if not text:
        return []
    tokens: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        if token.isdigit():
            token = token.lstrip("0") or "0"
        tokens.append(token)
    return tokens


def text_relevance(description: str, text_query: str | None) -> float:
    """Fraction of significant query words found in a description.

    Words of two characters or fewer are ignored; a query without any
    significant word is fully relevant.
    """
    words = [word for word in tokenize(text_query) if len(word) > 2]
    if not words:
        return 1.0
    haystack = " ".join(tokenize(description))
    found = sum(1 for word in words if word in haystack)
    return found / len(words)


@dataclass(frozen=True)
class TextMatch:
    """Lexical score of one item."""

    item: CatalogItem
    score: float
    spans: tuple[tuple[int, int], ...] = ()


class TextRanker:
    """Deterministic lexical ranker; never calls external services."""

    def score(self, item: CatalogItem, query: str) -> float:
        tokens = [token for token in tokenize(query) if token not in _NUMBER_MARKERS]
        if not tokens:
            return 0.0
        number = str(item.item_number)

        if tokens == [number]:
            return 1.0
        if number in tokens:
            rest = [token for token in tokens if token != number]
            return 0.5 + 0.5 * self._field_score(item, rest)

        numeric = [token for token in tokens if token.isdigit()]
        words_score = self._field_score(item, tokens)
        if any(number.startswith(token) and number != token for token in numeric):
            return max(PREFIX_NUMBER_SCORE, words_score)
        return words_score

    def rank(self, items: Iterable[CatalogItem], query: str) -> list[TextMatch]:
        """Score items, keep matches, order by score then item number."""
        matches: list[TextMatch] = []
        for item in items:
            value = self.score(item, query)
            if value <= 0:
                continue
            matches.append(
                TextMatch(
                    item=item,
                    score=round(min(value, 1.0), 6),
                    spans=highlight_spans(item.description, query),
                )
            )
        matches.sort(key=lambda match: (-match.score, match.item.item_number))
        return matches

    @staticmethod
    def _field_score(item: CatalogItem, tokens: list[str]) -> float:
        if not tokens:
            return 0.0
        short_tokens = tokenize(item.short_description or item.description)
        description_tokens = tokenize(item.description)
        category_tokens = tokenize(" ".join(filter(None, [item.category, item.group_name])))

        phrase = " ".join(tokens)
        phrase_hit = (
            f" {phrase} " in f" {' '.join(short_tokens)} "
            or f" {phrase} " in f" {' '.join(description_tokens)} "
        )
        return (
            SHORT_WEIGHT * _coverage(tokens, short_tokens)
            + DESCRIPTION_WEIGHT * _coverage(tokens, description_tokens)
            + CATEGORY_WEIGHT * _coverage(tokens, category_tokens)
            + (PHRASE_WEIGHT if phrase_hit else 0.0)
        )


def _coverage(query_tokens: list[str], field_tokens: list[str]) -> float:
    if not query_tokens or not field_tokens:
        return 0.0
    exact = set(field_tokens)
    credit = 0.0
    for token in query_tokens:
        if token in exact:
            credit += 1.0
        elif len(token) >= 3 and any(word.startswith(token) for word in exact):
            credit += PARTIAL_WORD_CREDIT
    return credit / len(query_tokens)


def highlight_spans(text: str, query: str) -> tuple[tuple[int, int], ...]:
    """Character spans of words in *text* that start with a query term."""
    terms = {
        token
        for token in tokenize(query)
        if token not in _NUMBER_MARKERS and (len(token) >= 3 or token.isdigit())
    }
    if not text or not terms:
        return ()
    spans: list[tuple[int, int]] = []
    for match in re.finditer(r"[A-Za-z0-9]+", text):
        word = match.group(0).lower()
        if word.isdigit():
            word = word.lstrip("0") or "0"
            hit = word in terms
        else:
            hit = any(word.startswith(term) for term in terms if not term.isdigit())
        if hit:
            spans.append((match.start(), match.end()))
    return tuple(spans)


def render_highlight(text: str, spans: Iterable[tuple[int, int]]) -> str:
    """Wrap spans in ``<mark>`` tags, escaping the rest of the text."""
    parts: list[str] = []
    cursor = 0
    for start, end in sorted(spans):
        if start < cursor:
            continue
        parts.append(html.escape(text[cursor:start], quote=False))
        parts.append(f"<mark>{html.escape(text[start:end], quote=False)}</mark>")
        cursor = end
    parts.append(html.escape(text[cursor:], quote=False))
    return "".join(parts)
