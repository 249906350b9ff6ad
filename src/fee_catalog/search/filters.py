"""
Compact filter expression parsing for the command line.
"""

from __future__ import annotations

import re
from typing import Any

from pydantic import ValidationError

from ..errors import CatalogValidationError, validation_message
from ..models import SearchFilters


class FilterParseError(CatalogValidationError):
    """Raised when filter syntax is invalid."""


_CONDITION_RE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_]*)\s*(<=|>=|=|:)\s*(.+?)\s*$")
_NUMBER_RE = re.compile(r"^\d+(?:\.\d+)?$")

_FIELD_ALIASES = {
    "provider": "provider_type",
    "provider_type": "provider_type",
    "category": "category",
    "fee": "fee",
    "schedule_fee": "fee",
    "min_fee": "min_fee",
    "max_fee": "max_fee",
    "include_inactive": "include_inactive",
    "inactive": "include_inactive",
}


def supported_filter_syntax() -> str:
    """Return a short help text for filter syntax."""
    return (
        "Supported filter syntax: "
        "`provider_type=G|S|AD|ALL`, `category=value`, `fee>=number`, `fee<=number`, "
        "`fee=number`, `min_fee=number`, `max_fee=number`, `include_inactive=true`; "
        "combine with comma or `and`."
    )


def parse_search_filters(raw_filters: str | None) -> SearchFilters:
    """Parse a raw filter string into validated search filters."""
    if raw_filters is None or not raw_filters.strip():
        return SearchFilters()

    values: dict[str, Any] = {}
    for condition in _split_conditions(raw_filters):
        _apply_condition(condition, values)
    try:
        return SearchFilters(**values)
    except ValidationError as exc:
        raise FilterParseError(validation_message(exc), {"filters": raw_filters}) from exc


def _apply_condition(condition: str, values: dict[str, Any]) -> None:
    match = _CONDITION_RE.match(condition)
    if not match:
        raise FilterParseError(f"Invalid filter syntax: {condition!r}")

    field = _FIELD_ALIASES.get(match.group(1).lower())
    operator = match.group(2)
    raw_value = _unquote(match.group(3))
    if field is None:
        allowed = ", ".join(sorted(_FIELD_ALIASES))
        raise FilterParseError(
            f"Unknown filter field {match.group(1)!r}. Allowed fields: {allowed}"
        )

    if field == "fee":
        amount = _parse_amount(raw_value, condition)
        if operator in {">=", "=", ":"}:
            values["min_fee"] = amount
        if operator in {"<=", "=", ":"}:
            values["max_fee"] = amount
        return

    if operator not in {"=", ":"}:
        raise FilterParseError(f"Operator `{operator}` is only supported for fee: {condition!r}")

    if field in {"min_fee", "max_fee"}:
        values[field] = _parse_amount(raw_value, condition)
    elif field == "include_inactive":
        lowered = raw_value.lower()
        if lowered not in {"true", "false"}:
            raise FilterParseError(f"Expected true or false: {condition!r}")
        values[field] = lowered == "true"
    elif field == "provider_type":
        values[field] = raw_value.upper()
    else:
        values[field] = raw_value


def _parse_amount(raw_value: str, condition: str) -> float:
    if not _NUMBER_RE.match(raw_value):
        raise FilterParseError(f"Fee bounds require a non-negative number: {condition!r}")
    return float(raw_value)


def _unquote(text: str) -> str:
    if len(text) >= 2 and text[0] == text[-1] and text[0] in {"'", '"'}:
        return text[1:-1]
    return text


def _split_conditions(raw: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    i = 0
    while i < len(raw):
        ch = raw[i]

        if quote is not None:
            current.append(ch)
            if ch == quote:
                quote = None
            i += 1
            continue

        if ch in {"'", '"'}:
            quote = ch
            current.append(ch)
            i += 1
            continue

        if ch == ",":
            _flush_part(parts, current)
            i += 1
            continue

        if (
            raw[i : i + 3].lower() == "and"
            and (i == 0 or raw[i - 1].isspace())
            and (i + 3 == len(raw) or raw[i + 3].isspace())
        ):
            _flush_part(parts, current)
            i += 3
            continue

        current.append(ch)
        i += 1

    _flush_part(parts, current)
    return parts


def _flush_part(parts: list[str], current: list[str]) -> None:
    text = "".join(current).strip()
    if text:
        parts.append(text)
    current.clear()
