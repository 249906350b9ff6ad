"""
Schedule source reader.

Reads MBS-style XML exports: a root element holding repeated record elements
(``Data`` or ``Item``), each with one child element per field.
"""

from __future__ import annotations

import hashlib
import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path

from ..errors import RecordValidationError, SourceFormatError
from ..storage import CatalogItem
from ..storage.base import PROVIDER_TYPES

MAX_SOURCE_BYTES = 100 * 1024 * 1024
SHORT_DESCRIPTION_LENGTH = 255

_DATE_FORMATS: tuple[str, ...] = ("%d.%m.%Y", "%d/%m/%Y", "%Y-%m-%d")
_TRUE_FLAGS = frozenset({"Y", "true", "1"})


@dataclass(frozen=True)
class SourceRecord:
    """One raw record as read from the source, with its content checksum."""

    position: int
    fields: dict[str, str]
    checksum: str

    @property
    def item_number_hint(self) -> str | None:
        return self.fields.get("ItemNum")


@dataclass(frozen=True)
class ScheduleSource:
    path: str
    checksum: str
    records: list[SourceRecord]


def record_checksum(fields: dict[str, str]) -> str:
    payload = json.dumps(fields, sort_keys=True, ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def read_schedule_source(path: str) -> ScheduleSource:
    """Read and structurally validate a schedule XML file.

    Raises ``SourceFormatError`` when the file is missing, too large,
    malformed or holds no item records.
    """
    source = Path(path).expanduser()
    if not source.is_file():
        raise SourceFormatError(f"No such file: {source}", {"source_ref": str(path)})
    size = source.stat().st_size
    if size > MAX_SOURCE_BYTES:
        raise SourceFormatError(
            f"File size {size} bytes exceeds maximum allowed size of {MAX_SOURCE_BYTES} bytes",
            {"source_ref": str(path), "size": size},
        )

    raw = source.read_bytes()
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise SourceFormatError(f"Malformed XML: {exc}", {"source_ref": str(path)}) from exc

    records: list[SourceRecord] = []
    for element in root.iter():
        if element.find("ItemNum") is None:
            continue
        fields = {
            child.tag: " ".join((child.text or "").split())
            for child in element
            if len(child) == 0
        }
        records.append(
            SourceRecord(position=len(records), fields=fields, checksum=record_checksum(fields))
        )

    if not records:
        raise SourceFormatError("No item records found in source", {"source_ref": str(path)})
    return ScheduleSource(
        path=str(source.resolve()),
        checksum=hashlib.sha256(raw).hexdigest(),
        records=records,
    )


def parse_source_date(value: str | None) -> date | None:
    """Parse DD.MM.YYYY, DD/MM/YYYY or YYYY-MM-DD; unparseable values are None."""
    if not value:
        return None
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(value.strip(), fmt).date()
        except ValueError:
            continue
    return None


def transform_record(record: SourceRecord, *, today: date | None = None) -> CatalogItem:
    """Validate a raw record and build the catalog item it describes."""
    fields = record.fields
    context = {"position": record.position, "item_number": record.item_number_hint}

    raw_number = fields.get("ItemNum", "").strip()
    if not raw_number.isdigit() or int(raw_number) < 1:
        raise RecordValidationError(f"Invalid item number {raw_number!r}", context)
    item_number = int(raw_number)

    description = fields.get("Descriptor", "").strip()
    if not description:
        raise RecordValidationError(f"Item {item_number} has no description", context)

    provider_type = _optional(fields.get("ProviderType"))
    if provider_type is not None:
        provider_type = provider_type.upper()
        if provider_type not in PROVIDER_TYPES:
            raise RecordValidationError(
                f"Item {item_number} has unknown provider type {provider_type!r}", context
            )

    end_date = parse_source_date(fields.get("ItemEndDate"))
    current = today or date.today()
    return CatalogItem(
        item_number=item_number,
        description=description,
        short_description=description[:SHORT_DESCRIPTION_LENGTH],
        category=_optional(fields.get("Category")),
        sub_category=_optional(fields.get("SubCategory")),
        group_name=_optional(fields.get("Group")),
        provider_type=provider_type,
        service_type=_optional(fields.get("ServiceType")),
        schedule_fee=_fee(fields, "ScheduleFee", item_number, context),
        benefit_75=_fee(fields, "Benefit75", item_number, context),
        benefit_85=_fee(fields, "Benefit85", item_number, context),
        benefit_100=_fee(fields, "Benefit100", item_number, context),
        has_anaesthetic=fields.get("HasAnaesthetic", "").strip() in _TRUE_FLAGS,
        derived_fee_description=_optional(fields.get("DerivedFee")),
        is_active=end_date is None or end_date > current,
        item_start_date=parse_source_date(fields.get("ItemStartDate")),
        item_end_date=end_date,
        source_checksum=record.checksum,
    )


def _optional(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _fee(fields: dict[str, str], name: str, item_number: int, context: dict) -> float | None:
    raw = _optional(fields.get(name))
    if raw is None:
        return None
    try:
        amount = float(raw.replace(",", "").lstrip("$"))
    except ValueError as exc:
        raise RecordValidationError(
            f"Item {item_number} has invalid {name} {raw!r}", context
        ) from exc
    if amount < 0:
        raise RecordValidationError(f"Item {item_number} has negative {name}", context)
    return amount
