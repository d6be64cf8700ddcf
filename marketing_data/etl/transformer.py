import csv
import io
import json
import logging
import math
import re
import uuid
import xml.etree.ElementTree as ET
from typing import Any, Callable, Iterable, Mapping, Optional

from .base import Transformer
from .types import NormalizedRecord, RawRecord, SourceFormat, TransformResult, TransformWarning

log = logging.getLogger(__name__)

# Field names looked up (case-insensitive) in parsed payloads, in priority order.
ID_KEYS = ("id", "system_id", "sku", "code")
CATEGORY_KEYS = ("category", "categoria", "type", "tipo")
VALUE_KEYS = ("value", "valor", "price", "precio", "amount", "total", "quantity", "cantidad")

DEFAULT_CATEGORIES = {
    SourceFormat.JSON: "API_DATA",
    SourceFormat.CSV: "EXPORT_DATA",
    SourceFormat.XML: "LEGACY_DATA",
    SourceFormat.TEXT: "UNKNOWN_DATA",
}
DEFAULT_VALUE = 1.0

# Oversized numbers and deeply nested payloads fail the same way as malformed ones.
PARSE_ERRORS = (ValueError, TypeError, OverflowError, RecursionError, csv.Error, ET.ParseError)

Parsed = tuple[str, str, float]  # system_id, category, value


class FormatTransformer(Transformer):
    """
    Turns a validated raw record into a NormalizedRecord.

    Dispatch goes through a strategy table keyed by SourceFormat. A payload that
    fails to parse as its format falls back to a generic record and carries a
    TransformWarning, so one bad record never sinks the batch.
    """

    def __init__(self):
        self._strategies: dict[SourceFormat, Callable[[str], Parsed]] = {
            SourceFormat.JSON: parse_json,
            SourceFormat.CSV: parse_csv,
            SourceFormat.XML: parse_xml,
        }

    def transform(self, record: RawRecord) -> TransformResult:
        content = record.content or ""
        fmt = record.format or detect_format(content)
        warning = None

        parser = self._strategies.get(fmt)
        parsed = None
        if parser is not None:
            try:
                parsed = parser(content)
            except PARSE_ERRORS as e:
                log.warning("raw record %s is not valid %s: %s", record.id, fmt.value, e)
                warning = TransformWarning(record.id, fmt, f"{type(e).__name__}: {e}")

        if parsed is None:
            parsed = _fallback(record, content)
        system_id, category, value = parsed

        out = NormalizedRecord(
            system_id=system_id,
            category=category,
            value=value,
            raw_record_id=record.id,
            content=f"{fmt.name}_Source: {record.origin or 'unknown'}",
            source_format=fmt,
        )
        return TransformResult(out, warning)


# --- Format sniffing (used at ingestion and for rows stored without a format) ---

def detect_format(content: Optional[str]) -> SourceFormat:
    """Guess the payload layout from its shape."""
    if not content or not content.strip():
        return SourceFormat.TEXT
    c = content.strip()
    if c.startswith("{") or c.startswith("["):
        return SourceFormat.JSON
    if c.startswith("<") and ">" in c:
        return SourceFormat.XML
    if "," in c and len(c.splitlines()) > 1:
        return SourceFormat.CSV
    return SourceFormat.TEXT

def resolve_format(declared: Optional[str], content: Optional[str]) -> SourceFormat:
    """Use the source's declared format when it is a known one, else sniff."""
    if declared:
        try:
            return SourceFormat(declared.strip().lower())
        except ValueError:
            log.warning("unknown declared format %r, sniffing content", declared)
    return detect_format(content)


# --- Per-format parsers. Each raises one of PARSE_ERRORS on a bad payload. ---

def parse_json(content: str) -> Parsed:
    data = json.loads(content)
    if isinstance(data, list):
        data = next((x for x in data if isinstance(x, dict)), None)
    if not isinstance(data, dict):
        raise ValueError("payload holds no JSON object")
    return _fields_from_mapping(data, DEFAULT_CATEGORIES[SourceFormat.JSON])

def parse_csv(content: str) -> Parsed:
    rows = [r for r in csv.reader(io.StringIO(content.strip())) if any(c.strip() for c in r)]
    if len(rows) < 2:
        raise ValueError("CSV payload has no data row")
    header, first = rows[0], rows[1]
    row = dict(zip(header, first))
    return _fields_from_mapping(
        row, DEFAULT_CATEGORIES[SourceFormat.CSV], fallback_id=first[0] if first else None
    )

def parse_xml(content: str) -> Parsed:
    root = ET.fromstring(content.strip())
    for el in root.iter():
        fields = {k.lower(): v for k, v in el.attrib.items()}
        for child in el:
            if child.text and child.text.strip():
                fields.setdefault(child.tag.lower(), child.text)
        if "id" in fields:
            return _fields_from_mapping(fields, DEFAULT_CATEGORIES[SourceFormat.XML])
    raise ValueError("no element carries an id")


# --- Helpers ---

def _fields_from_mapping(
    mapping: Mapping[str, Any], default_category: str, fallback_id: Optional[str] = None
) -> Parsed:
    m = {str(k).strip().lower(): v for k, v in mapping.items()}
    ident = _first_present(m, ID_KEYS)
    if ident is None:
        ident = fallback_id
    if ident is None or not str(ident).strip():
        raise ValueError("no identifier field")
    category = _first_present(m, CATEGORY_KEYS)
    if category is None:
        category = default_category
    value = _first_number(m[k] for k in VALUE_KEYS if k in m)
    if value is None:
        value = _first_number(m.values())
    return str(ident).strip(), str(category).strip(), value if value is not None else DEFAULT_VALUE

def _first_present(m: Mapping[str, Any], keys: Iterable[str]):
    for k in keys:
        v = m.get(k)
        if v is not None and str(v).strip():
            return v
    return None

def _first_number(values: Iterable[Any]) -> Optional[float]:
    for v in values:
        n = _to_float(v)
        if n is not None:
            return n
    return None

def _to_float(v: Any) -> Optional[float]:
    if isinstance(v, bool) or not isinstance(v, (int, float, str)):
        return None
    try:
        n = float(v.strip() if isinstance(v, str) else v)
    except (ValueError, OverflowError):
        return None
    return n if math.isfinite(n) else None

def _fallback(record: RawRecord, content: str) -> Parsed:
    """Generic record for unknown or unparsable payloads. Never fails."""
    suffix = record.id if record.id is not None else uuid.uuid4().hex[:12]
    m = re.search(r"\d+(?:\.\d+)?", content)
    value = _to_float(m.group(0)) if m else None
    if value is None:
        value = DEFAULT_VALUE
    return f"GENERIC-{suffix}", DEFAULT_CATEGORIES[SourceFormat.TEXT], value
