# invoice_extract/field_mapping.py
"""Map table header cells onto canonical line-item fields.

Matching is layered: whole-header synonyms from FIELD_PATTERNS (English,
Simplified and Traditional Chinese), then a substring scan of
FUZZY_KEYWORDS, then positional inference for tables whose headers carry
no recognizable words at all.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from .config_labels import (
    CANONICAL_FIELDS,
    CURRENCY_PREFIX_PATTERNS,
    FIELD_PATTERNS,
    FUZZY_KEYWORDS,
    HEADER_MAX_LENGTH,
    NUMERIC_FIELDS,
)
from .lang_utils import parse_money
from .models import HeaderFieldMap

_WRAPPING_BRACKETS = re.compile(r"^[\(\[\{]|[\)\]\}]$")
_NUMERIC_LOOKING = re.compile(r"^[-+]?[\d.,\s]+$")


def _is_numeric_like(text: str) -> bool:
    return bool(_NUMERIC_LOOKING.match(text)) and any(c.isdigit() for c in text)


def fuzzy_match_column(header: str) -> Optional[str]:
    low = header.lower()
    for field, keywords in FUZZY_KEYWORDS.items():
        for kw in keywords:
            if kw in low:
                return field
    return None


def map_column(header: str) -> Optional[str]:
    """Return the canonical field for one header cell, or None."""
    text = (header or "").strip()
    text = _WRAPPING_BRACKETS.sub("", text).strip()
    if not text or len(text) > HEADER_MAX_LENGTH:
        return None

    for field in CANONICAL_FIELDS:
        for pattern in FIELD_PATTERNS.get(field, []):
            if pattern.match(text):
                return field

    return fuzzy_match_column(text)


def map_header_row(headers: List[str], data_rows: Optional[List[List[str]]] = None) -> HeaderFieldMap:
    mapping: HeaderFieldMap = {}
    used = set()

    for idx, header in enumerate(headers):
        field = map_column(str(header))
        if field is not None and field not in mapping:
            mapping[field] = idx
            used.add(idx)

    if "name" not in mapping and "code" not in mapping:
        for idx, header in enumerate(headers):
            if idx in used:
                continue
            h = str(header).strip()
            if h and not _is_numeric_like(h):
                mapping["name"] = idx
                used.add(idx)
                break

    # headers give no name column at all; let the cell text decide
    if "name" not in mapping and "code" not in mapping and data_rows:
        for idx in range(len(headers)):
            if idx not in used and infer_column_type(data_rows, idx) == "name":
                mapping["name"] = idx
                used.add(idx)
                break

    # Whatever is left is handed to the numeric fields in reading order.
    leftovers = [idx for idx in range(len(headers)) if idx not in used]
    for field in NUMERIC_FIELDS:
        if field in mapping:
            continue
        if not leftovers:
            break
        mapping[field] = leftovers.pop(0)

    return mapping


def infer_column_type(rows: List[List[str]], col: int) -> Optional[str]:
    """Guess a column's role from its data cells (header row excluded)."""
    values = [str(row[col]).strip() for row in rows if col < len(row)]
    if not values:
        return None

    numeric_count = 0
    has_decimals = False
    max_value = 0.0
    total_chars = 0

    for v in values:
        clean = re.sub(r"[,\s]", "", v)
        if re.fullmatch(r"-?\d+(?:\.\d+)?", clean):
            numeric_count += 1
            max_value = max(max_value, float(clean))
            if "." in clean:
                has_decimals = True
        total_chars += len(v)

    numeric_ratio = numeric_count / len(values)

    if numeric_ratio > 0.8:
        if not has_decimals and max_value < 1000:
            return "qty"
        if has_decimals or max_value > 100:
            return "total"

    if total_chars / len(values) > 10 and numeric_ratio < 0.2:
        return "name"

    return None


def extract_currency(text: str) -> Dict[str, Optional[object]]:
    """Split a money cell like 'HK$ 1,200.00' into currency and amount."""
    result: Dict[str, Optional[object]] = {"currency": None, "amount": None}
    stripped = (text or "").strip()

    for currency, pattern in CURRENCY_PREFIX_PATTERNS.items():
        if pattern.match(stripped):
            result["currency"] = currency
            break

    if re.search(r"\d", stripped):
        result["amount"] = parse_money(stripped)

    return result
