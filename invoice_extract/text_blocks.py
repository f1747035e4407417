# invoice_extract/text_blocks.py
"""Header fields and line items from freeform invoice text."""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional

from .config_labels import (
    BLOCK_ROW_THRESHOLD,
    COMPANY_HINT_PATTERN,
    CURRENCY_PATTERNS,
    ENTITY_PREFIX_PATTERN,
    HEADER_PATTERNS,
    LINE_CONSISTENCY_RATIO,
    LINE_QTY_CEILING,
    LINE_SKIP_PATTERN,
    LIST_ITEM_PATTERN,
    MULTIPLICATION_PATTERNS,
    NUMBER_TOKEN_PATTERN,
    TOTAL_PATTERNS,
)
from .lang_utils import normalize_date, parse_money
from .models import Block, LineItem

logger = logging.getLogger(__name__)


def clean_item_name(name: str) -> str:
    name = re.sub(r"^[\d\.\)\]\-\*•\s]+", "", name or "")
    name = re.sub(r"[\s\-\*x×@＠]+$", "", name)
    return re.sub(r"\s+", " ", name).strip()


def clean_entity_name(name: str) -> str:
    name = re.sub(r"\s+", " ", name or "").strip()
    return ENTITY_PREFIX_PATTERN.sub("", name).strip()


def _first_match(field: str, text: str) -> Optional[str]:
    for pattern in HEADER_PATTERNS[field]:
        m = pattern.search(text)
        if m:
            return m.group(1).strip()
    return None


# ---------------------------------------------------------
# Header fields
# ---------------------------------------------------------
def extract_supplier_name(text: str) -> str:
    found = _first_match("supplier_name", text)
    if found:
        return clean_entity_name(found)

    for line in text.splitlines():
        line = line.strip()
        if re.match(r"^\d{4}[-/]", line) or re.match(r"^[#\*\-]", line):
            continue
        if 5 < len(line) < 100 and COMPANY_HINT_PATTERN.search(line):
            return clean_entity_name(line)
    return ""


def extract_customer_name(text: str) -> str:
    found = _first_match("customer_name", text)
    return clean_entity_name(found) if found else ""


def extract_invoice_date(text: str) -> Optional[str]:
    for pattern in HEADER_PATTERNS["invoice_date"]:
        m = pattern.search(text)
        if m:
            iso = normalize_date(m.group(1))
            if iso:
                return iso
    return None


def extract_invoice_number(text: str) -> Optional[str]:
    return _first_match("invoice_number", text)


def extract_declared_total(text: str) -> Optional[float]:
    """The total-like amount that appears last in the text wins."""
    last_pos = -1
    last_value = None
    for pattern in TOTAL_PATTERNS:
        for m in pattern.finditer(text):
            if m.start(1) > last_pos:
                last_pos = m.start(1)
                last_value = m.group(1)
    if last_value is None:
        return None
    value = last_value.replace(",", "").rstrip(".")
    try:
        return float(value)
    except ValueError:
        return None


def detect_currency(text: str) -> Optional[str]:
    for currency, pattern in CURRENCY_PATTERNS.items():
        if pattern.search(text):
            return currency
    return None


def extract_header(text: str) -> Dict[str, object]:
    text = text or ""
    return {
        "supplier_name": extract_supplier_name(text),
        "customer_name": extract_customer_name(text),
        "invoice_date": extract_invoice_date(text),
        "invoice_number": extract_invoice_number(text),
        "total": extract_declared_total(text),
        "currency": detect_currency(text),
    }


# ---------------------------------------------------------
# Items
# ---------------------------------------------------------
def _positive_numbers(text: str) -> List[float]:
    values = [parse_money(tok) for tok in NUMBER_TOKEN_PATTERN.findall(text)]
    return [v for v in values if v > 0]


def _parse_multiplication(text: str) -> List[LineItem]:
    items = []
    for pattern in MULTIPLICATION_PATTERNS:
        for m in pattern.finditer(text):
            name = clean_item_name(m.group(1))
            if len(name) < 2:
                continue
            qty = float(m.group(2))
            unit_price = float(m.group(3))
            if qty > 0 and unit_price > 0:
                items.append(
                    LineItem(
                        name=name,
                        qty=qty,
                        unit_price=unit_price,
                        total=round(qty * unit_price, 2),
                        metadata={"parse_method": "multiplication"},
                    )
                )
    return items


def _assign_numbers(numbers: List[float]):
    """Map a line's numbers onto (qty, unit_price, total)."""
    if len(numbers) >= 3:
        return numbers[0], numbers[1], numbers[2]
    if len(numbers) == 2:
        first, second = numbers
        # the smaller number is read as a quantity when it is plausibly one
        if first <= LINE_QTY_CEILING and second > first:
            return first, second / first, second
        return second / first, first, second
    return 1.0, numbers[0], numbers[0]


def _parse_lines(text: str) -> List[LineItem]:
    items = []
    for line in text.splitlines():
        line = line.strip()
        if not line or LINE_SKIP_PATTERN.match(line):
            continue
        if "@" in line or "＠" in line:
            continue

        numbers = _positive_numbers(line)
        if not numbers:
            continue
        name = clean_item_name(NUMBER_TOKEN_PATTERN.sub("", line))
        if len(name) < 2:
            continue

        if len(numbers) == 1:
            # a lone amount cannot be cross-checked
            continue
        qty, unit_price, total = _assign_numbers(numbers)
        if total <= 0 or abs(qty * unit_price - total) / total >= LINE_CONSISTENCY_RATIO:
            continue

        items.append(
            LineItem(
                name=name,
                qty=round(qty, 4),
                unit_price=round(unit_price, 4),
                total=round(total, 2),
                metadata={"parse_method": "line"},
            )
        )
    return items


def _parse_list(text: str) -> List[LineItem]:
    items = []
    for m in LIST_ITEM_PATTERN.finditer(text):
        name = clean_item_name(m.group(1))
        total = parse_money(m.group(2))
        if len(name) >= 2 and total > 0:
            items.append(
                LineItem(
                    name=name,
                    qty=1.0,
                    unit_price=total,
                    total=total,
                    metadata={"parse_method": "list"},
                )
            )
    return items


def _dedupe(items: List[LineItem]) -> List[LineItem]:
    seen = set()
    unique = []
    for item in items:
        key = (item.name.lower(), item.qty, item.total)
        if key not in seen:
            seen.add(key)
            unique.append(item)
    return unique


def extract_items_from_text(text: str) -> List[LineItem]:
    if not text or not text.strip():
        return []
    items = _parse_multiplication(text) + _parse_lines(text) + _parse_list(text)
    items = _dedupe(items)
    logger.debug("%d items from freeform text", len(items))
    return items


def _group_as_item(contents: List[str]) -> Optional[LineItem]:
    text = " ".join(contents)
    numbers = _positive_numbers(text)
    name = clean_item_name(NUMBER_TOKEN_PATTERN.sub("", text))
    if len(name) < 2 or not numbers:
        return None

    qty, unit_price, total = _assign_numbers(numbers)
    return LineItem(
        name=name,
        qty=round(qty, 4),
        unit_price=round(unit_price, 4),
        total=round(total, 2),
        metadata={"parse_method": "block_group"},
    )


def group_blocks_by_position(blocks: List[Block]) -> List[LineItem]:
    """Treat vertically adjacent text blocks as one printed row each."""
    ordered = sorted(blocks, key=lambda b: b.top)
    groups: List[List[str]] = []
    prev_y = None
    for block in ordered:
        y = block.top
        if prev_y is not None and abs(y - prev_y) < BLOCK_ROW_THRESHOLD and groups:
            groups[-1].append(block.content)
        else:
            groups.append([block.content])
        prev_y = y

    items = []
    for group in groups:
        item = _group_as_item(group)
        if item is not None:
            items.append(item)
    return items
