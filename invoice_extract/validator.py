# invoice_extract/validator.py
"""Validate and repair extracted invoices.

Every invoice goes through six passes: structure, OCR glyph repair, value
completion, normalization, range checks and the declared-total check. The
first four may change the record and log a fix; the last two only report.
Running the validator over its own output yields the same invoice and no
new fixes.

Messages have the form ``"<code>: <detail>"``; batch summaries count errors
by code.
"""
from __future__ import annotations

import hashlib
import logging
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import ValidatorConfig
from .lang_utils import (
    clean_string,
    fix_code_ocr,
    fix_numeric_ocr,
    fix_ocr_digits,
    normalize_amount,
    normalize_date,
)
from .models import (
    BatchValidation,
    BatchValidationSummary,
    Invoice,
    LineItem,
    ValidationResult,
)

logger = logging.getLogger(__name__)

NUMERIC_ITEM_FIELDS = ("qty", "unit_price", "total")
_PLAIN_NUMBER_RE = re.compile(r"^-?\d+(?:\.\d+)?$")

_INVOICE_DEFAULTS: Dict[str, Any] = {
    "source_file": "unknown",
    "supplier_name": "",
    "customer_name": "",
    "invoice_date": None,
    "invoice_number": None,
    "declared_total": None,
    "calc_total": 0.0,
    "currency": None,
    "metadata": {},
}

_ITEM_DEFAULTS: Dict[str, Any] = {
    "code": "",
    "name": "",
    "description": "",
    "qty": 0.0,
    "unit": "",
    "unit_price": 0.0,
    "total": 0.0,
    "metadata": {},
}


def error_code(message: str) -> str:
    return message.split(":", 1)[0].strip()


def generate_item_code(name: str) -> str:
    """Short upper-case code derived from an item name.

    The result is stable under ``fix_code_ocr``: a code made only of
    digit-like glyphs gets an ``ITEM`` prefix.
    """
    compact = re.sub(r"[\W_]", "", name or "")[:10].upper()
    if compact:
        return compact if fix_code_ocr(compact) == compact else f"ITEM{compact}"
    digest = hashlib.sha1((name or "").encode("utf-8")).hexdigest()[:6].upper()
    return f"ITEM{digest}"


def _calc_total(items: List[dict]) -> float:
    return round(sum(float(i["total"]) for i in items), 2)


class _Findings:
    def __init__(self) -> None:
        self.errors: List[str] = []
        self.warnings: List[str] = []
        self.fixes: List[str] = []


class InvoiceValidator:
    def __init__(self, config: Optional[ValidatorConfig] = None):
        self.config = config or ValidatorConfig()

    # ------------------------------------------------------------------
    def validate(self, invoice: Union[Invoice, dict]) -> ValidationResult:
        found = _Findings()
        if isinstance(invoice, Invoice):
            data = invoice.model_dump()
        else:
            data = dict(invoice)

        data = self._check_structure(data, found)
        data = self._fix_ocr(data, found)
        data = self._complete_values(data, found)
        data = self._normalize(data, found)
        self._check_ranges(data, found)
        self._check_totals(data, found)

        result = ValidationResult(
            invoice=Invoice.model_validate(data),
            valid=not found.errors,
            errors=found.errors,
            warnings=found.warnings,
            fixes=found.fixes,
        )
        logger.debug(
            "%s: %d error(s), %d warning(s), %d fix(es)",
            result.invoice.source_file,
            len(found.errors),
            len(found.warnings),
            len(found.fixes),
        )
        return result

    def validate_batch(self, invoices: Iterable[Union[Invoice, dict]]) -> BatchValidation:
        results = [self.validate(inv) for inv in invoices]
        return BatchValidation(
            invoices=[r.invoice for r in results],
            results=results,
            summary=summarize(results),
        )

    # -- 1. structure ----------------------------------------------------
    def _check_structure(self, data: dict, found: _Findings) -> dict:
        raw_items = data.get("items")
        if not isinstance(raw_items, list):
            found.errors.append("structure: items missing or not a list")
            raw_items = []

        for key, default in _INVOICE_DEFAULTS.items():
            if data.get(key) is None:
                data[key] = dict(default) if isinstance(default, dict) else default

        for key in ("source_file", "supplier_name", "customer_name"):
            data[key] = str(data[key])
        if data["invoice_number"] is not None:
            data["invoice_number"] = str(data["invoice_number"]).strip() or None
        if data["currency"] is not None:
            data["currency"] = str(data["currency"]).strip().upper() or None

        items = []
        for idx, raw in enumerate(raw_items):
            if isinstance(raw, LineItem):
                raw = raw.model_dump()
            if not isinstance(raw, dict):
                found.errors.append(f"structure: item {idx} is not an object")
                continue
            item = dict(_ITEM_DEFAULTS)
            item.update({k: v for k, v in raw.items() if v is not None})
            item["metadata"] = dict(item.get("metadata") or {})
            items.append(item)
        data["items"] = items
        return data

    # -- 2. OCR repair ---------------------------------------------------
    def _fix_ocr(self, data: dict, found: _Findings) -> dict:
        for key in ("supplier_name", "customer_name"):
            original = data[key]
            fixed = fix_ocr_digits(clean_string(original))
            if fixed != original:
                found.fixes.append(f"ocr_fix: {key} '{original}' -> '{fixed}'")
                data[key] = fixed

        for idx, item in enumerate(data["items"]):
            name = str(item["name"])
            fixed = fix_ocr_digits(name)
            if fixed != name:
                found.fixes.append(f"ocr_fix: item {idx} name '{name}' -> '{fixed}'")
            item["name"] = fixed

            code = str(item["code"])
            if code:
                fixed = fix_code_ocr(code)
                if fixed != code:
                    found.fixes.append(f"ocr_fix: item {idx} code '{code}' -> '{fixed}'")
                item["code"] = fixed

            for field in NUMERIC_ITEM_FIELDS:
                value = item[field]
                if isinstance(value, str):
                    number = fix_numeric_ocr(value)
                    if not _PLAIN_NUMBER_RE.match(value.strip()):
                        found.fixes.append(f"ocr_fix: item {idx} {field} '{value}' -> {number}")
                    item[field] = number
                elif isinstance(value, (int, float)):
                    item[field] = float(value)
                else:
                    item[field] = 0.0
        return data

    # -- 3. completion ---------------------------------------------------
    def _complete_values(self, data: dict, found: _Findings) -> dict:
        # 0 means "not extracted"; negatives are left for the range check
        for idx, item in enumerate(data["items"]):
            qty, unit_price, total = item["qty"], item["unit_price"], item["total"]

            if qty == 0 and unit_price > 0 and total > 0:
                qty = total / unit_price
                qty = float(round(qty)) if abs(qty - round(qty)) < 0.01 else round(qty, 4)
                found.fixes.append(f"calculated: item {idx} qty = {qty}")
            elif qty == 0 and unit_price == 0 and total > 0:
                qty, unit_price = 1.0, total
                found.fixes.append(f"calculated: item {idx} qty = 1, unit_price = {total}")
            elif qty == 0:
                qty = 1.0
                found.fixes.append(f"calculated: item {idx} qty defaulted to 1")

            if unit_price == 0 and qty > 0 and total > 0:
                unit_price = round(total / qty, 4)
                found.fixes.append(f"calculated: item {idx} unit_price = {unit_price}")

            if total == 0 and qty > 0 and unit_price > 0:
                total = round(qty * unit_price, 2)
                found.fixes.append(f"calculated: item {idx} total = {total}")

            item["qty"], item["unit_price"], item["total"] = qty, unit_price, total

        data["calc_total"] = _calc_total(data["items"])
        return data

    # -- 4. normalization ------------------------------------------------
    def _normalize(self, data: dict, found: _Findings) -> dict:
        raw_date = data["invoice_date"]
        if raw_date:
            iso = normalize_date(raw_date)
            if iso is None:
                found.warnings.append(f"date_unparseable: {raw_date}")
            elif iso != raw_date:
                found.fixes.append(f"normalized: invoice_date '{raw_date}' -> {iso}")
            data["invoice_date"] = iso
        else:
            data["invoice_date"] = None

        if data["declared_total"] is not None:
            amount = normalize_amount(data["declared_total"])
            if amount is None:
                found.warnings.append(f"amount_unparseable: declared_total '{data['declared_total']}'")
            data["declared_total"] = amount

        kept = []
        for idx, item in enumerate(data["items"]):
            for key in ("code", "name", "description", "unit"):
                item[key] = clean_string(item[key])
            item["qty"] = round(item["qty"], 4)
            item["unit_price"] = round(item["unit_price"], 4)
            item["total"] = round(item["total"], 2)

            if not item["name"] and item["code"]:
                item["name"] = item["code"]
                found.fixes.append(f"normalized: item {idx} name taken from code")
            if not item["code"] and item["name"]:
                item["code"] = generate_item_code(item["name"])
                found.fixes.append(f"normalized: item {idx} code generated as {item['code']}")

            if not item["name"] and not item["code"]:
                found.fixes.append(f"dropped: item {idx} has no name or code")
                continue
            kept.append(item)

        data["items"] = kept
        data["calc_total"] = _calc_total(kept)
        return data

    # -- 5. ranges -------------------------------------------------------
    def _check_ranges(self, data: dict, found: _Findings) -> None:
        cfg = self.config
        for idx, item in enumerate(data["items"]):
            name_len = len(item["name"])
            if name_len < cfg.min_item_name_length:
                found.warnings.append(f"name_too_short: item {idx} ({name_len} chars)")
            if name_len > cfg.max_item_name_length:
                found.warnings.append(f"name_too_long: item {idx} ({name_len} chars)")

            for field, ceiling in (
                ("qty", cfg.max_qty),
                ("unit_price", cfg.max_unit_price),
                ("total", cfg.max_total),
            ):
                value = item[field]
                if value > ceiling:
                    found.warnings.append(f"value_too_high: item {idx} {field} {value}")
                if value < 0:
                    found.errors.append(f"negative_value: item {idx} {field} {value}")

            expected = item["qty"] * item["unit_price"]
            allowed = max(0.01, abs(item["total"]) * cfg.tolerance_percent / 100)
            if abs(expected - item["total"]) > allowed:
                found.warnings.append(
                    f"item_total_mismatch: item {idx} qty*unit_price={round(expected, 4)} total={item['total']}"
                )

    # -- 6. totals -------------------------------------------------------
    def _check_totals(self, data: dict, found: _Findings) -> None:
        cfg = self.config
        calc = data["calc_total"]
        declared = data["declared_total"]

        if not data["items"]:
            found.warnings.append("no_items: invoice has no line items")
        elif calc <= 0:
            found.errors.append(f"calc_total_nonpositive: {calc}")

        if declared is None:
            found.warnings.append("missing_declared_total: no declared total found")
            return

        diff = abs(declared - calc)
        if declared:
            rel = diff / abs(declared)
        else:
            rel = float("inf") if diff else 0.0
        if diff > cfg.total_abs_tolerance and rel > cfg.total_rel_tolerance:
            found.warnings.append(
                f"total_mismatch: declared={declared} calculated={calc} diff={round(diff, 2)}"
            )


def summarize(results: List[ValidationResult]) -> BatchValidationSummary:
    error_counter: Counter = Counter()
    for r in results:
        for e in r.errors:
            error_counter[error_code(e)] += 1

    total = len(results)
    invalid = sum(1 for r in results if not r.valid)
    return BatchValidationSummary(
        total_invoices=total,
        valid_invoices=total - invalid,
        invalid_invoices=invalid,
        fixed_invoices=sum(1 for r in results if r.fixes),
        error_counts=dict(error_counter),
    )


def validate_invoices(
    invoices: List[Union[Invoice, dict]],
    config: Optional[ValidatorConfig] = None,
) -> Tuple[List[ValidationResult], BatchValidationSummary]:
    batch = InvoiceValidator(config).validate_batch(invoices)
    return batch.results, batch.summary
