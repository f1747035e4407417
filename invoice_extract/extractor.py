# invoice_extract/extractor.py
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .config_labels import FILE_SUFFIX_PATTERN, MIN_TABLE_SCORE
from .lang_utils import clean_string, detect_language, normalize_amount, normalize_date
from .models import Block, Invoice, LineItem, RawFile, TableGrid
from . import tables, text_blocks

logger = logging.getLogger(__name__)

JSON_ROOT_KEYS = ("result", "data", "res")


# ---------------------------------------------------------
# File helpers
# ---------------------------------------------------------
def read_text_file(raw: RawFile) -> Optional[str]:
    if isinstance(raw.content, str):
        return raw.content
    if isinstance(raw.content, bytes):
        return raw.content.decode("utf-8", errors="replace")
    if raw.path:
        path = Path(raw.path)
        if path.is_file():
            return path.read_text(encoding="utf-8", errors="replace")
        logger.warning("file not found: %s", raw.path)
    return None


def read_json_file(raw: RawFile) -> Optional[dict]:
    """Return the decoded JSON object of a file, or None if it has none."""
    if isinstance(raw.content, dict):
        return raw.content
    text = read_text_file(raw)
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("skipping %s: invalid JSON (%s)", raw.name, e)
        return None
    return data if isinstance(data, dict) else None


def normalize_root(data: dict) -> dict:
    """Unwrap result/data/res envelopes around a block-list document."""
    if "parsing_res_list" in data:
        return data
    for key in JSON_ROOT_KEYS:
        inner = data.get(key)
        if isinstance(inner, dict):
            return inner
    return data


def collect_blocks(root: dict) -> List[Block]:
    raw_blocks = root.get("parsing_res_list")
    if not isinstance(raw_blocks, list):
        return []
    return [Block.model_validate(b) for b in raw_blocks if isinstance(b, dict)]


def base_name(raw: RawFile) -> str:
    return FILE_SUFFIX_PATTERN.sub("", raw.stem)


def group_files_by_base_name(files: Iterable[RawFile]) -> Dict[str, Dict[str, RawFile]]:
    """Group e.g. inv_01_res.json and inv_01.md under 'inv_01', keyed by extension."""
    groups: Dict[str, Dict[str, RawFile]] = {}
    for raw in files:
        groups.setdefault(base_name(raw), {})[raw.extension] = raw
    return groups


def filter_by_extensions(files: Iterable[RawFile], extensions: Iterable[str]) -> List[RawFile]:
    allowed = {e.lower().lstrip(".") for e in extensions}
    return [f for f in files if f.extension in allowed]


def load_raw_files(paths: Iterable[Union[str, Path]]) -> List[RawFile]:
    """RawFiles for paths on disk; content is read lazily by the detectors."""
    return [RawFile(name=Path(p).name, path=str(p)) for p in paths]


# ---------------------------------------------------------
# Normalization
# ---------------------------------------------------------
def normalize_item(item: Union[dict, LineItem]) -> LineItem:
    if isinstance(item, LineItem):
        item = item.model_dump()

    qty = normalize_amount(item.get("qty")) or 0.0
    unit_price = normalize_amount(item.get("unit_price")) or 0.0
    total = normalize_amount(item.get("total")) or 0.0

    if qty <= 0 and unit_price > 0 and total > 0:
        qty = total / unit_price
        if abs(qty - round(qty)) < 0.01:
            qty = float(round(qty))
    if qty <= 0:
        qty = 1.0

    if total <= 0 and unit_price > 0:
        total = qty * unit_price
    if unit_price <= 0 and total > 0:
        unit_price = total / qty

    return LineItem(
        code=clean_string(item.get("code")),
        name=clean_string(item.get("name")),
        description=clean_string(item.get("description")),
        qty=round(qty, 4),
        unit=clean_string(item.get("unit")),
        unit_price=round(unit_price, 4),
        total=round(total, 2),
        metadata=dict(item.get("metadata") or {}),
    )


def normalize_invoice(data: Union[dict, Invoice], detector_id: str, text: Optional[str] = None) -> Invoice:
    """Coerce a detector's raw record into an Invoice tagged with its detector."""
    if isinstance(data, Invoice):
        data = data.model_dump()

    metadata = dict(data.get("metadata") or {})
    if text and text.strip() and "language" not in metadata:
        metadata["language"] = detect_language(text)

    invoice = Invoice(
        source_file=data.get("source_file") or "unknown",
        format_detected=detector_id,
        supplier_name=clean_string(data.get("supplier_name")),
        customer_name=clean_string(data.get("customer_name")),
        invoice_date=normalize_date(data.get("invoice_date")),
        invoice_number=data.get("invoice_number") or None,
        declared_total=normalize_amount(data.get("declared_total")),
        currency=data.get("currency") or None,
        items=[normalize_item(i) for i in data.get("items") or []],
        metadata=metadata,
    )
    return invoice.recalculate()


def export_invoices_to_json(invoices: List[Invoice], output_path: str) -> None:
    data = [inv.model_dump() for inv in invoices]
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(data, indent=2, ensure_ascii=False, default=str), encoding="utf-8")


# ---------------------------------------------------------
# Shared toolkit
# ---------------------------------------------------------
class ExtractionToolkit:
    """Table and text extraction shared by every detector."""

    def __init__(self, min_table_score: float = MIN_TABLE_SCORE):
        self.min_table_score = min_table_score

    def best_table(self, grids: List[TableGrid]) -> Optional[TableGrid]:
        return tables.select_best_table(grids, self.min_table_score)

    def items_from_grids(self, grids: List[TableGrid]) -> List[LineItem]:
        grid = self.best_table(grids)
        return tables.extract_items(grid) if grid is not None else []

    def items_from_html(self, html: str) -> List[LineItem]:
        return self.items_from_grids(tables.extract_html_tables(html))

    def items_from_markdown(self, text: str) -> List[LineItem]:
        return self.items_from_grids(tables.extract_markdown_tables(text))

    def items_from_text(self, text: str) -> List[LineItem]:
        return text_blocks.extract_items_from_text(text)

    def items_from_blocks(self, blocks: List[Block]) -> List[LineItem]:
        return text_blocks.group_blocks_by_position(blocks)

    def header(self, text: str) -> Dict[str, object]:
        return text_blocks.extract_header(text)

    def build_invoice(
        self,
        detector_id: str,
        source_file: str,
        header: Dict[str, object],
        items: List[LineItem],
        text: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Invoice:
        data = {
            "source_file": source_file,
            "supplier_name": header.get("supplier_name") or "",
            "customer_name": header.get("customer_name") or "",
            "invoice_date": header.get("invoice_date"),
            "invoice_number": header.get("invoice_number"),
            "declared_total": header.get("total"),
            "currency": header.get("currency"),
            "items": items,
            "metadata": metadata or {},
        }
        return normalize_invoice(data, detector_id, text=text)
