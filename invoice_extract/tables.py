# invoice_extract/tables.py
"""Decode HTML and Markdown tables into TableGrids and line items.

HTML is parsed with the standard library's HTMLParser; merged cells are
flattened so that every logical column of a row holds a value:
``colspan`` repeats the cell text across the spanned columns and
``rowspan`` carries it down into the following rows.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from html.parser import HTMLParser
from typing import Dict, List, Optional

from .config_labels import (
    MIN_TABLE_SCORE,
    NUMERIC_CELL_PATTERN,
    SUMMARY_ROW_PATTERN,
    TABLE_KEYWORD_WEIGHTS,
    TABLE_KEYWORDS,
)
from .field_mapping import extract_currency, map_header_row
from .lang_utils import parse_money
from .models import HeaderFieldMap, LineItem, TableGrid

logger = logging.getLogger(__name__)

_MD_SEPARATOR = re.compile(r"^\s*\|?\s*:?-+:?\s*(?:\|\s*:?-+:?\s*)*\|?\s*$")
_CELL_NOISE = re.compile(r"^[\|\-\+]+$")


def clean_cell_text(text: Optional[str]) -> str:
    if text is None:
        return ""
    text = re.sub(r"\s+", " ", text).strip()
    return _CELL_NOISE.sub("", text)


# ---------------------------------------------------------
# HTML
# ---------------------------------------------------------
@dataclass
class _Cell:
    parts: List[str] = field(default_factory=list)
    colspan: int = 1
    rowspan: int = 1
    is_header: bool = False

    @property
    def text(self) -> str:
        return clean_cell_text("".join(self.parts))


@dataclass
class _TableFrame:
    rows: List[List[_Cell]] = field(default_factory=list)
    row: Optional[List[_Cell]] = None
    cell: Optional[_Cell] = None

    def close_cell(self) -> None:
        if self.cell is not None:
            if self.row is None:
                self.row = []
            self.row.append(self.cell)
            self.cell = None

    def close_row(self) -> None:
        self.close_cell()
        if self.row:
            self.rows.append(self.row)
        self.row = None


def _span(value: Optional[str]) -> int:
    try:
        return max(1, int(value or 1))
    except (TypeError, ValueError):
        return 1


class _TableCollector(HTMLParser):
    """Collects every <table> (nested ones included) in opening order."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.tables: List[_TableFrame] = []
        self._stack: List[_TableFrame] = []

    def handle_starttag(self, tag, attrs):
        tag = tag.lower()
        if tag == "table":
            frame = _TableFrame()
            self._stack.append(frame)
            self.tables.append(frame)
            return
        if not self._stack:
            return
        frame = self._stack[-1]
        if tag == "tr":
            frame.close_row()
            frame.row = []
        elif tag in ("td", "th"):
            frame.close_cell()
            attributes = dict(attrs)
            frame.cell = _Cell(
                colspan=_span(attributes.get("colspan")),
                rowspan=_span(attributes.get("rowspan")),
                is_header=tag == "th",
            )
        elif tag == "br" and frame.cell is not None:
            frame.cell.parts.append(" ")

    def handle_endtag(self, tag):
        tag = tag.lower()
        if not self._stack:
            return
        frame = self._stack[-1]
        if tag in ("td", "th"):
            frame.close_cell()
        elif tag == "tr":
            frame.close_row()
        elif tag == "table":
            frame.close_row()
            self._stack.pop()

    def handle_data(self, data):
        if self._stack and self._stack[-1].cell is not None:
            self._stack[-1].cell.parts.append(data)

    def close(self):
        super().close()
        while self._stack:
            self._stack.pop().close_row()


def _flatten_spans(rows: List[List[_Cell]]) -> List[List[str]]:
    grid: List[List[str]] = []
    active: Dict[int, List] = {}  # column -> [text, rows remaining]

    for cells in rows:
        placed: Dict[int, str] = {}
        for col, span in list(active.items()):
            placed[col] = span[0]
            span[1] -= 1
            if span[1] <= 0:
                del active[col]

        col = 0
        for cell in cells:
            while col in placed:
                col += 1
            text = cell.text
            for offset in range(cell.colspan):
                target = col + offset
                if target in placed:
                    continue
                placed[target] = text
                if cell.rowspan > 1:
                    active[target] = [text, cell.rowspan - 1]
            col += cell.colspan

        width = max(placed) + 1 if placed else 0
        grid.append([placed.get(i, "") for i in range(width)])

    return grid


def _grid_or_none(rows: List[List[str]]) -> Optional[TableGrid]:
    if not any(any(cell for cell in row) for row in rows):
        return None
    return TableGrid(rows=rows)


def extract_html_tables(html: str) -> List[TableGrid]:
    if not html or not html.strip():
        return []
    collector = _TableCollector()
    collector.feed(html)
    collector.close()

    grids = []
    for frame in collector.tables:
        grid = _grid_or_none(_flatten_spans(frame.rows))
        if grid is not None:
            grids.append(grid)
    return grids


def parse_html_table(html: str) -> Optional[TableGrid]:
    """Decode the first <table> in html; None without a usable table."""
    if not html or "<table" not in html.lower():
        return None
    collector = _TableCollector()
    collector.feed(html)
    collector.close()
    if not collector.tables:
        return None
    return _grid_or_none(_flatten_spans(collector.tables[0].rows))


# ---------------------------------------------------------
# Markdown
# ---------------------------------------------------------
def _split_pipe_row(line: str) -> List[str]:
    stripped = line.strip()
    cells = [clean_cell_text(part) for part in stripped.split("|")]
    if stripped.startswith("|") and cells and cells[0] == "":
        cells.pop(0)
    if stripped.endswith("|") and cells and cells[-1] == "":
        cells.pop()
    return cells


def _is_separator(line: str) -> bool:
    return "|" in line and bool(_MD_SEPARATOR.match(line))


def _markdown_table_rows(text: str) -> List[List[List[str]]]:
    lines = (text or "").splitlines()
    tables: List[List[List[str]]] = []
    i = 0
    while i < len(lines) - 1:
        line = lines[i]
        if "|" in line and not _is_separator(line) and _is_separator(lines[i + 1]):
            rows = [_split_pipe_row(line)]
            j = i + 2
            while j < len(lines) and "|" in lines[j] and lines[j].strip():
                if not _is_separator(lines[j]):
                    rows.append(_split_pipe_row(lines[j]))
                j += 1
            tables.append([r for r in rows if r])
            i = j
        else:
            i += 1
    return tables


def extract_markdown_tables(text: str) -> List[TableGrid]:
    return [TableGrid(rows=rows) for rows in _markdown_table_rows(text) if len(rows) >= 2]


def parse_markdown_table(text: str) -> Optional[TableGrid]:
    """Decode the first pipe table in text; None if it has fewer than 2 rows."""
    found = _markdown_table_rows(text)
    if not found or len(found[0]) < 2:
        return None
    return TableGrid(rows=found[0])


# ---------------------------------------------------------
# Scoring and item extraction
# ---------------------------------------------------------
def score_as_item_table(grid: Optional[TableGrid]) -> float:
    """Rate how much a grid looks like an invoice line-item table (0..1)."""
    if grid is None or grid.row_count < 2:
        return 0.0

    header_text = " ".join(grid.header).lower()
    score = 0.0
    for level, keywords in TABLE_KEYWORDS.items():
        weight = TABLE_KEYWORD_WEIGHTS[level]
        for kw in keywords:
            if kw in header_text:
                score += weight

    score += min(0.2, len(grid.data_rows) * 0.02)

    if any(NUMERIC_CELL_PATTERN.match(cell.strip()) for row in grid.data_rows for cell in row):
        score += 0.15

    return min(1.0, score)


def select_best_table(grids: List[TableGrid], min_score: float = MIN_TABLE_SCORE) -> Optional[TableGrid]:
    best = None
    best_score = 0.0
    for grid in grids:
        score = score_as_item_table(grid)
        if score > best_score:
            best, best_score = grid, score
    logger.debug("best table score %.2f over %d candidates", best_score, len(grids))
    return best if best_score >= min_score else None


def _is_summary(value: str) -> bool:
    return bool(value) and bool(SUMMARY_ROW_PATTERN.match(value))


def _item_from_row(row: List[str], header_map: HeaderFieldMap) -> Optional[LineItem]:
    def get(field: str) -> str:
        idx = header_map.get(field)
        if idx is None or idx >= len(row):
            return ""
        return str(row[idx]).strip()

    code = get("code")
    name = get("name")
    color = get("color")
    size = get("size")

    if _is_summary(code) or _is_summary(name):
        return None
    if not name and not code:
        return None

    qty = parse_money(get("qty"))
    unit_price = parse_money(get("unit_price"))
    total = parse_money(get("total"))

    if qty <= 0 and unit_price > 0 and total > 0:
        qty = total / unit_price
        if abs(qty - round(qty)) < 0.01:
            qty = float(round(qty))
    if qty <= 0:
        qty = 1.0
    if unit_price <= 0 and total > 0:
        unit_price = total / qty
    if total <= 0 and unit_price > 0:
        total = qty * unit_price

    metadata = {"color": color, "size": size, "remark": get("remark")}
    currency = extract_currency(get("total") or get("unit_price"))["currency"]
    if currency:
        metadata["currency"] = currency

    full_name = name
    if color:
        full_name += f" - {color}"
    if size:
        full_name += f" [{size}]"

    return LineItem(
        code=code,
        name=full_name.strip(),
        qty=round(qty, 4),
        unit=get("unit"),
        unit_price=round(unit_price, 4),
        total=round(total, 2),
        metadata=metadata,
    )


def extract_items(grid: TableGrid, header_map: Optional[HeaderFieldMap] = None) -> List[LineItem]:
    if grid is None or grid.row_count < 2:
        return []
    if not header_map:
        header_map = map_header_row(grid.header, grid.data_rows)
    logger.debug("header map %s", header_map)

    items = []
    for row in grid.data_rows:
        item = _item_from_row(row, header_map)
        if item is not None:
            items.append(item)
    return items
