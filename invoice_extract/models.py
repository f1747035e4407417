# invoice_extract/models.py
from __future__ import annotations

from pathlib import PurePath
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# canonical field -> column index
HeaderFieldMap = Dict[str, int]


class RawFile(BaseModel):
    """One input unit: pre-loaded content, or a path read lazily."""

    name: str
    path: Optional[str] = None
    extension: str = ""
    content: Any = None

    @model_validator(mode="after")
    def _derive_extension(self) -> "RawFile":
        if not self.extension:
            self.extension = PurePath(self.name).suffix.lstrip(".").lower()
        else:
            self.extension = self.extension.lstrip(".").lower()
        return self

    @property
    def stem(self) -> str:
        return PurePath(self.name).stem


class Block(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    label: str = Field(default="", alias="block_label")
    content: str = Field(default="", alias="block_content")
    bbox: Optional[List[float]] = Field(default=None, alias="block_bbox")

    @field_validator("label", "content", mode="before")
    @classmethod
    def _as_text(cls, v):
        return "" if v is None else str(v)

    @field_validator("bbox", mode="before")
    @classmethod
    def _check_bbox(cls, v):
        if not isinstance(v, (list, tuple)) or len(v) < 4:
            return None
        try:
            return [float(x) for x in v[:4]]
        except (TypeError, ValueError):
            return None

    @property
    def is_table(self) -> bool:
        return "table" in self.label.lower()

    @property
    def top(self) -> float:
        return self.bbox[1] if self.bbox else 0.0


class TableGrid(BaseModel):
    rows: List[List[str]] = []

    @field_validator("rows")
    @classmethod
    def _pad_rows(cls, rows: List[List[str]]) -> List[List[str]]:
        width = max((len(r) for r in rows), default=0)
        return [list(r) + [""] * (width - len(r)) for r in rows]

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def max_columns(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    @property
    def header(self) -> List[str]:
        return self.rows[0] if self.rows else []

    @property
    def data_rows(self) -> List[List[str]]:
        return self.rows[1:]


class LineItem(BaseModel):
    code: str = ""
    name: str = ""
    description: str = ""
    qty: float = 1.0
    unit: str = ""
    unit_price: float = 0.0
    total: float = 0.0
    metadata: Dict[str, Any] = {}


class Invoice(BaseModel):
    source_file: str = "unknown"
    format_detected: Optional[str] = None

    supplier_name: str = ""
    customer_name: str = ""

    invoice_date: Optional[str] = None  # ISO date string
    invoice_number: Optional[str] = None

    declared_total: Optional[float] = None
    calc_total: float = 0.0
    currency: Optional[str] = None

    items: List[LineItem] = []
    metadata: Dict[str, Any] = {}

    def recalculate(self) -> "Invoice":
        self.calc_total = round(sum(item.total for item in self.items), 2)
        return self


class ValidationResult(BaseModel):
    invoice: Invoice
    valid: bool
    errors: List[str] = []
    warnings: List[str] = []
    fixes: List[str] = []


class BatchValidationSummary(BaseModel):
    total_invoices: int
    valid_invoices: int
    invalid_invoices: int
    fixed_invoices: int = 0
    error_counts: dict = {}


class BatchValidation(BaseModel):
    invoices: List[Invoice]
    results: List[ValidationResult]
    summary: BatchValidationSummary


class DetectorInfo(BaseModel):
    id: str
    name: str
    supported_extensions: List[str]
    enabled: bool = True


class DetectorScore(BaseModel):
    name: str
    confidence: float
    note: Optional[str] = None


class DetectionReport(BaseModel):
    detector_id: Optional[str] = None
    confidence: float = 0.0
    scores: Dict[str, DetectorScore] = {}


class ParseResult(BaseModel):
    invoices: List[Invoice]
    detector_used: str
    detector_name: str
    confidence: float
    validation: Optional[List[ValidationResult]] = None
    scores: Dict[str, DetectorScore] = {}
    fallback_errors: Dict[str, str] = {}


class BatchItemResult(BaseModel):
    source: str
    ok: bool
    result: Optional[ParseResult] = None
    error: Optional[str] = None
