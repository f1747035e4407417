# invoice_extract/lang_utils.py
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Optional

import dateparser
from langdetect import DetectorFactory, detect

from .config_labels import CURRENCY_SYMBOLS, OCR_DIGIT_FIXES, OCR_PUNCT_FIXES

# langdetect is randomized unless seeded
DetectorFactory.seed = 0

SIGNED_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
THOUSANDS_RE = re.compile(r"^\d{1,3}(?:,\d{3})+(?:\.\d+)?$")

_CURRENCY_WORDS_RE = re.compile(r"(hk\$|us\$|rmb|cny|hkd|usd|eur|gbp)", re.I)
_OCR_SANDWICH_RE = re.compile(r"(?<=\d)[OolI](?=\d)")
_CODE_GLYPHS_RE = re.compile(r"^[0-9OoIlZSB]+$")

_ISO_DATE_RE = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})$")
_CJK_DATE_RE = re.compile(r"^(\d{4})\s*年\s*(\d{1,2})\s*月\s*(\d{1,2})\s*日?$")
_TRAILING_YEAR_RE = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})$")
_FOUR_DIGIT_YEAR_RE = re.compile(r"(?<!\d)\d{4}(?!\d)")


def detect_language(text: str) -> str:
    try:
        return detect(text)
    except Exception:
        return "unknown"


def _strip_money_noise(raw: str) -> str:
    s = _CURRENCY_WORDS_RE.sub("", raw)
    for symbol in CURRENCY_SYMBOLS:
        s = s.replace(symbol, "")
    for wrong, right in OCR_PUNCT_FIXES.items():
        s = s.replace(wrong, right)
    return re.sub(r"\s+", "", s)


def _unify_separators(s: str) -> str:
    """Rewrite a number so that '.' is the only decimal separator."""
    if "," in s and "." in s:
        if s.rfind(",") > s.rfind("."):
            # 1.234,50
            return s.replace(".", "").replace(",", ".")
        return s.replace(",", "")
    if "," in s:
        m = re.search(r"\d[\d,]*", s)
        token = m.group(0) if m else ""
        if THOUSANDS_RE.match(token):
            return s.replace(",", "")
        if re.fullmatch(r"\d+,\d{1,2}", token):
            return s.replace(",", ".")
        return s.replace(",", "")
    return s


def parse_money(raw) -> float:
    """Parse a money or quantity string; 0.0 when there is no number."""
    if raw is None:
        return 0.0
    if isinstance(raw, (int, float)):
        return float(raw)
    s = _unify_separators(_strip_money_noise(str(raw)))
    m = SIGNED_NUMBER_RE.search(s)
    if not m:
        return 0.0
    try:
        return float(m.group(0))
    except ValueError:
        return 0.0


def normalize_amount(raw) -> Optional[float]:
    """Like parse_money, but None when no number is present."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, (int, float)):
        return round(float(raw), 2)
    s = _unify_separators(_strip_money_noise(str(raw)))
    if not SIGNED_NUMBER_RE.search(s):
        return None
    return round(parse_money(s), 2)


def fix_ocr_digits(text: str) -> str:
    """Replace O/o/l/I with digits, only where sandwiched between digits."""
    if not text:
        return text
    previous = None
    while previous != text:
        previous = text
        text = _OCR_SANDWICH_RE.sub(lambda m: "0" if m.group(0) in "Oo" else "1", text)
    return text


def fix_code_ocr(code: str) -> str:
    code = (code or "").strip()
    if _CODE_GLYPHS_RE.match(code) and re.search(r"\d", code):
        for wrong, right in OCR_DIGIT_FIXES.items():
            code = code.replace(wrong, right)
    return code.upper()


def fix_numeric_ocr(value) -> float:
    if isinstance(value, (int, float)):
        return float(value)
    s = str(value or "")
    for wrong, right in OCR_PUNCT_FIXES.items():
        s = s.replace(wrong, right)
    s = s.replace(" ", "").replace(",", "")
    for wrong, right in OCR_DIGIT_FIXES.items():
        s = s.replace(wrong, right)
    m = SIGNED_NUMBER_RE.search(s)
    return float(m.group(0)) if m else 0.0


def _iso(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def normalize_date(raw) -> Optional[str]:
    """Return an ISO date string, or None when raw is not a recognizable date."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = str(raw).strip()

    m = _ISO_DATE_RE.match(text)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _CJK_DATE_RE.match(text)
    if m:
        return _iso(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _TRAILING_YEAR_RE.match(text)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if first > 12:
            return _iso(year, second, first)
        return _iso(year, first, second)

    # Month-name forms ("9 March 2025"); two-digit years are never guessed.
    if not _FOUR_DIGIT_YEAR_RE.search(text) or not re.search(r"[A-Za-z]{3,}", text):
        return None
    try:
        dt = dateparser.parse(
            text,
            settings={
                "DATE_ORDER": "DMY",
                "STRICT_PARSING": True,
                "REQUIRE_PARTS": ["day", "month", "year"],
            },
        )
    except Exception:
        return None
    if not dt:
        return None
    return dt.date().isoformat()


def clean_string(value) -> str:
    """Collapse whitespace runs and trim; None becomes ''."""
    if value is None:
        return ""
    return re.sub(r"\s+", " ", str(value)).strip()
