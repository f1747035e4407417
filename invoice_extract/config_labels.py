# invoice_extract/config_labels.py
"""Label patterns and keyword tables used by the extraction heuristics.

Everything here is literal data: the matching engines in field_mapping,
tables and text_blocks stay generic, and new languages or synonyms are added
by extending these tables.
"""
from __future__ import annotations

import re

# ---------------------------------------------------------
# Canonical line-item fields
# ---------------------------------------------------------
CANONICAL_FIELDS = (
    "seq",
    "code",
    "name",
    "color",
    "size",
    "unit",
    "qty",
    "unit_price",
    "total",
    "remark",
    "discount",
)

NUMERIC_FIELDS = ("qty", "unit_price", "total")

# Header synonyms per field, checked in CANONICAL_FIELDS order.
FIELD_PATTERNS = {
    "seq": [
        re.compile(r"^(#|no\.?|序号|序號|項次|项次|行号|行號|s\.?n\.?)$", re.I),
        re.compile(r"^(line|row|idx|index)$", re.I),
    ],
    "code": [
        re.compile(r"^(code|款号|款號|編號|编号|货号|貨號|sku|item\s*#?|product\s*code|art\.?\s*no\.?)$", re.I),
        re.compile(r"^(型号|型號|article|ref|reference|barcode|條碼|条码|品号|品號)$", re.I),
        re.compile(r"^(part\s*no\.?|p/n|material\s*no\.?)$", re.I),
    ],
    "name": [
        re.compile(r"^(name|description|item|產品|产品|名称|名稱|品名|說明|说明|货品|貨品|商品)$", re.I),
        re.compile(r"^(物品|项目|項目|goods|product|material|desc\.?|描述|規格|规格)$", re.I),
        re.compile(r"^(detail|details|particulars|內容|内容)$", re.I),
    ],
    "color": [
        re.compile(r"^(color|colour|颜色|顏色|色|col\.?)$", re.I),
    ],
    "size": [
        re.compile(r"^(size|尺码|尺碼|尺寸|sz\.?)$", re.I),
    ],
    "unit": [
        re.compile(r"^(unit|單位|单位|uom|u/m)$", re.I),
    ],
    "qty": [
        re.compile(r"^(qty|quantity|數量|数量|pcs|件数|件數|數|数)$", re.I),
        re.compile(r"^(order\s*qty|訂購量|订购量|count|no\.?\s*of\s*units?)$", re.I),
        re.compile(r"^(件|個|个|pack|pkt|sets?|boxes?)$", re.I),
    ],
    "unit_price": [
        re.compile(r"^(unit\s*price|price|單價|单价|售價|售价|cost|單|单)$", re.I),
        re.compile(r"^(@|each|per\s*unit|rate|u\.?\s*price|p\.?\s*u\.?)$", re.I),
        re.compile(r"^(price/unit|價格|价格)$", re.I),
    ],
    "total": [
        re.compile(r"^(total|amount|金額|金额|小計|小计|subtotal|line\s*total|amt\.?)$", re.I),
        re.compile(r"^(ext\.?\s*price|extended|sum|總額|总额|合計|合计|value)$", re.I),
    ],
    "remark": [
        re.compile(r"^(remark|remarks|備註|备注|note|notes|memo|comment|附註|附注)$", re.I),
    ],
    "discount": [
        re.compile(r"^(discount|折扣|disc\.?|off|減價|减价)$", re.I),
    ],
}

# Substring fallback when no synonym matched the whole header.
FUZZY_KEYWORDS = {
    "code": ["款", "编", "編", "code", "sku", "art", "ref"],
    "name": ["名", "品", "name", "desc", "item", "product"],
    "qty": ["数", "數", "qty", "quantity", "pcs"],
    "unit_price": ["价", "價", "price", "rate", "cost"],
    "total": ["总", "總", "计", "計", "total", "amount", "sum"],
    "color": ["色", "color", "colour"],
    "size": ["尺", "size", "规", "規"],
}

HEADER_MAX_LENGTH = 50

# ---------------------------------------------------------
# Table scoring
# ---------------------------------------------------------
TABLE_KEYWORDS = {
    "high": ["qty", "quantity", "price", "amount", "total",
             "數量", "数量", "单价", "單價", "金额", "金額", "合计", "合計"],
    "medium": ["item", "product", "description", "code",
               "品名", "名称", "名稱", "货品", "貨品", "款号", "款號"],
    "low": ["unit", "size", "color", "规格", "規格", "颜色", "顏色", "备注", "備註"],
}

TABLE_KEYWORD_WEIGHTS = {"high": 0.15, "medium": 0.08, "low": 0.03}

MIN_TABLE_SCORE = 0.3

NUMERIC_CELL_PATTERN = re.compile(r"^\d+(?:[.,]\d+)?$")

SUMMARY_ROW_PATTERN = re.compile(
    r"^(合[计計]|小[计計]|總[计計]|总计|total|sub\s*total|grand(?:\s*total)?|sum)\s*[:：]?$",
    re.I,
)

# ---------------------------------------------------------
# Invoice header fields (freeform text)
# ---------------------------------------------------------
CURRENCY_SYMBOLS = "$¥￥€£"

AMOUNT_CAPTURE = r"[\$¥￥€£]?\s*(\d[\d,]*\.?\d*)"

HEADER_PATTERNS = {
    "supplier_name": [
        re.compile(r"供[应應]商[：:]\s*([^\n\r]+)"),
        re.compile(r"供[货貨]商[：:]\s*([^\n\r]+)"),
        re.compile(r"\bvendor[:\s]+([^\n\r]+)", re.I),
        re.compile(r"\bsupplier[:\s]+([^\n\r]+)", re.I),
        re.compile(r"\bfrom[:\s]+([^\n\r]+)", re.I),
        re.compile(r"公司[：:]\s*([^\n\r]+)"),
    ],
    "customer_name": [
        re.compile(r"客[户戶][：:]\s*([^\n\r]+)"),
        re.compile(r"買[家方][：:]\s*([^\n\r]+)"),
        re.compile(r"\bcustomer[:\s]+([^\n\r]+)", re.I),
        re.compile(r"\bbill\s*to[:\s]+([^\n\r]+)", re.I),
        re.compile(r"\bsold\s*to[:\s]+([^\n\r]+)", re.I),
        re.compile(r"\bto[:\s]+([^\n\r]+)", re.I),
    ],
    "invoice_date": [
        re.compile(r"日期[：:]\s*(\d{4}[-/.]\d{1,2}[-/.]\d{1,2})"),
        re.compile(r"\bdate[:\s]+(\d{4}[-/.]\d{1,2}[-/.]\d{1,2})", re.I),
        re.compile(r"(\d{4}年\d{1,2}月\d{1,2}日)"),
        re.compile(r"(?<!\d)(\d{4}[-/]\d{1,2}[-/]\d{1,2})(?!\d)"),
        re.compile(r"日期[：:]\s*(\d{1,2}[-/]\d{1,2}[-/]\d{4})"),
        re.compile(r"\bdate[:\s]+(\d{1,2}[-/]\d{1,2}[-/]\d{4})", re.I),
    ],
    "invoice_number": [
        re.compile(r"發票[号號][：:]\s*([A-Za-z0-9\-]+)"),
        re.compile(r"发票[号號][：:]\s*([A-Za-z0-9\-]+)"),
        re.compile(r"\binvoice\s*(?:#|no\.?|number)[:\s]*([A-Za-z0-9\-]+)", re.I),
        re.compile(r"單[号號][：:]\s*([A-Za-z0-9\-]+)"),
        re.compile(r"批次[：:]\s*(\d+)"),
        re.compile(r"\bref(?:erence)?[:\s]+([A-Za-z0-9\-]+)", re.I),
        re.compile(r"\border\s*(?:#|no\.?)[:\s]*([A-Za-z0-9\-]+)", re.I),
    ],
}

# All of these are scanned; the match with the highest offset wins.
TOTAL_PATTERNS = [
    re.compile(r"grand\s*total[:\s]*" + AMOUNT_CAPTURE, re.I),
    re.compile(r"total\s*(?:amount|due)?[:\s]*" + AMOUNT_CAPTURE, re.I),
    re.compile(r"合[计計][：:]\s*" + AMOUNT_CAPTURE),
    re.compile(r"總[数數額额][：:]\s*" + AMOUNT_CAPTURE),
    re.compile(r"总[数额][：:]\s*" + AMOUNT_CAPTURE),
    re.compile(r"本單額[：:]\s*" + AMOUNT_CAPTURE),
    re.compile(r"amount\s*(?:payable|due)[:\s]*" + AMOUNT_CAPTURE, re.I),
]

COMPANY_HINT_PATTERN = re.compile(
    r"(有限公司|co\.?\s*ltd|company|trading|enterprise|inc\.?\b|corp\.?\b)", re.I
)

ENTITY_PREFIX_PATTERN = re.compile(r"^(供[应應]商|vendor|supplier|from)[:：\s]*", re.I)

# Checked in order; "$" alone is only USD when no HK$ was found first.
CURRENCY_PATTERNS = {
    "CNY": re.compile(r"¥|￥|rmb|人民币|人民幣", re.I),
    "HKD": re.compile(r"hk\$|hkd|港币|港幣", re.I),
    "USD": re.compile(r"us\$|usd|美元|美金|\$", re.I),
    "EUR": re.compile(r"€|\beur\b|欧元|歐元", re.I),
    "GBP": re.compile(r"£|gbp|英镑|英鎊", re.I),
}

# Anchored variants for a single money cell ("HK$ 120.00").
CURRENCY_PREFIX_PATTERNS = {
    "CNY": re.compile(r"^(¥|￥|rmb|cny|人民币|人民幣)", re.I),
    "HKD": re.compile(r"^(hk\$|hkd|港币|港幣)", re.I),
    "USD": re.compile(r"^(\$|usd|us\$|美元|美金)", re.I),
    "EUR": re.compile(r"^(€|eur|欧元|歐元)", re.I),
    "GBP": re.compile(r"^(£|gbp|英镑|英鎊)", re.I),
}

# ---------------------------------------------------------
# Freeform item lines
# ---------------------------------------------------------
MULTIPLICATION_PATTERNS = [
    # Widget x2 @100
    re.compile(r"([^\d\n]+?)\s*[x×]\s*(\d+(?:\.\d+)?)\s*[@＠]\s*[\$¥￥]?\s*(\d+(?:\.\d+)?)", re.I),
    # Widget 2pcs @ $100
    re.compile(r"([^\d\n]+?)\s*(\d+(?:\.\d+)?)\s*(?:pcs?|件)?\s*[@＠]\s*[\$¥￥]?\s*(\d+(?:\.\d+)?)", re.I),
]

LINE_SKIP_PATTERN = re.compile(r"^(合[计計]|total|subtotal|grand|小[計计]|#|序号|序號|項次)", re.I)

NUMBER_TOKEN_PATTERN = re.compile(r"\d[\d,]*(?:\.\d+)?")

LIST_ITEM_PATTERN = re.compile(
    r"^[\*\-•\d\.]+\s*(.+?)[\s\-]+[\$¥￥]?\s*(\d[\d,]*\.?\d*)$", re.M
)

LINE_CONSISTENCY_RATIO = 0.1
LINE_QTY_CEILING = 100
BLOCK_ROW_THRESHOLD = 50

# ---------------------------------------------------------
# Detector keyword lists
# ---------------------------------------------------------
MARKDOWN_KEYWORDS = {
    "high": ["total", "amount", "qty", "quantity", "price", "金额", "數量", "单价", "合计"],
    "medium": ["invoice", "發票", "销售单", "收據", "item", "product"],
}

TEXT_INVOICE_KEYWORDS = ["total", "amount", "qty", "price", "金额", "數量", "单价", "合计"]

TEXT_BLOCK_LABELS = {"text", "paragraph", "title", "list", ""}

HTML_TABLE_HINT = re.compile(r"<table", re.I)
# a row with a pipe followed by a separator row; outer pipes are optional
MARKDOWN_TABLE_HINT = re.compile(
    r"^[^\n]*\|[^\n]*\n(?=[^\n]*\|)[ \t]*\|?[ \t]*:?-+:?[ \t]*(?:\|[ \t]*:?-+:?[ \t]*)*\|?[ \t]*\r?$",
    re.M,
)

MERGED_NAME_PATTERN = re.compile(r"merge|combined|all", re.I)
INVOICE_HEADING_PATTERN = re.compile(r"^#{1,3}\s+.*(invoice|發票|销售单|收據)", re.I | re.M)
HEADING_SPLIT_PATTERN = re.compile(r"(?=^#{1,3}\s+)", re.M)

FILE_SUFFIX_PATTERN = re.compile(r"_(res|output|result|parsed|p\d+)$", re.I)

# ---------------------------------------------------------
# OCR glyph confusions
# ---------------------------------------------------------
OCR_DIGIT_FIXES = {
    "O": "0",
    "o": "0",
    "l": "1",
    "I": "1",
    "Z": "2",
    "S": "5",
    "B": "8",
}

OCR_PUNCT_FIXES = {
    "，": ",",
    "。": ".",
}
