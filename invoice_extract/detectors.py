# invoice_extract/detectors.py
"""Format detectors: score a set of input files, then parse them.

``can_parse`` must stay cheap and side-effect free since the registry calls
it on every detector for every request. ``parse`` returns normalized
invoices and silently drops files that yield no items.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Callable, List, Optional

from .config import LlmConfig
from .config_labels import (
    COMPANY_HINT_PATTERN,
    HEADING_SPLIT_PATTERN,
    HTML_TABLE_HINT,
    INVOICE_HEADING_PATTERN,
    MARKDOWN_KEYWORDS,
    MARKDOWN_TABLE_HINT,
    MERGED_NAME_PATTERN,
    TEXT_BLOCK_LABELS,
    TEXT_INVOICE_KEYWORDS,
)
from .errors import LlmUnavailable
from .extractor import (
    ExtractionToolkit,
    collect_blocks,
    filter_by_extensions,
    group_files_by_base_name,
    normalize_invoice,
    normalize_root,
    read_json_file,
    read_text_file,
)
from .gemini_fallback import build_prompt, call_gemini, parse_llm_response
from .lang_utils import clean_string
from .models import Block, DetectorInfo, Invoice, RawFile
from . import tables

logger = logging.getLogger(__name__)

_TAG_RE = re.compile(r"<[^>]+>")


def strip_tags(content: str) -> str:
    return clean_string(_TAG_RE.sub(" ", content or ""))


class FormatDetector:
    id = ""
    name = ""
    supported_extensions: List[str] = []

    def __init__(self, toolkit: Optional[ExtractionToolkit] = None):
        self.toolkit = toolkit or ExtractionToolkit()
        self.enabled = True

    def can_parse(self, files: List[RawFile]) -> float:
        raise NotImplementedError

    def parse(self, files: List[RawFile]) -> List[Invoice]:
        raise NotImplementedError

    def info(self) -> DetectorInfo:
        return DetectorInfo(
            id=self.id,
            name=self.name,
            supported_extensions=list(self.supported_extensions),
            enabled=self.enabled,
        )


# ---------------------------------------------------------
# Block-list JSON (layout analysis output)
# ---------------------------------------------------------
class DocParserJsonDetector(FormatDetector):
    id = "doc_parser_json"
    name = "DocParser block-list JSON"
    supported_extensions = ["json", "md"]

    def can_parse(self, files: List[RawFile]) -> float:
        score = 0.0
        checked = 0
        for raw in filter_by_extensions(files, ["json"]):
            data = read_json_file(raw)
            if data is None:
                continue
            checked += 1
            root = normalize_root(data)

            blocks = root.get("parsing_res_list")
            if isinstance(blocks, list):
                score += 0.5
                if blocks and isinstance(blocks[0], dict):
                    first = blocks[0]
                    if "block_label" in first and "block_content" in first:
                        score += 0.3
                    if "block_bbox" in first:
                        score += 0.2

            if "layout_det_res" in root:
                score += 0.1
            if "model_settings" in root:
                score += 0.1

        return min(1.0, score / checked) if checked else 0.0

    def parse(self, files: List[RawFile]) -> List[Invoice]:
        invoices = []
        for base, group in group_files_by_base_name(files).items():
            json_file = group.get("json")
            if json_file is None:
                continue
            invoice = self._parse_group(json_file, group.get("md"))
            if invoice is not None and invoice.items:
                invoices.append(invoice)
            else:
                logger.info("no items found for %s", base)
        return invoices

    def _parse_group(self, json_file: RawFile, md_file: Optional[RawFile]) -> Optional[Invoice]:
        data = read_json_file(json_file)
        if data is None:
            return None
        blocks = collect_blocks(normalize_root(data))
        if not blocks:
            return None

        grids = []
        texts = []
        for block in blocks:
            if block.is_table:
                if HTML_TABLE_HINT.search(block.content):
                    grids.extend(tables.extract_html_tables(block.content))
                else:
                    grids.extend(tables.extract_markdown_tables(block.content))
            else:
                text = strip_tags(block.content)
                if text:
                    texts.append(text)
        all_text = "\n".join(texts)

        items = self.toolkit.items_from_grids(grids)
        if not items and md_file is not None:
            md_text = read_text_file(md_file) or ""
            items = self.toolkit.items_from_html(md_text) or self.toolkit.items_from_markdown(md_text)
            if items:
                logger.debug("items for %s taken from %s", json_file.name, md_file.name)

        header = self.toolkit.header(all_text)
        if not header["supplier_name"]:
            header["supplier_name"] = self._supplier_from_blocks(texts)

        return self.toolkit.build_invoice(self.id, json_file.name, header, items, text=all_text)

    @staticmethod
    def _supplier_from_blocks(texts: List[str]) -> str:
        # the first short non-numeric block is usually the letterhead
        for text in texts:
            if re.match(r"^\d{4}[-/]", text):
                continue
            if COMPANY_HINT_PATTERN.search(text):
                return text
            if 3 < len(text) < 100 and not text[0].isdigit():
                return text
        return ""


# ---------------------------------------------------------
# Markdown / plain text with tables
# ---------------------------------------------------------
class GenericMarkdownDetector(FormatDetector):
    id = "generic_markdown"
    name = "Generic Markdown"
    supported_extensions = ["md", "txt"]

    def can_parse(self, files: List[RawFile]) -> float:
        score = 0.0
        checked = 0
        for raw in filter_by_extensions(files, self.supported_extensions):
            text = read_text_file(raw)
            if not text:
                continue
            checked += 1
            low = text.lower()
            file_score = 0.0
            if HTML_TABLE_HINT.search(text):
                file_score += 0.4
            if MARKDOWN_TABLE_HINT.search(text):
                file_score += 0.3
            file_score += 0.08 * sum(1 for kw in MARKDOWN_KEYWORDS["high"] if kw in low)
            file_score += 0.04 * sum(1 for kw in MARKDOWN_KEYWORDS["medium"] if kw in low)
            score += min(0.8, file_score)
        return score / checked if checked else 0.0

    def parse(self, files: List[RawFile]) -> List[Invoice]:
        invoices = []
        for raw in filter_by_extensions(files, self.supported_extensions):
            text = read_text_file(raw)
            if not text:
                continue
            if self.is_merged(raw, text):
                invoices.extend(self._parse_merged(text, raw.name))
                continue
            invoice = self._parse_section(text, raw.name)
            if invoice.items:
                invoices.append(invoice)
        return invoices

    @staticmethod
    def is_merged(raw: RawFile, text: str) -> bool:
        if MERGED_NAME_PATTERN.search(raw.stem):
            return True
        return len(INVOICE_HEADING_PATTERN.findall(text)) > 1

    def _parse_merged(self, text: str, source: str) -> List[Invoice]:
        invoices = []
        for part in HEADING_SPLIT_PATTERN.split(text):
            part = part.strip()
            if not part:
                continue
            invoice = self._parse_section(part, f"{source}#part{len(invoices)}")
            if invoice.items:
                invoices.append(invoice)
        logger.debug("%s split into %d invoices", source, len(invoices))
        return invoices

    def _parse_section(self, text: str, source: str) -> Invoice:
        items = self.toolkit.items_from_html(text)
        if not items:
            items = self.toolkit.items_from_markdown(text)
        if not items:
            items = self.toolkit.items_from_text(text)

        header = self.toolkit.header(text)
        if not header["supplier_name"]:
            header["supplier_name"] = extract_title(text)
        return self.toolkit.build_invoice(self.id, source, header, items, text=text)


def extract_title(text: str) -> str:
    m = re.search(r"^#{1,2}\s+(.+)", text, re.M)
    if m:
        return m.group(1).strip()
    for line in text.splitlines():
        line = line.strip()
        if line and not re.match(r"^[#\-\*\|<]", line):
            return line
    return ""


# ---------------------------------------------------------
# Freeform text without tables
# ---------------------------------------------------------
_TEXT_SCORE_LABELS = {"text", "paragraph", "title"}


class TextBlockDetector(FormatDetector):
    id = "text_block"
    name = "Freeform text blocks"
    supported_extensions = ["json", "md", "txt"]

    def can_parse(self, files: List[RawFile]) -> float:
        score = 0.0
        checked = 0
        for raw in files:
            if raw.extension == "json":
                data = read_json_file(raw)
                if data is None:
                    continue
                checked += 1
                blocks = collect_blocks(normalize_root(data))
                has_table = any(b.is_table for b in blocks)
                has_text = any(b.label.lower() in _TEXT_SCORE_LABELS for b in blocks)
                if has_text and not has_table:
                    score += 0.8
                elif has_text:
                    score += 0.2
            elif raw.extension in ("md", "txt"):
                text = read_text_file(raw)
                if not text:
                    continue
                checked += 1
                if HTML_TABLE_HINT.search(text) or MARKDOWN_TABLE_HINT.search(text):
                    continue
                low = text.lower()
                if sum(1 for kw in TEXT_INVOICE_KEYWORDS if kw in low) >= 2:
                    score += 0.6
        return min(1.0, score / checked) if checked else 0.0

    def parse(self, files: List[RawFile]) -> List[Invoice]:
        invoices = []
        for raw in filter_by_extensions(files, self.supported_extensions):
            if raw.extension == "json":
                invoice = self._parse_json(raw)
            else:
                invoice = self._parse_text(raw)
            if invoice is not None and invoice.items:
                invoices.append(invoice)
        return invoices

    def _parse_json(self, raw: RawFile) -> Optional[Invoice]:
        data = read_json_file(raw)
        if data is None:
            return None
        text_blocks: List[Block] = [
            b for b in collect_blocks(normalize_root(data))
            if not b.is_table and b.label.lower() in TEXT_BLOCK_LABELS
        ]
        all_text = "\n".join(b.content for b in text_blocks)
        if not all_text.strip():
            return None

        items = self.toolkit.items_from_text(all_text)
        if not items:
            items = self.toolkit.items_from_blocks(text_blocks)
        return self.toolkit.build_invoice(self.id, raw.name, self.toolkit.header(all_text), items, text=all_text)

    def _parse_text(self, raw: RawFile) -> Optional[Invoice]:
        text = read_text_file(raw)
        if not text:
            return None
        items = self.toolkit.items_from_text(text)
        return self.toolkit.build_invoice(self.id, raw.name, self.toolkit.header(text), items, text=text)


# ---------------------------------------------------------
# LLM-assisted (Gemini)
# ---------------------------------------------------------
class LlmAssistedDetector(FormatDetector):
    id = "llm_assisted"
    name = "LLM-assisted (Gemini)"
    supported_extensions = ["json", "md", "txt"]

    def __init__(
        self,
        config: Optional[LlmConfig] = None,
        complete: Optional[Callable[[str], Optional[str]]] = None,
        toolkit: Optional[ExtractionToolkit] = None,
    ):
        super().__init__(toolkit)
        self.config = config or LlmConfig()
        self.complete = complete or (lambda prompt: call_gemini(prompt, self.config))
        self.enabled = self.config.enabled

    def can_parse(self, files: List[RawFile]) -> float:
        if not self.enabled:
            return 0.0
        return 0.3 if filter_by_extensions(files, self.supported_extensions) else 0.0

    def parse(self, files: List[RawFile]) -> List[Invoice]:
        if not self.enabled:
            raise LlmUnavailable("LLM parser is not configured; set GEMINI_API_KEY")

        invoices = []
        for raw in filter_by_extensions(files, self.supported_extensions):
            content = self._file_content(raw)
            if not content:
                continue
            try:
                data = parse_llm_response(self.complete(build_prompt(content)))
            except Exception as e:
                logger.warning("LLM parse failed for %s: %s", raw.name, e)
                continue
            if data is None:
                logger.warning("LLM returned no usable JSON for %s", raw.name)
                continue

            data["source_file"] = raw.name
            data["items"] = [
                i for i in data.get("items") or []
                if isinstance(i, dict) and (i.get("name") or i.get("code"))
            ]
            data["metadata"] = {"parser": self.id}
            invoice = normalize_invoice(data, self.id, text=content)
            if invoice.items:
                invoices.append(invoice)
        return invoices

    @staticmethod
    def _file_content(raw: RawFile) -> str:
        if raw.extension == "json":
            data = read_json_file(raw)
            if data is None:
                return ""
            blocks = collect_blocks(normalize_root(data))
            if blocks:
                return "\n".join(t for t in (strip_tags(b.content) for b in blocks) if t)
            return json.dumps(data, ensure_ascii=False, indent=2)
        return read_text_file(raw) or ""


def default_detectors(llm_config: Optional[LlmConfig] = None) -> List[FormatDetector]:
    """Built-in detectors in priority order."""
    toolkit = ExtractionToolkit()
    return [
        DocParserJsonDetector(toolkit),
        GenericMarkdownDetector(toolkit),
        TextBlockDetector(toolkit),
        LlmAssistedDetector(llm_config, toolkit=toolkit),
    ]
