# invoice_extract/gemini_fallback.py
from __future__ import annotations

import json
import logging
import re
from typing import Optional

from google import generativeai as genai

from .config import LlmConfig

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are an invoice data extraction assistant. Analyse the OCR output of
an invoice below and return structured data.

Return ONLY a JSON object of this shape, with no other text:

{{
  "supplier_name": "supplier name",
  "customer_name": "customer name or null",
  "invoice_date": "YYYY-MM-DD or null",
  "invoice_number": "invoice number or null",
  "currency": "currency code such as HKD, CNY, USD",
  "declared_total": 0.0,
  "items": [
    {{"code": "product code", "name": "product name", "qty": 1, "unit_price": 0.0, "total": 0.0}}
  ]
}}

Rules:
1. Use null for any field you cannot identify.
2. Numbers are plain numbers without currency symbols.
3. Dates use YYYY-MM-DD.
4. If qty cannot be determined use 1.
5. qty * unit_price should equal total.

Invoice content:
---
{content}
---
"""

_FENCED_JSON_RE = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)\n?```")
_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def build_prompt(content: str) -> str:
    return PROMPT_TEMPLATE.format(content=content)


def _extract_text(response):
    """Safely extract text from Gemini response."""
    if getattr(response, "text", None):
        return response.text

    try:
        if response.candidates:
            parts = response.candidates[0].content.parts
            if parts and hasattr(parts[0], "text"):
                return parts[0].text
    except (AttributeError, IndexError, ValueError):
        pass

    return None


def call_gemini(prompt: str, cfg: LlmConfig) -> Optional[str]:
    """
    Try each configured Gemini model in turn. Return response text or None.
    """
    if not cfg.enabled:
        logger.warning("Gemini key missing, skipping call")
        return None

    genai.configure(api_key=cfg.api_key)
    logger.debug("prompt (first 200 chars): %s", prompt[:200])

    for model_name in cfg.models:
        try:
            model = genai.GenerativeModel(
                model_name,
                generation_config={
                    "temperature": cfg.temperature,
                    "max_output_tokens": cfg.max_output_tokens,
                },
            )
            response = model.generate_content(prompt, request_options={"timeout": cfg.timeout})
            text = _extract_text(response)
            if text:
                logger.info("Gemini model %s responded", model_name)
                return text
            logger.warning("no usable text from %s", model_name)
        except Exception as e:
            logger.warning("Gemini model %s failed: %s", model_name, e)

    logger.error("all Gemini models failed")
    return None


def parse_llm_response(text: Optional[str]) -> Optional[dict]:
    """Pull the JSON object out of a model reply (bare, fenced, or embedded)."""
    if not text:
        return None
    candidates = [text.strip()]
    m = _FENCED_JSON_RE.search(text)
    if m:
        candidates.append(m.group(1).strip())
    m = _JSON_OBJECT_RE.search(text)
    if m:
        candidates.append(m.group(0))

    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict):
            return data
    return None
