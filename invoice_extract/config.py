# invoice_extract/config.py
# Runtime settings. Static pattern tables live in config_labels.
from __future__ import annotations

import os
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

PREFERRED_MODELS = [
    "gemini-1.5-flash-latest",   # fast, cheap
    "gemini-1.5-pro-latest",     # smarter fallback
]


class ValidatorConfig(BaseModel):
    min_item_name_length: int = 2
    max_item_name_length: int = 200
    max_qty: float = 100_000
    max_unit_price: float = 10_000_000
    max_total: float = 100_000_000
    # per-item qty * unit_price vs total
    tolerance_percent: float = 5.0
    # declared vs calculated invoice total; flagged only when both are exceeded
    total_abs_tolerance: float = 0.05
    total_rel_tolerance: float = 0.02


class LlmConfig(BaseModel):
    api_key: Optional[str] = None
    models: List[str] = Field(default_factory=lambda: list(PREFERRED_MODELS))
    timeout: float = 60.0
    temperature: float = 0.1
    max_output_tokens: int = 4096

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class RegistryConfig(BaseModel):
    min_confidence: float = 0.3
    auto_validate: bool = True
    validator: ValidatorConfig = Field(default_factory=ValidatorConfig)
    llm: LlmConfig = Field(default_factory=LlmConfig)

    @field_validator("min_confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return max(0.0, min(1.0, v))

    @classmethod
    def from_env(cls) -> "RegistryConfig":
        llm = LlmConfig(api_key=os.getenv("GEMINI_API_KEY") or None)
        model = os.getenv("GEMINI_MODEL")
        if model:
            llm.models = [model]

        kwargs = {"llm": llm}
        min_conf = os.getenv("INVOICE_MIN_CONFIDENCE")
        if min_conf:
            kwargs["min_confidence"] = float(min_conf)
        return cls(**kwargs)
