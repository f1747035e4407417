# invoice_extract/errors.py
from __future__ import annotations

from typing import Dict, Optional

from .models import DetectionReport


class NoSuitableParser(RuntimeError):
    """No detector cleared the confidence threshold."""

    def __init__(self, report: DetectionReport, min_confidence: float):
        self.report = report
        self.min_confidence = min_confidence
        scores = ", ".join(
            f"{detector_id}={score.confidence:.2f}" for detector_id, score in report.scores.items()
        )
        super().__init__(
            f"no parser reached confidence {min_confidence:.2f} ({scores or 'no detectors registered'})"
        )


class DetectorNotFound(KeyError):
    def __init__(self, detector_id: str):
        self.detector_id = detector_id
        super().__init__(detector_id)

    def __str__(self) -> str:
        return f"unknown detector: {self.detector_id}"


class AllParsersFailed(RuntimeError):
    def __init__(self, errors: Dict[str, str], report: Optional[DetectionReport] = None):
        self.errors = errors
        self.report = report
        detail = "; ".join(f"{k}: {v}" for k, v in errors.items())
        super().__init__(f"all parsers failed ({detail or 'no candidates'})")


class LlmUnavailable(RuntimeError):
    pass
