# invoice_extract/registry.py
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .config import RegistryConfig
from .detectors import FormatDetector, default_detectors
from .errors import AllParsersFailed, DetectorNotFound, LlmUnavailable, NoSuitableParser
from .models import (
    BatchItemResult,
    DetectionReport,
    DetectorInfo,
    DetectorScore,
    ParseResult,
    RawFile,
)
from .validator import InvoiceValidator

logger = logging.getLogger(__name__)

__all__ = [
    "AllParsersFailed",
    "DetectorNotFound",
    "LlmUnavailable",
    "NoSuitableParser",
    "ParserRegistry",
    "detect_and_parse",
    "extract_batch",
    "list_detectors",
]

FileLike = Union[RawFile, dict, str, Path]


def as_raw_files(files: Iterable[FileLike]) -> List[RawFile]:
    raw_files = []
    for f in files:
        if isinstance(f, RawFile):
            raw_files.append(f)
        elif isinstance(f, dict):
            raw_files.append(RawFile.model_validate(f))
        else:
            raw_files.append(RawFile(name=Path(f).name, path=str(f)))
    return raw_files


class ParserRegistry:
    """Holds the detectors, picks the most confident one and runs it."""

    def __init__(
        self,
        config: Optional[RegistryConfig] = None,
        detectors: Optional[List[FormatDetector]] = None,
        validator: Optional[InvoiceValidator] = None,
    ):
        self.config = config or RegistryConfig()
        self._detectors: Dict[str, FormatDetector] = {}
        if detectors is None:
            detectors = default_detectors(self.config.llm)
        for detector in detectors:
            self.register(detector)
        self.validator = validator or InvoiceValidator(self.config.validator)

    # -- membership ------------------------------------------------------
    def register(self, detector: FormatDetector) -> "ParserRegistry":
        self._detectors[detector.id] = detector
        return self

    def unregister(self, detector_id: str) -> "ParserRegistry":
        self._detectors.pop(detector_id, None)
        return self

    def get_detector(self, detector_id: str) -> FormatDetector:
        try:
            return self._detectors[detector_id]
        except KeyError:
            raise DetectorNotFound(detector_id) from None

    def supported_extensions(self) -> List[str]:
        seen: List[str] = []
        for detector in self._detectors.values():
            for ext in detector.supported_extensions:
                if ext not in seen:
                    seen.append(ext)
        return seen

    def list_detectors(self) -> List[DetectorInfo]:
        return [d.info() for d in self._detectors.values()]

    # -- detection -------------------------------------------------------
    def _score(self, detector: FormatDetector, files: List[RawFile]) -> DetectorScore:
        if not detector.enabled:
            return DetectorScore(name=detector.name, confidence=0.0, note="not configured")
        try:
            confidence = float(detector.can_parse(files))
        except Exception as e:
            logger.exception("detector %s failed while scoring", detector.id)
            return DetectorScore(name=detector.name, confidence=0.0, note=f"error: {e}")
        return DetectorScore(name=detector.name, confidence=max(0.0, min(1.0, confidence)))

    def detect(self, files: Iterable[FileLike]) -> DetectionReport:
        files = as_raw_files(files)
        scores: Dict[str, DetectorScore] = {}
        best_id = None
        best_score = 0.0

        for detector_id, detector in self._detectors.items():
            score = self._score(detector, files)
            scores[detector_id] = score
            # strict comparison keeps registration order on ties
            if score.confidence > best_score:
                best_id, best_score = detector_id, score.confidence

        logger.debug(
            "detector scores: %s",
            ", ".join(f"{k}={v.confidence:.2f}" for k, v in scores.items()),
        )
        selected = best_id if best_score >= self.config.min_confidence else None
        return DetectionReport(detector_id=selected, confidence=best_score, scores=scores)

    # -- parsing ---------------------------------------------------------
    def parse(
        self,
        files: Iterable[FileLike],
        forced_id: Optional[str] = None,
        validate: Optional[bool] = None,
    ) -> ParseResult:
        files = as_raw_files(files)

        if forced_id is not None:
            detector = self.get_detector(forced_id)
            score = self._score(detector, files)
            confidence = score.confidence
            scores = {forced_id: score}
        else:
            report = self.detect(files)
            if report.detector_id is None:
                raise NoSuitableParser(report, self.config.min_confidence)
            detector = self._detectors[report.detector_id]
            confidence = report.confidence
            scores = report.scores

        logger.info("parsing %d file(s) with %s (%.2f)", len(files), detector.id, confidence)
        invoices = detector.parse(files)

        validation = None
        if self.config.auto_validate if validate is None else validate:
            batch = self.validator.validate_batch(invoices)
            invoices = batch.invoices
            validation = batch.results

        return ParseResult(
            invoices=invoices,
            detector_used=detector.id,
            detector_name=detector.name,
            confidence=confidence,
            validation=validation,
            scores=scores,
        )

    def parse_with_fallback(self, files: Iterable[FileLike], validate: Optional[bool] = None) -> ParseResult:
        """Try qualifying detectors from most to least confident until one yields invoices."""
        files = as_raw_files(files)
        report = self.detect(files)
        ranked = sorted(report.scores.items(), key=lambda kv: kv[1].confidence, reverse=True)

        errors: Dict[str, str] = {}
        for detector_id, score in ranked:
            if score.confidence < self.config.min_confidence:
                continue
            try:
                result = self.parse(files, detector_id, validate)
            except Exception as e:
                logger.warning("detector %s failed: %s", detector_id, e)
                errors[detector_id] = str(e)
                continue
            if result.invoices:
                result.scores = report.scores
                result.fallback_errors = errors
                return result
            errors[detector_id] = "no invoices extracted"

        raise AllParsersFailed(errors, report)


def detect_and_parse(
    files: Iterable[FileLike],
    forced_detector_id: Optional[str] = None,
    validate: Optional[bool] = None,
    config: Optional[RegistryConfig] = None,
) -> ParseResult:
    return ParserRegistry(config).parse(files, forced_detector_id, validate)


def list_detectors(config: Optional[RegistryConfig] = None) -> List[DetectorInfo]:
    return ParserRegistry(config).list_detectors()


def _run_one(registry: ParserRegistry, files: List[RawFile], fallback: bool) -> BatchItemResult:
    source = ", ".join(f.name for f in files)
    try:
        if fallback:
            result = registry.parse_with_fallback(files)
        else:
            result = registry.parse(files)
    except Exception as e:
        logger.warning("batch item %s failed: %s", source, e)
        return BatchItemResult(source=source, ok=False, error=str(e))
    return BatchItemResult(source=source, ok=True, result=result)


def extract_batch(
    file_groups: Iterable[Iterable[FileLike]],
    registry: Optional[ParserRegistry] = None,
    workers: int = 4,
    fallback: bool = False,
) -> List[BatchItemResult]:
    """Parse independent documents concurrently; results keep input order."""
    registry = registry or ParserRegistry()
    groups = [as_raw_files(g) for g in file_groups]
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [pool.submit(_run_one, registry, g, fallback) for g in groups]
        return [f.result() for f in futures]
