# invoice_extract/cli.py
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List

from .config import RegistryConfig
from .errors import AllParsersFailed, DetectorNotFound, LlmUnavailable, NoSuitableParser
from .extractor import export_invoices_to_json, group_files_by_base_name, load_raw_files
from .models import BatchValidationSummary
from .registry import ParserRegistry, extract_batch
from .validator import validate_invoices

PARSE_ERRORS = (AllParsersFailed, DetectorNotFound, LlmUnavailable, NoSuitableParser)


def _write_json(path: str, payload) -> None:
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text(json.dumps(payload, indent=2, ensure_ascii=False, default=str), encoding="utf-8")


def _print_top_errors(summary: BatchValidationSummary) -> None:
    if summary.error_counts:
        print("Top errors:")
        for err, count in sorted(summary.error_counts.items(), key=lambda kv: -kv[1])[:5]:
            print(f"  {err}: {count}")


def cmd_detectors(args: argparse.Namespace) -> int:
    registry = ParserRegistry(RegistryConfig.from_env())
    for info in registry.list_detectors():
        state = "enabled" if info.enabled else "disabled"
        print(f"{info.id:<18} {info.name:<28} {','.join(info.supported_extensions):<14} {state}")
    return 0


def cmd_parse(args: argparse.Namespace) -> int:
    registry = ParserRegistry(RegistryConfig.from_env())
    files = load_raw_files(args.files)

    try:
        if args.fallback:
            result = registry.parse_with_fallback(files, validate=args.validate)
        else:
            result = registry.parse(files, forced_id=args.detector, validate=args.validate)
    except PARSE_ERRORS as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    print(f"Detector: {result.detector_used} ({result.confidence:.2f})")
    print(f"Invoices: {len(result.invoices)}")
    for inv in result.invoices:
        print(f"  {inv.source_file}: {len(inv.items)} items, calc_total={inv.calc_total}")

    if args.output:
        export_invoices_to_json(result.invoices, args.output)
        print(f"Wrote {len(result.invoices)} invoices to {args.output}")
    else:
        print(json.dumps(result.model_dump(), indent=2, ensure_ascii=False, default=str))

    if result.validation and any(not r.valid for r in result.validation):
        return 1
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    registry = ParserRegistry(RegistryConfig.from_env())
    groups = group_files_by_base_name(load_raw_files(args.files))
    results = extract_batch(
        [list(g.values()) for g in groups.values()],
        registry=registry,
        workers=args.workers,
        fallback=args.fallback,
    )

    ok = sum(1 for r in results if r.ok)
    print(f"[BATCH] Documents: {len(results)}, OK: {ok}, Failed: {len(results) - ok}")
    for r in results:
        if not r.ok:
            print(f"  {r.source}: {r.error}")

    if args.report:
        _write_json(args.report, [r.model_dump() for r in results])
    return 0 if ok == len(results) else 1


def cmd_validate(args: argparse.Namespace) -> int:
    data = json.loads(Path(args.input).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("invoices", [data])
    results, summary = validate_invoices(data, RegistryConfig.from_env().validator)

    report = {
        "summary": summary.model_dump(),
        "results": [r.model_dump() for r in results],
    }
    _write_json(args.report, report)

    print(f"Total invoices: {summary.total_invoices}")
    print(f"Valid invoices: {summary.valid_invoices}")
    print(f"Invalid invoices: {summary.invalid_invoices}")
    print(f"Fixed invoices: {summary.fixed_invoices}")
    _print_top_errors(summary)

    return 0 if summary.invalid_invoices == 0 else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="invoice-extract")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    p_det = sub.add_parser("detectors", help="List registered detectors")
    p_det.set_defaults(func=cmd_detectors)

    p_parse = sub.add_parser("parse", help="Extract invoices from the files of one document")
    p_parse.add_argument("files", nargs="+", help="JSON / Markdown / text files")
    p_parse.add_argument("--detector", help="Force a detector id")
    p_parse.add_argument("--validate", dest="validate", action="store_true", default=None)
    p_parse.add_argument("--no-validate", dest="validate", action="store_false")
    p_parse.add_argument("--fallback", action="store_true", help="Try detectors until one yields invoices")
    p_parse.add_argument("--output", help="Write invoices to this JSON file")
    p_parse.set_defaults(func=cmd_parse)

    p_batch = sub.add_parser("batch", help="Extract many documents concurrently")
    p_batch.add_argument("files", nargs="+", help="Files; grouped into documents by base name")
    p_batch.add_argument("--workers", type=int, default=4)
    p_batch.add_argument("--fallback", action="store_true")
    p_batch.add_argument("--report", help="Output batch report JSON")
    p_batch.set_defaults(func=cmd_batch)

    p_validate = sub.add_parser("validate", help="Validate invoices from JSON")
    p_validate.add_argument("--input", required=True, help="Input JSON file")
    p_validate.add_argument("--report", required=True, help="Output validation report JSON")
    p_validate.set_defaults(func=cmd_validate)

    return parser


def main(argv: List[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    exit_code = args.func(args)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
