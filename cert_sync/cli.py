from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from cert_sync import __version__ as TOOL_VERSION
from cert_sync.config import DEFAULT_CONFIG_NAME, Settings, load_settings, starter_config
from cert_sync.contracts import build_contract, build_run_summary
from cert_sync.errors import ConfirmationRequired, ExtractionError, WriteConflict
from cert_sync.records import CertificateRecord, records_from_json

MASTER_FORMATS = {".xlsx", ".xlsm"}
INDEX_FORMATS = MASTER_FORMATS | {".xls"}

EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_PARTIAL = 6
EXIT_CONFIRMATION_REQUIRED = 7
EXIT_WRITE_CONFLICT = 8


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class CertSyncArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True, default=str)


def timestamp_token() -> str:
    override = os.environ.get("CERT_SYNC_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "cert-sync-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def write_text(path: Path, payload: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def configure_logging(args: argparse.Namespace) -> None:
    if getattr(args, "verbose", False):
        level = logging.DEBUG
    elif getattr(args, "quiet", False):
        level = logging.ERROR
    else:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s", stream=sys.stderr)


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, ConfirmationRequired):
        return EXIT_CONFIRMATION_REQUIRED
    if isinstance(exc, WriteConflict):
        return EXIT_WRITE_CONFLICT
    if isinstance(exc, FileNotFoundError):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (ValueError, UnicodeDecodeError, ExtractionError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def require_file(path_text: str, formats: set[str] | None = None) -> Path:
    path = Path(path_text)
    if not path.exists():
        raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
    if formats and path.suffix.lower() not in formats:
        raise CliError(
            f"Unsupported file type '{path.suffix or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(formats))}",
            EXIT_COMMAND_ERROR,
        )
    return path


def load_records(path: Path) -> list[CertificateRecord]:
    try:
        return records_from_json(path.read_text(encoding="utf-8"))
    except ValueError as exc:
        raise CliError(f"Could not read records file {path}: {exc}", EXIT_PARSE_FAILED) from exc


def settings_from_args(args: argparse.Namespace) -> Settings:
    settings = load_settings(getattr(args, "config", None))
    threshold = getattr(args, "threshold", None)
    if threshold is not None:
        settings.match_threshold = threshold
    return settings


def build_parser() -> argparse.ArgumentParser:
    parser = CertSyncArgumentParser(prog="cert-sync", description="Reconcile supplier certificates into a master workbook.")
    parser.add_argument("--config", help=f"Settings file (default: ./{DEFAULT_CONFIG_NAME} when present)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    index = subparsers.add_parser("index", help="Build the supplier index from a master file.")
    index.add_argument("master", help="Master workbook (.xlsx/.xlsm/.xls)")
    index.add_argument("--output", help="Write the index JSON to this path")
    index.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    index.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    index.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    match = subparsers.add_parser("match", help="Match supplier names against a master file.")
    match.add_argument("master", help="Master workbook (.xlsx/.xlsm/.xls)")
    match.add_argument("names", nargs="+", help="Supplier names to match")
    match.add_argument("--threshold", type=float, help="Match threshold (default from settings)")
    match.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    match.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    match.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    sanitize = subparsers.add_parser("sanitize", help="Strip drawings and expand shared formulas.")
    sanitize.add_argument("master", help="Master workbook (.xlsx/.xlsm)")
    sanitize.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    sanitize.add_argument("--output", help="Explicit output path")
    sanitize.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    sanitize.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    sanitize.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    extract = subparsers.add_parser("extract", help="Extract certificate fields with the classifier.")
    extract.add_argument("files", nargs="+", help="Certificate images (.png/.jpg/.webp) or text files")
    extract.add_argument("--records", dest="records_path", help="Write extracted records JSON to this path")
    extract.add_argument("--master", help="Master workbook used to resolve the override account")
    extract.add_argument("--supplier", help="Force this supplier name on every record")
    extract.add_argument("--account", help="Force this supplier account on every record")
    extract.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    extract.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    extract.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    append = subparsers.add_parser("append", help="Append certificates to the master workbook.")
    append.add_argument("master", help="Master workbook (.xlsx/.xlsm)")
    append.add_argument("records", help="Records JSON (list, or extract output)")
    append.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    append.add_argument("--output", help="Explicit workbook output path")
    append.add_argument("--json-summary", dest="json_summary", help="Explicit JSON summary output path")
    append.add_argument("--confirm-new-suppliers", action="store_true", help="Allow suppliers not found in the master")
    append.add_argument("--threshold", type=float, help="Match threshold (default from settings)")
    append.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    append.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    append.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    feeder = subparsers.add_parser("feeder", help="Write the standalone feeder workbook.")
    feeder.add_argument("records", help="Records JSON (list, or extract output)")
    feeder.add_argument("--master", help="Master workbook used for supplier matching")
    feeder.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    feeder.add_argument("--output", help="Explicit workbook output path")
    feeder.add_argument("--threshold", type=float, help="Match threshold (default from settings)")
    feeder.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    feeder.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    feeder.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default=DEFAULT_CONFIG_NAME, help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def run_index(args: argparse.Namespace) -> int:
    from cert_sync.suppliers import build_supplier_index

    master_path = require_file(args.master, INDEX_FORMATS)
    index = build_supplier_index(master_path.read_bytes(), master_path.name)
    contract = build_contract("cert_sync.supplier_index")
    payload = {"contract": contract, "schema_version": contract["version"], **index.to_payload()}
    if args.output:
        write_json(safe_output_path(Path(args.output)), payload)
    if args.json:
        maybe_emit_json_stdout(payload, True)
    else:
        emit_human(
            f"cert-sync index\nFile: {master_path.name}\nSheet: {index.sheet_name}\n"
            f"Header row: {index.header_row}\nUnique suppliers: {len(index)}",
            quiet=args.quiet,
        )
        if args.output:
            emit_human(f"Index written: {args.output}", quiet=args.quiet)
    return EXIT_SUCCESS


def run_match(args: argparse.Namespace) -> int:
    from cert_sync.suppliers import build_supplier_index, match_supplier

    settings = settings_from_args(args)
    master_path = require_file(args.master, INDEX_FORMATS)
    index = build_supplier_index(master_path.read_bytes(), master_path.name)
    results = []
    for name in args.names:
        result = match_supplier(name, index, settings.match_threshold)
        results.append(
            {
                "input": name,
                "matched_name": result.matched_name,
                "was_matched": result.was_matched,
                "confidence": round(result.confidence, 4),
                "matched_account": result.matched_account,
            }
        )
    if args.json:
        maybe_emit_json_stdout({"threshold": settings.match_threshold, "results": results}, True)
    else:
        for item in results:
            if item["was_matched"]:
                line = f"{item['input']} -> {item['matched_name']} ({item['confidence']:.2f}, account {item['matched_account'] or '-'})"
            else:
                line = f"{item['input']} -> NEW SUPPLIER"
            print(line)
    return EXIT_SUCCESS


def run_sanitize(args: argparse.Namespace) -> int:
    from cert_sync.exporter import write_output_atomic
    from cert_sync.sanitizer import sanitize_workbook

    master_path = require_file(args.master, MASTER_FORMATS)
    out_dir = determine_output_dir(args, master_path)
    output_path = safe_output_path(Path(args.output) if args.output else out_dir / f"{master_path.stem}-sanitized{master_path.suffix}")
    result = sanitize_workbook(master_path.read_bytes())
    write_output_atomic(output_path, result.data)
    contract = build_contract("cert_sync.sanitize_summary")
    summary = {
        "contract": contract,
        "schema_version": contract["version"],
        "changed": result.changed,
        "drawings_removed": result.drawings_removed,
        "shared_formulas_expanded": result.shared_formulas_expanded,
        "run_summary": build_run_summary(
            command="sanitize",
            input_path=master_path,
            output_path=output_path,
            metrics={
                "drawings_removed": result.drawings_removed,
                "shared_formulas_expanded": result.shared_formulas_expanded,
            },
            warnings=result.warnings(),
        ),
    }
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(
            f"cert-sync sanitize\nInput: {master_path}\nOutput: {output_path}\n"
            f"Drawings removed: {result.drawings_removed}\n"
            f"Shared formulas expanded: {result.shared_formulas_expanded}",
            quiet=args.quiet,
        )
    return EXIT_SUCCESS


def run_extract(args: argparse.Namespace) -> int:
    from cert_sync.classifier import (
        CertificateClassifier,
        CertificateInput,
        build_extract_summary,
        process_batch,
    )
    from cert_sync.suppliers import build_supplier_index

    settings = settings_from_args(args)
    inputs = [CertificateInput.from_path(require_file(item)) for item in args.files]
    index = None
    if args.master:
        master_path = require_file(args.master, INDEX_FORMATS)
        index = build_supplier_index(master_path.read_bytes(), master_path.name)
    if args.account and not args.supplier:
        raise CliError("--account requires --supplier.", EXIT_COMMAND_ERROR)

    records_path = safe_output_path(Path(args.records_path)) if args.records_path else None
    result = process_batch(
        inputs,
        CertificateClassifier(settings),
        index=index,
        supplier_override=args.supplier,
        account_override=args.account,
        threshold=settings.match_threshold,
    )
    summary = build_extract_summary(inputs=[item.file_name for item in inputs], output_path=records_path, result=result)
    if records_path:
        write_json(records_path, summary)
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(f"cert-sync extract\nFiles: {len(inputs)}\nRecords: {len(result.records)}", quiet=args.quiet)
        for error in result.errors:
            emit_human(f"- {error}", quiet=args.quiet)
        if records_path:
            emit_human(f"Records written: {records_path}", quiet=args.quiet)
    if not result.records:
        return EXIT_PARSE_FAILED
    return EXIT_PARTIAL if result.partial else EXIT_SUCCESS


def run_append(args: argparse.Namespace) -> int:
    from cert_sync.exporter import append_to_master, build_append_summary, prepare_export, write_output_atomic
    from cert_sync.suppliers import build_supplier_index

    settings = settings_from_args(args)
    master_path = require_file(args.master, MASTER_FORMATS)
    records = load_records(require_file(args.records))
    if not records:
        raise CliError("No certificates to append.", EXIT_COMMAND_ERROR)

    master_bytes = master_path.read_bytes()
    index = build_supplier_index(master_bytes, master_path.name)
    plan = prepare_export(records, index, settings.match_threshold)

    out_dir = determine_output_dir(args, master_path)
    try:
        result = append_to_master(
            master_bytes,
            plan,
            confirm_new_suppliers=args.confirm_new_suppliers,
            settings=settings,
        )
    except ConfirmationRequired as exc:
        eprint(str(exc))
        eprint("Re-run with --confirm-new-suppliers to add them as new supplier blocks.")
        return EXIT_CONFIRMATION_REQUIRED

    output_path = safe_output_path(Path(args.output) if args.output else out_dir / result.file_name)
    summary_path = safe_output_path(Path(args.json_summary) if args.json_summary else out_dir / "append-summary.json")
    write_output_atomic(output_path, result.data)
    summary = build_append_summary(input_path=master_path, output_path=output_path, result=result)
    write_json(summary_path, summary)

    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        stats = result.stats
        lines = [
            "cert-sync append",
            f"Input: {master_path}",
            f"Output: {output_path}",
            f"Sheet: {result.sheet_name}",
            f"Rows inserted: {result.inserted}",
            f"Rows updated: {result.updated}",
            f"Matched suppliers: {stats.get('matched', 0)}",
            f"New suppliers: {stats.get('new_suppliers', 0)}",
            f"Duplicates removed: {stats.get('duplicates_removed', 0)}",
        ]
        if result.failures:
            lines.append("Failures:")
            lines.extend(f"- {failure}" for failure in result.failures)
        if result.warnings:
            lines.append("Warnings:")
            lines.extend(f"- {warning}" for warning in result.warnings)
        emit_human("\n".join(lines), quiet=args.quiet)
        emit_human(f"Summary written: {summary_path}", quiet=args.quiet)
    return EXIT_PARTIAL if result.partial else EXIT_SUCCESS


def run_feeder(args: argparse.Namespace) -> int:
    from cert_sync.exporter import feeder_output_name, prepare_export, write_output_atomic
    from cert_sync.feeder import build_feeder_summary, write_feeder_workbook
    from cert_sync.suppliers import build_supplier_index

    settings = settings_from_args(args)
    records_path = require_file(args.records)
    records = load_records(records_path)
    if not records:
        raise CliError("No certificates to export.", EXIT_COMMAND_ERROR)
    index = None
    if args.master:
        master_path = require_file(args.master, INDEX_FORMATS)
        index = build_supplier_index(master_path.read_bytes(), master_path.name)

    plan = prepare_export(records, index, settings.match_threshold)
    out_dir = determine_output_dir(args, records_path)
    output_path = safe_output_path(Path(args.output) if args.output else out_dir / feeder_output_name())
    write_output_atomic(output_path, write_feeder_workbook(plan))
    summary = build_feeder_summary(input_path=records_path, output_path=output_path, plan=plan)
    if args.json:
        maybe_emit_json_stdout(summary, True)
    else:
        emit_human(
            f"cert-sync feeder\nOutput: {output_path}\nCertificates: {plan.stats['total']}\n"
            f"Matched: {plan.stats['matched']}\nNew suppliers: {plan.stats['new_suppliers']}\n"
            f"Duplicates removed: {plan.stats['duplicates_removed']}",
            quiet=args.quiet,
        )
    return EXIT_SUCCESS


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_text(config_path, starter_config())
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


COMMANDS = {
    "index": run_index,
    "match": run_match,
    "sanitize": run_sanitize,
    "extract": run_extract,
    "append": run_append,
    "feeder": run_feeder,
}


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        handler = COMMANDS.get(args.command)
        if handler is None:
            raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
        configure_logging(args)
        return handler(args)
    except CliError as exc:
        eprint(str(exc))
        return exc.code
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


if __name__ == "__main__":
    raise SystemExit(main())
