from __future__ import annotations

import io
import logging
import os
import tempfile
import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable

from openpyxl import load_workbook

from cert_sync import __version__ as TOOL_VERSION
from cert_sync.config import Settings
from cert_sync.contracts import build_contract, build_run_summary
from cert_sync.dedup import dedupe_certificates
from cert_sync.errors import ConfirmationRequired, ParseError, WriteAborted, WriteConflict
from cert_sync.locator import locate_layout
from cert_sync.ooxml import inject_cached_values
from cert_sync.placement import RenderedValues, find_existing_row, resolve_placement
from cert_sync.records import CertificateRecord
from cert_sync.row_writer import RowWriter
from cert_sync.sanitizer import SanitizationHazard, sanitize_workbook
from cert_sync.suppliers import SupplierIndex, apply_supplier_matching
from cert_sync.update_log import append_update_log, summarize_counts

logger = logging.getLogger(__name__)

_APPEND_LOCK = threading.Lock()


@dataclass
class ExportPlan:
    records: list[CertificateRecord] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)
    new_suppliers: list[str] = field(default_factory=list)
    has_master: bool = False


@dataclass
class AppendResult:
    data: bytes
    file_name: str
    sheet_name: str
    inserted: int = 0
    updated: int = 0
    failures: list[str] = field(default_factory=list)
    hazards: list[SanitizationHazard] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)
    log_row: int | None = None

    @property
    def partial(self) -> bool:
        return bool(self.failures)


def master_output_name(today: date | None = None) -> str:
    return f"Updated_Master_File_{(today or date.today()).isoformat()}.xlsx"


def feeder_output_name(today: date | None = None) -> str:
    return f"New_Certificates_Import_{(today or date.today()).isoformat()}.xlsx"


def prepare_export(
    records: Iterable[CertificateRecord],
    index: SupplierIndex | None,
    threshold: float = 0.75,
) -> ExportPlan:
    """Deduplicate a batch and reconcile its supplier names with the master."""
    dedup = dedupe_certificates(records)
    has_master = index is not None and len(index) > 0
    matched = apply_supplier_matching(dedup.records, index, threshold)

    stats = Counter(total=len(matched), duplicates_removed=dedup.duplicates_removed, matched=0, new_suppliers=0)
    new_suppliers: list[str] = []
    for record in matched:
        if has_master and not record.is_new_supplier:
            stats["matched"] += 1
            continue
        record.is_new_supplier = True
        stats["new_suppliers"] += 1
        if record.supplier_name and record.supplier_name not in new_suppliers:
            new_suppliers.append(record.supplier_name)
    logger.info(
        "Export plan: %d certificate(s), %d matched, %d new, %d duplicate(s) removed",
        stats["total"], stats["matched"], stats["new_suppliers"], stats["duplicates_removed"],
    )
    return ExportPlan(records=matched, stats=dict(stats), new_suppliers=new_suppliers, has_master=has_master)


def load_master_workbooks(data: bytes):
    try:
        workbook = load_workbook(io.BytesIO(data))
        values = load_workbook(io.BytesIO(data), data_only=True)
    except Exception as exc:
        raise ParseError(f"Could not read workbook: {exc}") from exc
    return workbook, values


def finalize_workbook(workbook, rendered: RenderedValues) -> bytes:
    """Serialise with recalc-on-open set and formula results cached."""
    workbook.calculation.fullCalcOnLoad = True
    buffer = io.BytesIO()
    workbook.save(buffer)
    return inject_cached_values(buffer.getvalue(), rendered.cached_by_sheet())


def append_to_master(
    master_bytes: bytes,
    plan: ExportPlan,
    *,
    confirm_new_suppliers: bool = False,
    settings: Settings | None = None,
    today: date | None = None,
    now: datetime | None = None,
) -> AppendResult:
    """Append or update the plan's certificates inside the master workbook.

    Only one append runs at a time; a second concurrent call raises
    :class:`WriteConflict` instead of waiting. New suppliers need
    ``confirm_new_suppliers=True``. Records that fail before touching the
    workbook are collected as failures on the result. A failure part-way
    through a write, or anything that breaks loading or saving, aborts with
    no output (:class:`WriteAborted` for the former).
    """
    if not _APPEND_LOCK.acquire(blocking=False):
        raise WriteConflict("Another append to the master file is already in progress.")
    try:
        return _append_locked(
            master_bytes,
            plan,
            confirm_new_suppliers=confirm_new_suppliers,
            settings=settings or Settings(),
            today=today or date.today(),
            now=now,
        )
    finally:
        _APPEND_LOCK.release()


def _append_locked(
    master_bytes: bytes,
    plan: ExportPlan,
    *,
    confirm_new_suppliers: bool,
    settings: Settings,
    today: date,
    now: datetime | None,
) -> AppendResult:
    if not plan.records:
        raise ValueError("No certificates to append")
    if plan.new_suppliers and not confirm_new_suppliers:
        raise ConfirmationRequired(plan.new_suppliers)

    sanitized = sanitize_workbook(master_bytes)
    workbook, values = load_master_workbooks(sanitized.data)
    rendered = RenderedValues.from_workbooks(workbook, values)
    layout = locate_layout(workbook, settings.data_sheet_names)
    writer = RowWriter(workbook, layout, rendered, today)
    ws = layout.worksheet
    columns = layout.columns

    inserted = updated = 0
    failures: list[str] = []
    for record in plan.records:
        label = record.file_name or record.supplier_name or "[unnamed certificate]"
        try:
            placement = resolve_placement(ws, columns, layout.header_row, rendered, record)
            existing = None
            if placement.block is not None:
                existing = find_existing_row(ws, columns, placement.block, record, rendered)
            if existing is not None:
                writer.update_certificate(record, existing)
                updated += 1
            else:
                writer.insert_certificate(record, placement)
                inserted += 1
        except Exception as exc:
            if writer.mutating:
                logger.error("Write of %s failed part-way; discarding the workbook", label)
                raise WriteAborted(f"{label}: write failed part-way ({exc}); the master file was not changed.") from exc
            logger.warning("Could not write %s: %s", label, exc)
            failures.append(f"{label}: {exc}")

    log_row = None
    if inserted or updated:
        first = plan.records[0]
        log_row = append_update_log(
            workbook,
            account=first.matched_account,
            supplier=first.supplier_name,
            summary=summarize_counts(inserted, updated),
            now=now,
            sheet_name=settings.update_log_sheet,
            scan_limit=settings.update_log_scan_limit,
        )

    data = finalize_workbook(workbook, rendered)
    warnings = sanitized.warnings() + writer.warnings
    if layout.used_default_header:
        warnings.append(f"No header row found on {layout.sheet_name!r}; default column layout assumed.")
    return AppendResult(
        data=data,
        file_name=master_output_name(today),
        sheet_name=layout.sheet_name,
        inserted=inserted,
        updated=updated,
        failures=failures,
        hazards=sanitized.hazards,
        warnings=warnings,
        stats=dict(plan.stats),
        log_row=log_row,
    )


def write_output_atomic(output_path: Path, data: bytes) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.stem}.", suffix=output_path.suffix, dir=str(output_path.parent))
    os.close(fd)
    temp_path = Path(tmp_name)
    try:
        temp_path.write_bytes(data)
        os.replace(temp_path, output_path)
    finally:
        if temp_path.exists():
            temp_path.unlink()
    return output_path


def build_append_summary(*, input_path: Path | None, output_path: Path | None, result: AppendResult) -> dict[str, Any]:
    contract = build_contract("cert_sync.append_summary")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "sheet_name": result.sheet_name,
        "inserted": result.inserted,
        "updated": result.updated,
        "failures": list(result.failures),
        "update_log_row": result.log_row,
        "hazards": [hazard.describe() for hazard in result.hazards],
        "stats": dict(result.stats),
        "run_summary": build_run_summary(
            command="append",
            input_path=input_path,
            status="partial" if result.partial else "ok",
            output_path=output_path,
            metrics={
                "rows_inserted": result.inserted,
                "rows_updated": result.updated,
                "records_failed": len(result.failures),
                **result.stats,
            },
            warnings=result.warnings,
        ),
    }
