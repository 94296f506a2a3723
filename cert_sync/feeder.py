from __future__ import annotations

import io
import logging
from datetime import date
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from cert_sync import __version__ as TOOL_VERSION
from cert_sync.contracts import build_contract, build_run_summary
from cert_sync.exporter import ExportPlan
from cert_sync.records import (
    STATUS_EXPIRED,
    STATUS_UP_TO_DATE,
    CertificateRecord,
    days_to_expiry,
    expiry_status,
)

logger = logging.getLogger(__name__)

SHEET_TITLE = "New Certificates"
EXPIRING_SOON_DAYS = 30

# (header, width)
FEEDER_COLUMNS = [
    ("Supplier Account", 18),
    ("Supplier Name", 30),
    ("Country", 15),
    ("Scope", 10),
    ("Measure", 40),
    ("Certification", 25),
    ("Product Category", 18),
    ("Status", 12),
    ("Issued", 12),
    ("Date of Expiry", 14),
    ("Days to Expire", 14),
    ("Contact person & Email", 28),
    ("Date Request sent", 18),
    ("Date Received", 14),
    ("Comments", 25),
    ("NEW SUPPLIER?", 14),
    ("Original Name", 30),
]
STATUS_COL = 8
DAYS_COL = 11
NEW_SUPPLIER_COL = 16

HEADER_FILL = PatternFill("solid", fgColor="4472C4")
NEW_SUPPLIER_HEADER_FILL = PatternFill("solid", fgColor="9C27B0")
ZEBRA_FILL = PatternFill("solid", fgColor="F5F5F5")
THIN_BORDER = Border(*(Side(style="thin", color="D9D9D9") for _ in range(4)))

# status -> (fill, font colour)
STATUS_STYLES = {
    STATUS_EXPIRED: (PatternFill("solid", fgColor="FFCCCC"), "9C0006"),
    STATUS_UP_TO_DATE: (PatternFill("solid", fgColor="C6EFCE"), "006100"),
}
WARNING_STYLE = (PatternFill("solid", fgColor="FFEB9C"), "9C5700")
NEW_SUPPLIER_STYLE = (PatternFill("solid", fgColor="E1BEE7"), "6A1B9A")


def feeder_row(record: CertificateRecord, today: date) -> list[Any]:
    expiry = record.effective_expiry
    days = days_to_expiry(expiry, today)
    return [
        record.matched_account or "",
        record.supplier_name,
        record.country,
        record.scope,
        record.measure,
        record.certification,
        record.product_category,
        expiry_status(days),
        record.issue_date,
        expiry,
        days if days is not None else "",
        "",
        "",
        "",
        "",
        "YES - NEW" if record.is_new_supplier else "",
        record.original_supplier_name or "",
    ]


def _style_header(ws) -> None:
    font = Font(bold=True, color="FFFFFF")
    for cell in ws[1]:
        cell.font = font
        cell.fill = NEW_SUPPLIER_HEADER_FILL if cell.column == NEW_SUPPLIER_COL else HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
    ws.row_dimensions[1].height = 25
    ws.freeze_panes = "A2"
    for index, (_, width) in enumerate(FEEDER_COLUMNS, start=1):
        ws.column_dimensions[get_column_letter(index)].width = width


def _style_data_row(ws, row_idx: int, days: Any) -> None:
    cells = ws[row_idx]
    status = cells[STATUS_COL - 1].value
    fill, color = STATUS_STYLES.get(status, WARNING_STYLE)
    if status == STATUS_UP_TO_DATE and isinstance(days, int) and days < EXPIRING_SOON_DAYS:
        fill, color = WARNING_STYLE
    for cell in cells:
        cell.border = THIN_BORDER
        if row_idx % 2 == 0 and cell.column not in (STATUS_COL, DAYS_COL, NEW_SUPPLIER_COL):
            cell.fill = ZEBRA_FILL
    for column in (STATUS_COL, DAYS_COL):
        cells[column - 1].fill = fill
        cells[column - 1].font = Font(bold=True, color=color)
    flag = cells[NEW_SUPPLIER_COL - 1]
    if flag.value:
        flag.fill, flag_color = NEW_SUPPLIER_STYLE
        flag.font = Font(bold=True, color=flag_color)


def write_feeder_workbook(plan: ExportPlan, today: date | None = None) -> bytes:
    """Build the standalone review workbook for the plan's certificates."""
    today = today or date.today()
    workbook = Workbook()
    ws = workbook.active
    ws.title = SHEET_TITLE
    ws.append([header for header, _ in FEEDER_COLUMNS])
    _style_header(ws)

    ordered = sorted(plan.records, key=lambda record: record.supplier_name.lower())
    for record in ordered:
        values = feeder_row(record, today)
        ws.append(values)
        _style_data_row(ws, ws.max_row, values[DAYS_COL - 1])

    buffer = io.BytesIO()
    workbook.save(buffer)
    logger.info("Feeder workbook: %d row(s)", len(ordered))
    return buffer.getvalue()


def build_feeder_summary(*, input_path, output_path, plan: ExportPlan) -> dict[str, Any]:
    contract = build_contract("cert_sync.feeder_summary")
    warnings = []
    if not plan.has_master:
        warnings.append("No master file loaded; every supplier is flagged as new.")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "stats": dict(plan.stats),
        "new_suppliers": list(plan.new_suppliers),
        "run_summary": build_run_summary(
            command="feeder",
            input_path=input_path,
            output_path=output_path,
            metrics=dict(plan.stats),
            warnings=warnings,
        ),
    }
