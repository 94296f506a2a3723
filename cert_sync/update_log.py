from __future__ import annotations

import logging
from datetime import datetime

logger = logging.getLogger(__name__)

ATTRIBUTION = "Appended by cert-sync"
DEFAULT_SHEET_NAME = "Update Log"
DEFAULT_SCAN_LIMIT = 100_000


def find_log_sheet(workbook, sheet_name: str = DEFAULT_SHEET_NAME):
    wanted = sheet_name.strip().lower()
    for sheet in workbook.worksheets:
        if sheet.title.strip().lower() == wanted:
            return sheet
    return None


def next_log_row(worksheet, scan_limit: int = DEFAULT_SCAN_LIMIT) -> int:
    # max_row counts formatting-only rows, so look for the first blank key cell instead.
    for row in range(2, scan_limit + 2):
        value = worksheet.cell(row=row, column=1).value
        if value is None or (isinstance(value, str) and not value.strip()):
            return row
    raise ValueError(f"Update Log sheet {worksheet.title!r} has no free row within {scan_limit} rows")


def summarize_counts(inserted: int, updated: int) -> str:
    parts = []
    if inserted:
        parts.append(f"{inserted} certificate(s) added")
    if updated:
        parts.append(f"{updated} certificate(s) updated")
    return ", ".join(parts) or "No changes"


def append_update_log(
    workbook,
    *,
    account: str | None,
    supplier: str,
    summary: str,
    now: datetime | None = None,
    sheet_name: str = DEFAULT_SHEET_NAME,
    scan_limit: int = DEFAULT_SCAN_LIMIT,
) -> int | None:
    """Append one batch summary row; returns its row number, or None without a log sheet."""
    sheet = find_log_sheet(workbook, sheet_name)
    if sheet is None:
        logger.debug("No %r sheet; skipping update log", sheet_name)
        return None
    row = next_log_row(sheet, scan_limit)
    values = [
        (now or datetime.now()).replace(microsecond=0),
        account or "",
        supplier,
        summary,
        ATTRIBUTION,
    ]
    for column, value in enumerate(values, start=1):
        sheet.cell(row=row, column=column).value = value
    logger.info("Update Log row %d: %s", row, summary)
    return row
