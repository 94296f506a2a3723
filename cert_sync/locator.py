from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, fields
from typing import Iterable

from cert_sync.errors import StructureError

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 10
SHEET_SCAN_LIMIT = 10
DEFAULT_HEADER_ROW = 3
SKIPPED_SHEET_NAME = "instructions"
WHITESPACE_RE = re.compile(r"\s+")

# Layout used when no header row can be found.
DEFAULT_COLUMN_MAP = {
    "supplier account": 1,
    "supplier name": 2,
    "country": 3,
    "scope": 4,
    "measure": 5,
    "certification": 6,
    "product category": 7,
    "status": 8,
    "issued": 9,
    "date of expiry": 10,
    "days to expire": 11,
    "contact person & email": 12,
    "date request sent": 13,
    "date received": 14,
    "comments": 15,
}

COLUMN_ALIASES = {
    "account": ("supplier account", "account"),
    "name": ("supplier name", "supplier"),
    "country": ("country",),
    "scope": ("scope",),
    "measure": ("measure", "ec regulation"),
    "certification": ("certification", "certificate"),
    "product_category": ("product category",),
    "status": ("status",),
    "issued": ("issued", "date issued", "issue date"),
    "expiry": ("date of expiry", "expiry date", "expiry"),
    "days": ("days to expire", "days to expiry"),
    "contact": ("contact person & email", "contact person", "contact"),
    "request_sent": ("date request sent", "request sent"),
    "received": ("date received", "received"),
    "comments": ("comments", "comment"),
}


@dataclass
class ColumnSet:
    account: int | None = None
    name: int | None = None
    country: int | None = None
    scope: int | None = None
    measure: int | None = None
    certification: int | None = None
    product_category: int | None = None
    status: int | None = None
    issued: int | None = None
    expiry: int | None = None
    days: int | None = None
    contact: int | None = None
    request_sent: int | None = None
    received: int | None = None
    comments: int | None = None

    @property
    def formula_columns(self) -> set[int]:
        return {column for column in (self.status, self.days) if column is not None}

    @property
    def identity_columns(self) -> list[int]:
        return [column for column in (self.account, self.name, self.country) if column is not None]

    def as_dict(self) -> dict[str, int | None]:
        return {item.name: getattr(self, item.name) for item in fields(self)}


@dataclass
class SheetLayout:
    worksheet: object
    header_row: int
    column_map: dict[str, int] = field(default_factory=dict)
    columns: ColumnSet = field(default_factory=ColumnSet)
    used_default_header: bool = False

    @property
    def sheet_name(self) -> str:
        return self.worksheet.title


def normalize_header(value) -> str:
    if value is None:
        return ""
    return WHITESPACE_RE.sub(" ", str(value).strip().lower())


def _row_headers(worksheet, row_idx: int) -> list[tuple[int, str]]:
    headers = []
    for cell in next(worksheet.iter_rows(min_row=row_idx, max_row=row_idx), ()):
        text = normalize_header(cell.value)
        if text:
            headers.append((cell.column, text))
    return headers


def _has_supplier_header(worksheet) -> bool:
    for row_idx in range(1, min(worksheet.max_row, HEADER_SCAN_ROWS) + 1):
        for _, text in _row_headers(worksheet, row_idx):
            if "supplier name" in text or "supplier account" in text:
                return True
    return False


def locate_sheet(workbook, known_names: Iterable[str] = ("Certs 2025",)):
    sheets = workbook.worksheets
    if not sheets:
        raise StructureError("No worksheet found in Master File")
    wanted = {name.strip().lower() for name in known_names}
    for sheet in sheets:
        if sheet.title.strip().lower() in wanted:
            return sheet
    for sheet in sheets[:SHEET_SCAN_LIMIT]:
        if _has_supplier_header(sheet):
            return sheet
    for sheet in sheets:
        if sheet.title.strip().lower() != SKIPPED_SHEET_NAME:
            return sheet
    return sheets[0]


def find_header_info(worksheet) -> tuple[int, dict[str, int], bool]:
    """Return ``(header_row, column_map, used_default)`` for a data sheet."""
    for row_idx in range(1, min(worksheet.max_row, HEADER_SCAN_ROWS) + 1):
        headers = _row_headers(worksheet, row_idx)
        if not any("supplier name" in text for _, text in headers):
            continue
        column_map: dict[str, int] = {}
        for column, text in headers:
            column_map.setdefault(text, column)
        return row_idx, column_map, False
    logger.info("No header row found on %r; using the default layout", worksheet.title)
    return DEFAULT_HEADER_ROW, dict(DEFAULT_COLUMN_MAP), True


def resolve_columns(column_map: dict[str, int]) -> ColumnSet:
    columns = ColumnSet()
    for attr, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in column_map:
                setattr(columns, attr, column_map[alias])
                break
    if columns.name is None:
        columns.name = next((col for text, col in column_map.items() if "supplier name" in text), None)
    return columns


def locate_layout(workbook, known_names: Iterable[str] = ("Certs 2025",)) -> SheetLayout:
    worksheet = locate_sheet(workbook, known_names)
    header_row, column_map, used_default = find_header_info(worksheet)
    columns = resolve_columns(column_map)
    if columns.name is None:
        raise StructureError(f"Sheet {worksheet.title!r} has no supplier name column")
    logger.debug("Data sheet %r, header row %d, columns %s", worksheet.title, header_row, columns.as_dict())
    return SheetLayout(
        worksheet=worksheet,
        header_row=header_row,
        column_map=column_map,
        columns=columns,
        used_default_header=used_default,
    )
