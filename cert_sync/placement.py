"""Decide where a certificate lands in the master sheet.

Every lookup here reads the live worksheet. Row numbers move with each
insert, so nothing is cached between records: callers resolve a fresh
:class:`Placement` before each write.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from cert_sync.formulas import is_formula_cell
from cert_sync.locator import ColumnSet
from cert_sync.names import skeleton_key
from cert_sync.records import CertificateRecord

logger = logging.getLogger(__name__)

MIN_CERTIFICATION_MATCH_LEN = 5
COMMENT_SPLIT_RE = re.compile(r"[;\n]")
COPY_SUFFIX_RE = re.compile(r"(?:\s*\(\d+\)|\s+-\s+copy(?:\s*\(\d+\))?)$", re.IGNORECASE)


def display_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


class RenderedValues:
    """What each formula cell displays, keyed by the cell object itself.

    openpyxl keeps the same ``Cell`` instances when rows are inserted, so the
    mapping stays valid across inserts without any offset bookkeeping.
    """

    def __init__(self) -> None:
        self._values: dict[Any, Any] = {}

    @classmethod
    def from_workbooks(cls, formula_workbook, value_workbook) -> "RenderedValues":
        rendered = cls()
        for sheet in formula_workbook.worksheets:
            if sheet.title not in value_workbook.sheetnames:
                continue
            values = value_workbook[sheet.title]
            for row in sheet.iter_rows():
                for cell in row:
                    if is_formula_cell(cell):
                        rendered.set(cell, values.cell(row=cell.row, column=cell.column).value)
        return rendered

    def __len__(self) -> int:
        return len(self._values)

    def set(self, cell, value: Any) -> None:
        self._values[cell] = value

    def value(self, cell) -> Any:
        if is_formula_cell(cell):
            return self._values.get(cell)
        return cell.value

    def text(self, cell) -> str:
        return display_text(self.value(cell))

    def cached_by_sheet(self) -> dict[str, dict[str, Any]]:
        """Known formula results as sheet title -> coordinate -> value."""
        by_sheet: dict[str, dict[str, Any]] = {}
        for cell, value in self._values.items():
            if value is None or not is_formula_cell(cell):
                continue
            by_sheet.setdefault(cell.parent.title, {})[cell.coordinate] = value
        return by_sheet


@dataclass
class SupplierBlock:
    first_row: int
    last_row: int

    @property
    def rows(self) -> range:
        return range(self.first_row, self.last_row + 1)


@dataclass
class Placement:
    row: int
    true_last_row: int
    block: SupplierBlock | None = None

    @property
    def joins_existing_block(self) -> bool:
        return self.block is not None


def _text(worksheet, row: int, column: int | None, rendered: RenderedValues) -> str:
    if column is None:
        return ""
    return rendered.text(worksheet.cell(row=row, column=column))


def row_has_content(worksheet, row: int, columns: ColumnSet, rendered: RenderedValues) -> bool:
    for column in (columns.name, columns.certification, columns.measure, columns.issued, columns.expiry):
        if _text(worksheet, row, column, rendered):
            return True
    return False


def find_true_last_row(worksheet, columns: ColumnSet, header_row: int, rendered: RenderedValues) -> int:
    """Last row with visible supplier-name or certification text.

    Scans upward from ``max_row``: formula cells with blank results make
    rows look used long after the real data ends.
    """
    for row in range(worksheet.max_row, header_row, -1):
        if _text(worksheet, row, columns.name, rendered) or _text(worksheet, row, columns.certification, rendered):
            return row
    return header_row


def _scan_blocks(worksheet, columns, header_row, last_row, rendered, matches) -> SupplierBlock | None:
    found = None
    current = None
    for row in range(header_row + 1, last_row + 1):
        account = _text(worksheet, row, columns.account, rendered)
        name = _text(worksheet, row, columns.name, rendered)
        if account or name:
            if matches(account, name):
                if current is not None and row == current.last_row + 1:
                    current.last_row = row
                else:
                    current = SupplierBlock(row, row)
                    found = current
            else:
                current = None
        elif current is not None and row_has_content(worksheet, row, columns, rendered):
            current.last_row = row
        else:
            current = None
    return found


def find_supplier_block(
    worksheet,
    columns: ColumnSet,
    header_row: int,
    last_row: int,
    rendered: RenderedValues,
    *,
    account: str | None = None,
    name: str | None = None,
) -> SupplierBlock | None:
    target_account = (account or "").strip().lower()
    if target_account and columns.account is not None:
        block = _scan_blocks(
            worksheet, columns, header_row, last_row, rendered,
            lambda acct, _name: acct.strip().lower() == target_account,
        )
        if block is not None:
            return block
    target_key = skeleton_key(name)
    if not target_key:
        return None
    return _scan_blocks(
        worksheet, columns, header_row, last_row, rendered,
        lambda _acct, nm: bool(nm) and skeleton_key(nm) == target_key,
    )


def resolve_placement(
    worksheet,
    columns: ColumnSet,
    header_row: int,
    rendered: RenderedValues,
    record: CertificateRecord,
) -> Placement:
    true_last = find_true_last_row(worksheet, columns, header_row, rendered)
    block = find_supplier_block(
        worksheet, columns, header_row, true_last, rendered,
        account=record.matched_account, name=record.supplier_name,
    )
    if block is not None:
        row = block.last_row + 1
    elif true_last <= header_row:
        row = header_row + 1
    else:
        row = true_last + 2
    logger.debug("Placement for %r: row %d (block %s, last data row %d)", record.supplier_name, row, block, true_last)
    return Placement(row=row, true_last_row=true_last, block=block)


def strip_copy_suffix(file_name: str) -> str:
    stem, ext = os.path.splitext(file_name)
    previous = None
    while previous != stem:
        previous = stem
        stem = COPY_SUFFIX_RE.sub("", stem)
    return stem + ext


def _file_name_variants(file_name: str) -> set[str]:
    name = file_name.strip().lower()
    if not name:
        return set()
    return {name, strip_copy_suffix(name)}


def comment_entries(text: str) -> list[str]:
    """File names recorded in a comments cell, in order."""
    return [entry.strip() for entry in COMMENT_SPLIT_RE.split(text or "") if entry.strip()]


def file_name_recorded(comment_text: str, file_name: str) -> bool:
    """Whether ``file_name`` is one of the entries in ``comment_text``.

    Entries are compared whole, case-insensitively, with and without a
    ``" (1)"`` / ``" - Copy"`` suffix on either side.
    """
    wanted = _file_name_variants(file_name)
    if not wanted:
        return False
    for entry in comment_entries(comment_text):
        if wanted & _file_name_variants(entry):
            return True
    return False


def _categories_compatible(incoming: str, existing: str) -> bool:
    incoming = incoming.strip().lower()
    existing = existing.strip().lower()
    return not incoming or not existing or incoming == existing


def find_existing_row(
    worksheet,
    columns: ColumnSet,
    block: SupplierBlock,
    record: CertificateRecord,
    rendered: RenderedValues,
) -> int | None:
    """Row inside ``block`` that already holds this certificate, if any.

    A recorded file name wins over a certification-text match.
    """
    if record.file_name.strip() and columns.comments is not None:
        for row in block.rows:
            if file_name_recorded(_text(worksheet, row, columns.comments, rendered), record.file_name):
                return row

    incoming = record.certification.strip().lower()
    if len(incoming) < MIN_CERTIFICATION_MATCH_LEN or columns.certification is None:
        return None
    for row in block.rows:
        existing = _text(worksheet, row, columns.certification, rendered).lower()
        if len(existing) < MIN_CERTIFICATION_MATCH_LEN:
            continue
        if incoming not in existing and existing not in incoming:
            continue
        category = _text(worksheet, row, columns.product_category, rendered)
        if _categories_compatible(record.product_category, category):
            return row
    return None
