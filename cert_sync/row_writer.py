from __future__ import annotations

import logging
from copy import copy
from datetime import date
from typing import Any

from openpyxl.formula.translate import TranslatorError

from cert_sync.formulas import is_formula_cell, plan_row_insert_shift, translate_formula
from cert_sync.locator import SheetLayout
from cert_sync.placement import Placement, RenderedValues, file_name_recorded, row_has_content
from cert_sync.records import (
    NO_DATE_TEXT,
    CertificateRecord,
    clean_text,
    days_to_expiry,
    expiry_status,
    is_date_sentinel,
    parse_date,
)

logger = logging.getLogger(__name__)

SCOPE_FONT_COLOR = "FFFF0000"
TEXT_NUMBER_FORMAT = "@"
CENTERED_COLUMNS = ("scope", "status", "issued", "expiry", "days", "request_sent", "received")
COMMENT_SEPARATOR = "; "


def date_cell_value(value: Any) -> Any:
    """Date object when parseable, the raw text otherwise, None when blank."""
    if is_date_sentinel(value):
        return None
    parsed = parse_date(value)
    return parsed if parsed is not None else clean_text(value)


def set_literal(cell, value: Any) -> None:
    """Store ``value`` as data. Text starting with ``=`` stays text."""
    cell.value = value
    if isinstance(value, str) and value.startswith("="):
        cell.data_type = "s"


def copy_cell_style(source, target) -> None:
    if not source.has_style:
        return
    target.font = copy(source.font)
    target.border = copy(source.border)
    target.fill = copy(source.fill)
    target.number_format = source.number_format
    target.protection = copy(source.protection)
    target.alignment = copy(source.alignment)


class RowWriter:
    """Writes certificates into the located data sheet one row at a time."""

    def __init__(self, workbook, layout: SheetLayout, rendered: RenderedValues, today: date | None = None) -> None:
        self.workbook = workbook
        self.layout = layout
        self.worksheet = layout.worksheet
        self.columns = layout.columns
        self.rendered = rendered
        self.today = today or date.today()
        self.warnings: list[str] = []
        # Set once a write has started changing the workbook and cleared when
        # it completes; a failure while set leaves the workbook half-written.
        self.mutating = False

    # -- insertion -------------------------------------------------------

    def insert_certificate(self, record: CertificateRecord, placement: Placement) -> int:
        ws = self.worksheet
        row = placement.row
        shift = plan_row_insert_shift(self.workbook, ws, row)

        self.mutating = True
        ws.insert_rows(row)
        shift.apply()

        style_row = self._style_source_row(row, placement)
        if style_row is not None:
            self._copy_row_format(style_row, row)

        expiry = record.effective_expiry
        days = days_to_expiry(expiry, self.today)
        self._clone_formulas(row, days)

        self._write_identity(record, row, placement)
        self._write_business_columns(record, row, expiry)
        self._apply_alignment(row)
        self.mutating = False
        logger.info("Inserted %r / %r at %s!%d", record.supplier_name, record.certification, ws.title, row)
        return row

    def _style_source_row(self, row: int, placement: Placement) -> int | None:
        above = row - 1
        if above <= self.layout.header_row:
            return None
        if row_has_content(self.worksheet, above, self.columns, self.rendered):
            return above
        # Blank separator row above a new block: borrow the last data row's look.
        if placement.true_last_row > self.layout.header_row:
            return placement.true_last_row
        return above

    def _copy_row_format(self, source_row: int, target_row: int) -> None:
        ws = self.worksheet
        height = ws.row_dimensions[source_row].height
        if height is not None:
            ws.row_dimensions[target_row].height = height
        for column in range(1, ws.max_column + 1):
            source = ws.cell(row=source_row, column=column)
            target = ws.cell(row=target_row, column=column)
            copy_cell_style(source, target)
            for validation in ws.data_validations.dataValidation:
                if source.coordinate in validation.sqref and target.coordinate not in validation.sqref:
                    validation.add(target.coordinate)

    def _formula_template_row(self, row: int) -> int | None:
        days_column = self.columns.days
        if days_column is None:
            return None
        for candidate in range(row - 1, self.layout.header_row, -1):
            if is_formula_cell(self.worksheet.cell(row=candidate, column=days_column)):
                return candidate
        return None

    def _clone_formulas(self, row: int, days: int | None) -> None:
        ws = self.worksheet
        template_row = self._formula_template_row(row)
        if template_row is None:
            message = f"{ws.title}!{row}: no formula row above to copy status/days formulas from"
            logger.warning(message)
            self.warnings.append(message)
            return
        for column in range(1, ws.max_column + 1):
            source = ws.cell(row=template_row, column=column)
            if not is_formula_cell(source) or not isinstance(source.value, str):
                continue
            target = ws.cell(row=row, column=column)
            try:
                target.value = translate_formula(source.value, source.coordinate, target.coordinate)
            except TranslatorError as exc:
                message = f"{target.coordinate}: could not copy formula {source.value!r} ({exc})"
                logger.warning(message)
                self.warnings.append(message)
                continue
            self.rendered.set(target, self._cached_result(column, days))

    def _cached_result(self, column: int, days: int | None) -> Any:
        if column == self.columns.status:
            return expiry_status(days)
        if column == self.columns.days:
            return days
        return None

    def _write_identity(self, record: CertificateRecord, row: int, placement: Placement) -> None:
        ws = self.worksheet
        if placement.joins_existing_block:
            for column in self.columns.identity_columns:
                ws.cell(row=row, column=column).value = ""
            return
        values = {
            self.columns.account: record.matched_account or "",
            self.columns.name: record.supplier_name,
            self.columns.country: record.country,
        }
        for column, value in values.items():
            if column is not None:
                set_literal(ws.cell(row=row, column=column), value)

    def _write_business_columns(self, record: CertificateRecord, row: int, expiry: str) -> None:
        ws = self.worksheet
        cols = self.columns
        literal = {
            cols.measure: record.measure,
            cols.certification: record.certification,
            cols.product_category: record.product_category,
            cols.issued: date_cell_value(record.issue_date),
            cols.expiry: date_cell_value(expiry) or NO_DATE_TEXT,
            cols.comments: record.file_name,
        }
        for column, value in literal.items():
            if column is None or column in cols.formula_columns:
                continue
            set_literal(ws.cell(row=row, column=column), value if value != "" else None)
        self._write_scope(row, record.scope)

    def _write_scope(self, row: int, scope: str) -> None:
        if self.columns.scope is None:
            return
        cell = self.worksheet.cell(row=row, column=self.columns.scope)
        cell.number_format = TEXT_NUMBER_FORMAT
        font = copy(cell.font)
        font.color = SCOPE_FONT_COLOR
        cell.font = font
        set_literal(cell, scope or None)

    def _apply_alignment(self, row: int) -> None:
        centered = {getattr(self.columns, name) for name in CENTERED_COLUMNS} - {None}
        for column in range(1, self.worksheet.max_column + 1):
            cell = self.worksheet.cell(row=row, column=column)
            alignment = copy(cell.alignment)
            alignment.horizontal = "center" if column in centered else "left"
            cell.alignment = alignment

    # -- update in place -------------------------------------------------

    def update_certificate(self, record: CertificateRecord, row: int) -> bool:
        """Refresh an existing certificate row. Returns True when the file name was new."""
        ws = self.worksheet
        cols = self.columns
        expiry = record.effective_expiry
        issued = date_cell_value(record.issue_date)
        days = days_to_expiry(expiry, self.today)

        self.mutating = True
        if cols.issued is not None and issued is not None:
            set_literal(ws.cell(row=row, column=cols.issued), issued)
        if cols.expiry is not None:
            set_literal(ws.cell(row=row, column=cols.expiry), date_cell_value(expiry) or NO_DATE_TEXT)
        if record.scope:
            self._write_scope(row, record.scope)

        added = self._append_comment(row, record.file_name)

        for column in cols.formula_columns:
            cell = ws.cell(row=row, column=column)
            if is_formula_cell(cell):
                self.rendered.set(cell, self._cached_result(column, days))
        self.mutating = False
        logger.info("Updated %r / %r at %s!%d", record.supplier_name, record.certification, ws.title, row)
        return added

    def _append_comment(self, row: int, file_name: str) -> bool:
        if self.columns.comments is None or not file_name:
            return False
        cell = self.worksheet.cell(row=row, column=self.columns.comments)
        existing = clean_text(self.rendered.value(cell))
        if file_name_recorded(existing, file_name):
            return False
        set_literal(cell, f"{existing}{COMMENT_SEPARATOR}{file_name}" if existing else file_name)
        return True
