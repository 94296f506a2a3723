from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from openpyxl.formula.tokenizer import Token, Tokenizer, TokenizerError
from openpyxl.formula.translate import Translator
from openpyxl.worksheet.cell_range import CellRange, MultiCellRange
from openpyxl.worksheet.formula import ArrayFormula

logger = logging.getLogger(__name__)

CELL_PART_RE = re.compile(r"^(\$?)([A-Za-z]{1,3})(\$?)(\d+)$")
ROW_PART_RE = re.compile(r"^(\$?)(\d+)$")
COLUMN_PART_RE = re.compile(r"^\$?[A-Za-z]{1,3}$")


def is_formula(value) -> bool:
    """Formula-looking text. Use :func:`is_formula_cell` for cells."""
    if isinstance(value, ArrayFormula):
        return True
    return isinstance(value, str) and value.startswith("=") and len(value) > 1


def is_formula_cell(cell) -> bool:
    """True for real formula cells; text that merely starts with ``=`` is not one."""
    if isinstance(cell.value, ArrayFormula):
        return True
    return cell.data_type == "f" and is_formula(cell.value)


def translate_formula(formula: str, origin: str, dest: str) -> str:
    return Translator(formula, origin=origin).translate_formula(dest)


def _unquote_sheet(name: str) -> str:
    if len(name) >= 2 and name[0] == "'" and name[-1] == "'":
        return name[1:-1].replace("''", "'")
    return name


def _shift_part(part: str, start_row: int, delta: int) -> str | None:
    match = CELL_PART_RE.match(part)
    if match:
        col_abs, col, row_abs, row_text = match.groups()
        row_number = int(row_text)
        if row_number >= start_row:
            row_number += delta
        return f"{col_abs}{col}{row_abs}{row_number}"
    match = ROW_PART_RE.match(part)
    if match:
        row_abs, row_text = match.groups()
        row_number = int(row_text)
        if row_number >= start_row:
            row_number += delta
        return f"{row_abs}{row_number}"
    if COLUMN_PART_RE.match(part):
        return part
    return None


def shift_reference(reference: str, start_row: int, delta: int) -> str:
    """Shift one range operand (``A1``, ``$A$2:B9``, ``'S'!3:5``) for a row insert.

    Names and anything else that is not a plain reference come back unchanged.
    """
    prefix = ""
    cells = reference
    if "!" in reference:
        sheet, _, cells = reference.rpartition("!")
        prefix = sheet + "!"
    shifted = []
    for part in cells.split(":"):
        new_part = _shift_part(part, start_row, delta)
        if new_part is None:
            return reference
        shifted.append(new_part)
    return prefix + ":".join(shifted)


def shift_formula_for_row_insert(
    formula: str,
    *,
    formula_sheet: str,
    target_sheet: str,
    start_row: int,
    delta: int = 1,
) -> str:
    """Rewrite references to rows >= ``start_row`` of ``target_sheet``.

    ``formula_sheet`` is the sheet the formula lives on; unqualified references
    only move when it is the target sheet. Absolute rows move too, since the
    rows they point at have moved.
    """
    if not is_formula(formula) or delta == 0:
        return formula
    target = target_sheet.lower()
    own_sheet = formula_sheet.lower() == target
    if not own_sheet and target_sheet.lower() not in formula.lower():
        return formula
    tokenizer = Tokenizer(formula)
    changed = False
    for token in tokenizer.items:
        if token.type != Token.OPERAND or token.subtype != Token.RANGE:
            continue
        if "!" in token.value:
            sheet = _unquote_sheet(token.value.rpartition("!")[0])
            if sheet.lower() != target:
                continue
        elif not own_sheet:
            continue
        shifted = shift_reference(token.value, start_row, delta)
        if shifted != token.value:
            token.value = shifted
            changed = True
    if not changed:
        return formula
    return tokenizer.render()


def _shift_cell_range(cell_range: CellRange, start_row: int, delta: int) -> bool:
    if cell_range.min_row >= start_row:
        cell_range.shift(row_shift=delta)
        return True
    if cell_range.max_row >= start_row:
        cell_range.expand(down=delta)
        return True
    return False


@dataclass
class RowInsertShift:
    """Reference rewrites for one row insert, computed before anything moves.

    openpyxl's ``insert_rows`` moves cells but not the references to them.
    Every rewrite is worked out up front, so a formula that cannot be parsed
    fails the insert while the workbook is still untouched. ``apply`` only
    assigns precomputed values. The cell objects are the ones
    ``insert_rows`` moves, so it may run before or after the insert.
    """

    worksheet: Any
    start_row: int
    delta: int
    cells: list[tuple[Any, Any]] = field(default_factory=list)
    names: list[tuple[Any, str]] = field(default_factory=list)

    @property
    def formulas_rewritten(self) -> int:
        return len(self.cells)

    def apply(self) -> int:
        for cell, value in self.cells:
            cell.value = value
        for defined_name, text in self.names:
            defined_name.attr_text = text

        for merged in list(self.worksheet.merged_cells.ranges):
            _shift_cell_range(merged, self.start_row, self.delta)

        for validation in self.worksheet.data_validations.dataValidation:
            ranges = []
            for cell_range in validation.sqref.ranges:
                moved = CellRange(cell_range.coord)
                _shift_cell_range(moved, self.start_row, self.delta)
                ranges.append(moved.coord)
            validation.sqref = MultiCellRange(" ".join(ranges))

        dimensions = self.worksheet.row_dimensions
        for index in sorted((index for index in list(dimensions) if index >= self.start_row), reverse=True):
            dimension = dimensions.pop(index)
            dimension.index = index + self.delta
            dimensions[index + self.delta] = dimension

        logger.debug(
            "Row insert at %s!%d rewrote %d formula(s)", self.worksheet.title, self.start_row, len(self.cells)
        )
        return len(self.cells)


def _shifted(formula: str, *, location: str, **kwargs) -> str:
    try:
        return shift_formula_for_row_insert(formula, **kwargs)
    except TokenizerError as exc:
        raise ValueError(f"Cannot adjust formula {formula!r} in {location} for the new row: {exc}") from exc


def plan_row_insert_shift(workbook, worksheet, start_row: int, delta: int = 1) -> RowInsertShift:
    """Work out every reference rewrite an insert at ``start_row`` needs.

    Covers formulas on every sheet and workbook defined names. Raises
    ``ValueError`` when a formula cannot be parsed. Nothing is changed here.
    """
    title = worksheet.title
    plan = RowInsertShift(worksheet=worksheet, start_row=start_row, delta=delta)
    for sheet in workbook.worksheets:
        for row in sheet.iter_rows():
            for cell in row:
                if not is_formula_cell(cell):
                    continue
                value = cell.value
                kwargs = {"formula_sheet": sheet.title, "target_sheet": title, "start_row": start_row, "delta": delta}
                location = f"{sheet.title}!{cell.coordinate}"
                if isinstance(value, ArrayFormula):
                    new_text = _shifted(value.text, location=location, **kwargs)
                    if new_text != value.text:
                        ref = value.ref
                        if sheet is worksheet:
                            ref = shift_reference(ref, start_row, delta)
                        plan.cells.append((cell, ArrayFormula(ref, new_text)))
                    continue
                new_value = _shifted(value, location=location, **kwargs)
                if new_value != value:
                    plan.cells.append((cell, new_value))

    for name, defined_name in workbook.defined_names.items():
        text = defined_name.attr_text
        if not text:
            continue
        shifted = _shifted(
            "=" + text, location=f"defined name {name}",
            formula_sheet="", target_sheet=title, start_row=start_row, delta=delta,
        )
        if shifted[1:] != text:
            plan.names.append((defined_name, shifted[1:]))
    return plan


def shift_workbook_for_row_insert(workbook, worksheet, start_row: int, delta: int = 1) -> int:
    """Plan and apply the reference rewrites for a row insert in one go.

    Returns the number of formulas rewritten.
    """
    return plan_row_insert_shift(workbook, worksheet, start_row, delta).apply()
