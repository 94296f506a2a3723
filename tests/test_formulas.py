from __future__ import annotations

import sys
import unittest
from pathlib import Path

from openpyxl import Workbook
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.datavalidation import DataValidation

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from cert_sync.formulas import (
    is_formula,
    is_formula_cell,
    plan_row_insert_shift,
    shift_formula_for_row_insert,
    shift_reference,
    shift_workbook_for_row_insert,
    translate_formula,
)


def shift(formula: str, start_row: int = 5, *, formula_sheet: str = "Data", target_sheet: str = "Data") -> str:
    return shift_formula_for_row_insert(
        formula, formula_sheet=formula_sheet, target_sheet=target_sheet, start_row=start_row
    )


class ShiftReferenceTests(unittest.TestCase):
    def test_rows_at_or_below_insert_point_move(self):
        self.assertEqual(shift_reference("A5", 5, 1), "A6")
        self.assertEqual(shift_reference("A4", 5, 1), "A4")
        self.assertEqual(shift_reference("$B$9:C12", 5, 2), "$B$11:C14")

    def test_whole_rows_and_columns(self):
        self.assertEqual(shift_reference("3:7", 5, 1), "3:8")
        self.assertEqual(shift_reference("A:C", 5, 1), "A:C")

    def test_sheet_prefix_is_kept(self):
        self.assertEqual(shift_reference("'Certs 2025'!B4:B800", 5, 1), "'Certs 2025'!B4:B801")

    def test_names_are_left_alone(self):
        self.assertEqual(shift_reference("SupplierNames", 5, 1), "SupplierNames")


class ShiftFormulaTests(unittest.TestCase):
    def test_same_sheet_references_move(self):
        self.assertEqual(shift("=SUM(A1:A10)"), "=SUM(A1:A11)")
        self.assertEqual(shift("=A3+B7"), "=A3+B8")
        self.assertEqual(shift("=$J$9-TODAY()"), "=$J$10-TODAY()")

    def test_references_above_insert_point_are_unchanged(self):
        formula = "=A1+B4"
        self.assertIs(shift(formula), formula)

    def test_cross_sheet_reference_to_target_moves(self):
        self.assertEqual(
            shift("=COUNTA('Certs 2025'!B4:B800)", formula_sheet="Summary", target_sheet="Certs 2025"),
            "=COUNTA('Certs 2025'!B4:B801)",
        )

    def test_unqualified_reference_on_other_sheet_stays(self):
        self.assertEqual(shift("=B9*2", formula_sheet="Summary"), "=B9*2")

    def test_reference_to_other_sheet_from_target_stays(self):
        self.assertEqual(shift("=Other!A9+A9"), "=Other!A9+A10")

    def test_string_literals_are_not_references(self):
        self.assertEqual(shift('=IF(A9="A9","x","")'), '=IF(A10="A9","x","")')

    def test_non_formula_passes_through(self):
        self.assertEqual(shift("A9"), "A9")
        self.assertFalse(is_formula("="))
        self.assertTrue(is_formula("=A1"))

    def test_translate_moves_relative_rows(self):
        self.assertEqual(translate_formula('=IF(J4="","",J4-TODAY())', "K4", "K7"), '=IF(J7="","",J7-TODAY())')


class ShiftWorkbookTests(unittest.TestCase):
    def setUp(self):
        self.workbook = Workbook()
        self.ws = self.workbook.active
        self.ws.title = "Data"
        self.summary = self.workbook.create_sheet("Summary")

    def test_formulas_names_merges_and_validations_follow_insert(self):
        self.ws["C20"] = "=SUM(A4:A19)"
        self.summary["A1"] = "=COUNTA(Data!B4:B30)"
        self.workbook.defined_names.add(DefinedName("Names", attr_text="Data!$B$4:$B$30"))
        self.ws.merge_cells("E20:F21")
        self.ws.merge_cells("G5:G15")
        validation = DataValidation(type="list", formula1='"!,+"')
        validation.add("D4:D30")
        self.ws.add_data_validation(validation)

        self.ws.insert_rows(10)
        rewritten = shift_workbook_for_row_insert(self.workbook, self.ws, 10)

        self.assertEqual(self.ws["C21"].value, "=SUM(A4:A20)")
        self.assertEqual(self.summary["A1"].value, "=COUNTA(Data!B4:B31)")
        self.assertEqual(rewritten, 2)
        self.assertEqual(self.workbook.defined_names["Names"].attr_text, "Data!$B$4:$B$31")
        merged = sorted(str(item) for item in self.ws.merged_cells.ranges)
        self.assertEqual(merged, ["E21:F22", "G5:G16"])
        self.assertEqual(str(validation.sqref), "D4:D31")

    def test_unparseable_formula_fails_the_plan_before_anything_moves(self):
        self.ws["C20"] = "=SUM(A4:A19)"
        self.ws["C21"] = '="unterminated'
        self.workbook.defined_names.add(DefinedName("Names", attr_text="Data!$B$4:$B$30"))
        self.ws.merge_cells("E20:F21")

        with self.assertRaises(ValueError) as ctx:
            plan_row_insert_shift(self.workbook, self.ws, 10)

        self.assertIn("Data!C21", str(ctx.exception))
        self.assertEqual(self.ws["C20"].value, "=SUM(A4:A19)")
        self.assertEqual(self.workbook.defined_names["Names"].attr_text, "Data!$B$4:$B$30")
        self.assertEqual([str(item) for item in self.ws.merged_cells.ranges], ["E20:F21"])

    def test_plan_can_be_applied_after_the_insert(self):
        self.ws["C20"] = "=SUM(A4:A19)"
        plan = plan_row_insert_shift(self.workbook, self.ws, 10)
        self.assertEqual(plan.formulas_rewritten, 1)
        self.assertEqual(self.ws["C20"].value, "=SUM(A4:A19)")

        self.ws.insert_rows(10)
        plan.apply()
        self.assertEqual(self.ws["C21"].value, "=SUM(A4:A20)")

    def test_row_heights_move_with_their_rows(self):
        self.ws.row_dimensions[9].height = 18
        self.ws.row_dimensions[12].height = 30
        self.ws.insert_rows(10)
        shift_workbook_for_row_insert(self.workbook, self.ws, 10)
        self.assertEqual(self.ws.row_dimensions[9].height, 18)
        self.assertEqual(self.ws.row_dimensions[13].height, 30)
        self.assertIsNone(self.ws.row_dimensions[12].height)

    def test_text_starting_with_equals_is_not_rewritten(self):
        note = self.ws["C20"]
        note.value = "=A12 checked by phone"
        note.data_type = "s"

        self.ws.insert_rows(10)
        rewritten = shift_workbook_for_row_insert(self.workbook, self.ws, 10)

        self.assertEqual(rewritten, 0)
        self.assertEqual(self.ws["C21"].value, "=A12 checked by phone")
        self.assertEqual(self.ws["C21"].data_type, "s")


class FormulaCellTests(unittest.TestCase):
    def test_only_real_formula_cells_count(self):
        ws = Workbook().active
        ws["A1"] = "=B1*2"
        ws["A2"] = "=B2 per supplier"
        ws["A2"].data_type = "s"
        ws["A3"] = 12
        ws["A4"] = "plain"
        self.assertTrue(is_formula_cell(ws["A1"]))
        self.assertFalse(is_formula_cell(ws["A2"]))
        self.assertFalse(is_formula_cell(ws["A3"]))
        self.assertFalse(is_formula_cell(ws["A4"]))


if __name__ == "__main__":
    unittest.main()
