from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "tests"))

from cert_sync.exporter import load_master_workbooks
from cert_sync.locator import locate_layout
from cert_sync.placement import (
    RenderedValues,
    SupplierBlock,
    display_text,
    file_name_recorded,
    find_existing_row,
    find_supplier_block,
    find_true_last_row,
    resolve_placement,
    strip_copy_suffix,
)
from cert_sync.records import CertificateRecord
from master_fixtures import build_master_bytes


class PlacementTests(unittest.TestCase):
    def setUp(self):
        self.workbook, values = load_master_workbooks(build_master_bytes())
        self.rendered = RenderedValues.from_workbooks(self.workbook, values)
        self.layout = locate_layout(self.workbook)
        self.ws = self.layout.worksheet
        self.columns = self.layout.columns

    def place(self, record: CertificateRecord):
        return resolve_placement(self.ws, self.columns, self.layout.header_row, self.rendered, record)

    def test_formula_rows_do_not_count_as_data(self):
        self.assertEqual(self.ws.max_row, 800)
        self.assertEqual(find_true_last_row(self.ws, self.columns, 3, self.rendered), 12)

    def test_rendered_values_cover_every_formula_cell(self):
        # status and days formulas on rows 4..800, plus the Summary count
        self.assertEqual(len(self.rendered), 2 * 797 + 1)
        self.assertEqual(self.rendered.text(self.ws["H500"]), "")
        self.assertEqual(self.rendered.text(self.ws["B4"]), "Alpha Packaging Ltd")

    def test_block_extends_over_continuation_rows(self):
        block = find_supplier_block(self.ws, self.columns, 3, 12, self.rendered, account="ACC003")
        self.assertEqual((block.first_row, block.last_row), (9, 12))

    def test_block_found_by_name_when_account_is_unknown(self):
        block = find_supplier_block(self.ws, self.columns, 3, 12, self.rendered, account="NOPE", name="Beta Films")
        self.assertEqual((block.first_row, block.last_row), (7, 7))

    def test_existing_supplier_goes_after_its_block(self):
        placement = self.place(CertificateRecord(supplier_name="Alpha Packaging Ltd", matched_account="ACC001"))
        self.assertEqual(placement.row, 6)
        self.assertTrue(placement.joins_existing_block)
        self.assertEqual(placement.true_last_row, 12)

    def test_new_supplier_goes_two_rows_below_last_data(self):
        placement = self.place(CertificateRecord(supplier_name="Delta Cups Srl"))
        self.assertEqual(placement.row, 14)
        self.assertIsNone(placement.block)

    def test_empty_sheet_starts_under_header(self):
        workbook, values = load_master_workbooks(build_master_bytes(rows={}, formula_rows=50))
        layout = locate_layout(workbook)
        rendered = RenderedValues.from_workbooks(workbook, values)
        placement = resolve_placement(
            layout.worksheet, layout.columns, layout.header_row, rendered, CertificateRecord(supplier_name="Delta")
        )
        self.assertEqual(placement.row, 4)

    def test_existing_row_found_by_file_name_including_copy_suffix(self):
        block = SupplierBlock(4, 5)
        record = CertificateRecord(supplier_name="Alpha", certification="Other", file_name="din_alpha (1).pdf")
        self.assertEqual(find_existing_row(self.ws, self.columns, block, record, self.rendered), 5)

    def test_file_name_contained_in_another_entry_is_not_a_match(self):
        block = SupplierBlock(9, 12)
        record = CertificateRecord(supplier_name="Gamma", certification="BRCGS Packaging", file_name="gamma.pdf")
        self.assertIsNone(find_existing_row(self.ws, self.columns, block, record, self.rendered))

    def test_existing_row_found_by_certification_containment(self):
        block = SupplierBlock(9, 12)
        record = CertificateRecord(certification="FSSC 22000 v5.1", product_category="carton", file_name="new.png")
        self.assertEqual(find_existing_row(self.ws, self.columns, block, record, self.rendered), 9)

    def test_category_mismatch_blocks_certification_match(self):
        block = SupplierBlock(9, 12)
        record = CertificateRecord(certification="FSSC 22000", product_category="Cup", file_name="new.png")
        self.assertIsNone(find_existing_row(self.ws, self.columns, block, record, self.rendered))

    def test_short_certification_text_never_matches(self):
        block = SupplierBlock(9, 12)
        record = CertificateRecord(certification="FSC", file_name="new.png")
        self.assertIsNone(find_existing_row(self.ws, self.columns, block, record, self.rendered))


class HelperTests(unittest.TestCase):
    def test_strip_copy_suffix(self):
        self.assertEqual(strip_copy_suffix("cert (2).pdf"), "cert.pdf")
        self.assertEqual(strip_copy_suffix("cert - Copy.pdf"), "cert.pdf")
        self.assertEqual(strip_copy_suffix("cert - Copy (3) (1).pdf"), "cert.pdf")
        self.assertEqual(strip_copy_suffix("cert.pdf"), "cert.pdf")

    def test_file_name_recorded_compares_whole_entries(self):
        comments = "fssc_gamma.pdf; Renewal - Copy.png\nold.pdf"
        self.assertTrue(file_name_recorded(comments, "FSSC_gamma.pdf"))
        self.assertTrue(file_name_recorded(comments, "fssc_gamma (2).pdf"))
        self.assertTrue(file_name_recorded(comments, "renewal.png"))
        self.assertTrue(file_name_recorded(comments, "old.pdf"))
        self.assertFalse(file_name_recorded(comments, "gamma.pdf"))
        self.assertFalse(file_name_recorded(comments, "a.pdf"))
        self.assertFalse(file_name_recorded(comments, "  "))
        self.assertFalse(file_name_recorded("", "gamma.pdf"))

    def test_display_text(self):
        self.assertEqual(display_text(12.0), "12")
        self.assertEqual(display_text(None), "")
        self.assertEqual(display_text(" x "), "x")


if __name__ == "__main__":
    unittest.main()
