from __future__ import annotations

import sys
import unittest
from pathlib import Path

from openpyxl import Workbook

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "tests"))

from cert_sync.errors import ParseError, StructureError
from cert_sync.records import CertificateRecord
from cert_sync.suppliers import (
    SupplierEntry,
    SupplierIndex,
    apply_supplier_matching,
    build_supplier_index,
    match_supplier,
)
from master_fixtures import build_master_bytes, workbook_bytes


def index_of(*names: str) -> SupplierIndex:
    index = SupplierIndex()
    for position, name in enumerate(names, start=1):
        index.add(SupplierEntry(official_name=name, account_code=f"ACC{position:03d}"))
    return index


class SupplierIndexTests(unittest.TestCase):
    def test_master_fixture_yields_one_entry_per_supplier(self):
        index = build_supplier_index(build_master_bytes(), "master.xlsx")
        self.assertEqual(index.sheet_name, "Certs 2025")
        self.assertEqual(index.header_row, 3)
        self.assertEqual(len(index), 3)
        alpha = index.find_by_name("ALPHA packaging")
        self.assertEqual(alpha.official_name, "Alpha Packaging Ltd")
        self.assertEqual(alpha.account_code, "ACC001")
        self.assertEqual(alpha.country, "Germany")

    def test_first_row_wins_for_duplicate_keys(self):
        workbook = Workbook()
        ws = workbook.active
        ws.append(["Supplier Account", "Supplier Name", "Country"])
        ws.append([101, "Omega Ltd", "France"])
        ws.append([102, "OMEGA Limited", "Spain"])
        index = build_supplier_index(workbook_bytes(workbook))
        self.assertEqual(len(index), 1)
        self.assertEqual(index.get("omega").account_code, "101")

    def test_sheet_with_supplier_header_is_preferred_over_first_sheet(self):
        workbook = Workbook()
        workbook.active.title = "Instructions"
        workbook.active.append(["Read me first"])
        data = workbook.create_sheet("Data")
        data.append(["Supplier Name", "Country"])
        data.append(["Kappa Foils", "Italy"])
        index = build_supplier_index(workbook_bytes(workbook))
        self.assertEqual(index.sheet_name, "Data")
        self.assertIsNotNone(index.find_by_name("Kappa Foils"))

    def test_headerless_sheet_uses_default_columns(self):
        workbook = Workbook()
        workbook.active.append(["Code", "Vendor", "Land"])
        workbook.active.append(["A-1", "Sigma Trading", "Greece"])
        index = build_supplier_index(workbook_bytes(workbook))
        entry = index.find_by_name("Sigma")
        self.assertEqual(entry.account_code, "A-1")
        self.assertEqual(entry.country, "Greece")

    def test_empty_master_raises_structure_error(self):
        workbook = Workbook()
        workbook.active.append(["Supplier Name"])
        with self.assertRaises(StructureError):
            build_supplier_index(workbook_bytes(workbook))

    def test_unreadable_bytes_raise_parse_error(self):
        with self.assertRaises(ParseError):
            build_supplier_index(b"this is not a spreadsheet")


class MatchSupplierTests(unittest.TestCase):
    def test_exact_key_match_has_full_confidence(self):
        result = match_supplier("alpha packaging gmbh", index_of("Alpha Packaging Ltd"))
        self.assertTrue(result.was_matched)
        self.assertEqual(result.matched_name, "Alpha Packaging Ltd")
        self.assertEqual(result.confidence, 1.0)
        self.assertEqual(result.matched_account, "ACC001")

    def test_contained_key_matches_at_point_nine(self):
        result = match_supplier("Beta Film", index_of("Beta Films GmbH"))
        self.assertTrue(result.was_matched)
        self.assertAlmostEqual(result.confidence, 0.9)

    def test_token_overlap_can_carry_a_match(self):
        result = match_supplier("Nordkap Folien Verpackung", index_of("Folien Nordkapp"))
        self.assertTrue(result.was_matched)
        self.assertEqual(result.matched_name, "Folien Nordkapp")
        self.assertAlmostEqual(result.confidence, 0.765)

    def test_unrelated_name_is_a_new_supplier(self):
        result = match_supplier("Zeta Foods", index_of("Alpha Packaging Ltd", "Beta Films GmbH"))
        self.assertFalse(result.was_matched)
        self.assertEqual(result.matched_name, "Zeta Foods")
        self.assertEqual(result.confidence, 0.0)
        self.assertIsNone(result.matched_account)

    def test_threshold_is_respected(self):
        index = index_of("Kappa Foils")
        self.assertTrue(match_supplier("Kapa Foils", index, 0.75).was_matched)
        self.assertFalse(match_supplier("Kapa Foils", index, 0.95).was_matched)

    def test_empty_inputs_never_match(self):
        self.assertFalse(match_supplier("", index_of("Alpha")).was_matched)
        self.assertFalse(match_supplier("Alpha", SupplierIndex()).was_matched)
        self.assertFalse(match_supplier("Ltd.", index_of("Alpha")).was_matched)


class ApplyMatchingTests(unittest.TestCase):
    def test_matched_records_take_official_name_and_account(self):
        records = [CertificateRecord(supplier_name="ALPHA PACKAGING"), CertificateRecord(supplier_name="Zeta Foods")]
        matched = apply_supplier_matching(records, index_of("Alpha Packaging Ltd"))
        self.assertEqual(matched[0].supplier_name, "Alpha Packaging Ltd")
        self.assertEqual(matched[0].original_supplier_name, "ALPHA PACKAGING")
        self.assertEqual(matched[0].matched_account, "ACC001")
        self.assertFalse(matched[0].is_new_supplier)
        self.assertTrue(matched[1].is_new_supplier)
        self.assertEqual(matched[1].match_confidence, 0.0)

    def test_existing_account_annotation_is_kept(self):
        record = CertificateRecord(supplier_name="Alpha Packaging", matched_account="PINNED")
        apply_supplier_matching([record], index_of("Alpha Packaging Ltd"))
        self.assertEqual(record.matched_account, "PINNED")

    def test_without_index_records_pass_through(self):
        record = CertificateRecord(supplier_name="Alpha")
        self.assertEqual(apply_supplier_matching([record], None), [record])
        self.assertIsNone(record.match_confidence)


if __name__ == "__main__":
    unittest.main()
