from __future__ import annotations

import io
import sys
import unittest
from datetime import date
from pathlib import Path

from openpyxl import load_workbook

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))
sys.path.insert(0, str(ROOT / "tests"))

from cert_sync.exporter import feeder_output_name, prepare_export
from cert_sync.feeder import FEEDER_COLUMNS, build_feeder_summary, feeder_row, write_feeder_workbook
from cert_sync.records import CertificateRecord
from cert_sync.suppliers import build_supplier_index
from master_fixtures import build_master_bytes

TODAY = date(2026, 10, 18)


def records() -> list[CertificateRecord]:
    return [
        CertificateRecord(supplier_name="Zeta Foods", certification="ISO 9001", expiry_date="2026-11-01", file_name="z.png"),
        CertificateRecord(supplier_name="Alpha Packaging", certification="BRCGS", expiry_date="2025-01-01", file_name="a.png"),
        CertificateRecord(supplier_name="beta films", certification="FSC", issue_date="2025-01-01", file_name="b.png"),
    ]


class FeederTests(unittest.TestCase):
    def setUp(self):
        index = build_supplier_index(build_master_bytes(), "master.xlsx")
        self.plan = prepare_export(records(), index)
        self.ws = load_workbook(io.BytesIO(write_feeder_workbook(self.plan, TODAY)))["New Certificates"]

    def test_header_and_sort_order(self):
        self.assertEqual([cell.value for cell in self.ws[1]], [header for header, _ in FEEDER_COLUMNS])
        self.assertEqual(self.ws.freeze_panes, "A2")
        names = [self.ws.cell(row=row, column=2).value for row in range(2, 5)]
        self.assertEqual(names, ["Alpha Packaging Ltd", "Beta Films GmbH", "Zeta Foods"])

    def test_matched_rows_carry_account_and_original_name(self):
        self.assertEqual(self.ws["A2"].value, "ACC001")
        self.assertEqual(self.ws["Q2"].value, "Alpha Packaging")
        self.assertIsNone(self.ws["P2"].value)

    def test_new_supplier_is_flagged(self):
        self.assertEqual(self.ws["P4"].value, "YES - NEW")
        self.assertTrue(self.ws["P4"].fill.fgColor.rgb.endswith("E1BEE7"))
        self.assertTrue(self.ws["P1"].fill.fgColor.rgb.endswith("9C27B0"))

    def test_status_days_and_fallback_expiry(self):
        self.assertEqual(self.ws["H2"].value, "Expired")
        self.assertTrue(self.ws["H2"].fill.fgColor.rgb.endswith("FFCCCC"))
        # issue date + 3 years
        self.assertEqual(self.ws["J3"].value, "2028-01-01")
        self.assertEqual(self.ws["H3"].value, "Up to date")
        self.assertTrue(self.ws["H3"].fill.fgColor.rgb.endswith("C6EFCE"))
        # expiring within 30 days
        self.assertEqual(self.ws["K4"].value, 14)
        self.assertTrue(self.ws["H4"].fill.fgColor.rgb.endswith("FFEB9C"))

    def test_unknown_expiry_uses_warning_style(self):
        row = feeder_row(CertificateRecord(supplier_name="X"), TODAY)
        self.assertEqual(row[7], "Unknown")
        self.assertEqual(row[10], "")

    def test_summary_without_master_warns(self):
        plan = prepare_export(records(), None)
        summary = build_feeder_summary(input_path=Path("records.json"), output_path=Path(feeder_output_name(TODAY)), plan=plan)
        self.assertEqual(summary["stats"]["new_suppliers"], 3)
        self.assertEqual(summary["run_summary"]["warnings_count"], 1)
        self.assertTrue(summary["run_summary"]["output_file"].endswith("New_Certificates_Import_2026-10-18.xlsx"))


if __name__ == "__main__":
    unittest.main()
