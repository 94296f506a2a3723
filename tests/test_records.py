from __future__ import annotations

import sys
import unittest
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from cert_sync.records import (
    STATUS_EXPIRED,
    STATUS_UNKNOWN,
    STATUS_UP_TO_DATE,
    CertificateRecord,
    add_years,
    days_to_expiry,
    effective_expiry,
    expiry_status,
    parse_date,
    records_from_json,
)


class DateHandlingTests(unittest.TestCase):
    def test_parse_date_accepts_iso_slash_and_day_first_forms(self):
        self.assertEqual(parse_date("2025-03-11"), date(2025, 3, 11))
        self.assertEqual(parse_date("2025/3/11"), date(2025, 3, 11))
        self.assertEqual(parse_date("11.03.2019"), date(2019, 3, 11))
        self.assertEqual(parse_date("2025-03-11T00:00:00"), date(2025, 3, 11))

    def test_parse_date_rejects_sentinels_and_impossible_dates(self):
        self.assertIsNone(parse_date("Not Found"))
        self.assertIsNone(parse_date("n/a"))
        self.assertIsNone(parse_date("2025-02-30"))
        self.assertIsNone(parse_date("soon"))

    def test_add_years_moves_leap_day_to_february_28(self):
        self.assertEqual(add_years(date(2024, 2, 29), 3), date(2027, 2, 28))
        self.assertEqual(add_years(date(2024, 2, 29), 4), date(2028, 2, 29))

    def test_effective_expiry_prefers_real_expiry_verbatim(self):
        self.assertEqual(effective_expiry("2020-01-01", "2026-07-31"), "2026-07-31")

    def test_effective_expiry_falls_back_to_issue_plus_three_years(self):
        self.assertEqual(effective_expiry("2024-02-29", None), "2027-02-28")
        self.assertEqual(effective_expiry("15.03.2025", "No Date"), "2028-03-15")

    def test_effective_expiry_is_empty_without_usable_dates(self):
        self.assertEqual(effective_expiry("Not Found", ""), "")

    def test_days_and_status(self):
        today = date(2026, 10, 18)
        self.assertEqual(days_to_expiry("2026-10-28", today), 10)
        self.assertEqual(expiry_status(days_to_expiry("2026-10-17", today)), STATUS_EXPIRED)
        self.assertEqual(expiry_status(0), STATUS_UP_TO_DATE)
        self.assertEqual(expiry_status(days_to_expiry("", today)), STATUS_UNKNOWN)


class CertificateRecordTests(unittest.TestCase):
    def test_from_payload_accepts_snake_and_camel_case_aliases(self):
        snake = CertificateRecord.from_payload(
            {
                "supplier_name": " Alpha ",
                "ec_regulation": "FSC",
                "cert_type": "FSC",
                "product": "Carton",
                "issue_date": "2025-01-01",
                "date_expiry": "2030-01-01",
                "region": "Poland",
            },
            "fsc.png",
        )
        camel = CertificateRecord.from_payload(
            {
                "supplierName": "Alpha",
                "ecRegulation": "FSC",
                "certType": "FSC",
                "productCategory": "Carton",
                "issueDate": "2025-01-01",
                "expiryDate": "2030-01-01",
                "country": "Poland",
                "fileName": "fsc.png",
            }
        )
        self.assertEqual(snake, camel)
        self.assertEqual(snake.supplier_name, "Alpha")
        self.assertEqual(snake.expiry_date, "2030-01-01")

    def test_from_payload_keeps_account_annotation(self):
        record = CertificateRecord.from_payload({"supplier_name": "Alpha", "supplier_account": "ACC9"})
        self.assertEqual(record.matched_account, "ACC9")

    def test_status_on_uses_literal_expiry_only(self):
        today = date(2026, 10, 18)
        self.assertEqual(CertificateRecord(expiry_date="2026-10-18").status_on(today), "valid")
        self.assertEqual(CertificateRecord(expiry_date="2026-10-17").status_on(today), "expired")
        self.assertEqual(CertificateRecord(issue_date="2026-01-01").status_on(today), "unknown")

    def test_usable_date_needs_issue_or_expiry(self):
        self.assertTrue(CertificateRecord(issue_date="2025-01-01").has_usable_date())
        self.assertFalse(CertificateRecord(issue_date="Not Found", expiry_date="null").has_usable_date())

    def test_to_payload_uses_canonical_keys(self):
        payload = CertificateRecord(supplier_name="Alpha", expiry_date="", matched_account="ACC1").to_payload()
        self.assertEqual(payload["date_expired"], "")
        self.assertEqual(payload["status"], "unknown")
        self.assertEqual(payload["matched_account"], "ACC1")

    def test_records_from_json_accepts_list_or_records_object(self):
        listed = records_from_json('[{"supplier_name": "Alpha"}]')
        wrapped = records_from_json('{"records": [{"supplier_name": "Alpha"}, {"supplier_name": "Beta"}]}')
        self.assertEqual([item.supplier_name for item in listed], ["Alpha"])
        self.assertEqual(len(wrapped), 2)

    def test_records_from_json_rejects_other_shapes(self):
        with self.assertRaises(ValueError):
            records_from_json("{not json")
        with self.assertRaises(ValueError):
            records_from_json('["Alpha"]')


if __name__ == "__main__":
    unittest.main()
