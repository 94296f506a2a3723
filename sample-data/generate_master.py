#!/usr/bin/env python3
"""
Generates sample-data/master_sample.xlsx and sample-data/certificates_sample.json
for trying cert-sync end to end.

Run from the repo root:
    python sample-data/generate_master.py
    cert-sync append sample-data/master_sample.xlsx sample-data/certificates_sample.json --confirm-new-suppliers

What the master holds:
  Sheet "Certs 2025"
    - Title in row 1, header in row 3
    - Two supplier blocks with continuation rows (blank account/name/country)
    - Status and days formulas pre-filled down to row 500, far past the data
    - A scope dropdown (data validation) on column D
  Sheet "Update Log"
    - Header plus one earlier entry

The certificates file has one update for an existing row, one new row for
an existing supplier, a duplicate, and one supplier that is not in the master.
"""

import json
from datetime import date, datetime
from pathlib import Path

import openpyxl
from openpyxl.styles import Font, PatternFill
from openpyxl.worksheet.datavalidation import DataValidation

OUTPUT_DIR = Path(__file__).parent
MASTER = OUTPUT_DIR / "master_sample.xlsx"
CERTIFICATES = OUTPUT_DIR / "certificates_sample.json"
FORMULA_ROWS = 500

HEADERS = [
    "Supplier Account", "Supplier Name", "Country", "Scope", "Measure", "Certification",
    "Product Category", "Status", "Issued", "Date of Expiry", "Days to Expire",
    "Contact person & Email", "Date Request sent", "Date Received", "Comments",
]

wb = openpyxl.Workbook()

# ── Sheet 1: Certs 2025 ──────────────────────────────────────────────────────
ws = wb.active
ws.title = "Certs 2025"
ws["A1"] = "Supplier Certificates 2025"
ws["A1"].font = Font(bold=True, size=14)

header_fill = PatternFill("solid", fgColor="1F4E78")
for column, header in enumerate(HEADERS, start=1):
    cell = ws.cell(row=3, column=column, value=header)
    cell.font = Font(bold=True, color="FFFFFF")
    cell.fill = header_fill

rows = {
    # row: account  name                      country      scope  measure                         certification   product         issued              expiry              comments
    4: ["ACC001", "Alpha Packaging Ltd",       "Germany",   "!",   "(EC) No 2023/2006",            "BRCGS",        "Paper Cup",    date(2024, 1, 10),  date(2025, 1, 10),  "brcgs_alpha.pdf"],
    5: [None,     None,                        None,        "+",   "EN 13432 (Compostable)",       "DIN CERTCO",   "Paper Cup",    date(2023, 5, 2),   date(2028, 5, 2),   "din_alpha.pdf"],
    7: ["ACC002", "Beta Films GmbH",           "Austria",   "!",   "(EC) No 2023/2006",            "ISO 9001",     "PET Film",     date(2022, 3, 1),   date(2025, 3, 1),   "iso_beta.pdf"],
    8: [None,     None,                        None,        "!",   "Regulation (EC) No 1935/2004", "Declaration of Compliance", "PET Film", date(2024, 9, 1), "No Date", "doc_beta.pdf"],
}
data_fill = PatternFill("solid", fgColor="DDEBF7")
for row, values in rows.items():
    for column, value in zip((1, 2, 3, 4, 5, 6, 7, 9, 10, 15), values):
        cell = ws.cell(row=row, column=column, value=value)
        cell.fill = data_fill
    ws.cell(row=row, column=4).font = Font(color="FF0000")

# Formulas run far past the data, as in real master files
for row in range(4, FORMULA_ROWS + 1):
    ws.cell(row=row, column=8, value=f'=IF(J{row}="","",IF(J{row}<TODAY(),"Expired","Up to date"))')
    ws.cell(row=row, column=11, value=f'=IF(J{row}="","",J{row}-TODAY())')

scope_list = DataValidation(type="list", formula1='"!,+"', allow_blank=True)
scope_list.add(f"D4:D{FORMULA_ROWS}")
ws.add_data_validation(scope_list)

# ── Sheet 2: Update Log ──────────────────────────────────────────────────────
log = wb.create_sheet("Update Log")
log.append(["Date", "Supplier Account", "Supplier Name", "Change", "Source"])
log.append([datetime(2025, 9, 1, 8, 30), "ACC002", "Beta Films GmbH", "1 certificate(s) updated", "manual"])

wb.save(MASTER)
print(f"Created: {MASTER}")

certificates = [
    # Renewal of the BRCGS row (matched by certification text)
    {"supplierName": "Alpha Packaging", "certType": "BRCGS", "ecRegulation": "(EC) No 2023/2006",
     "productCategory": "Paper Cup", "scope": "!", "issueDate": "2025-01-11", "expiryDate": "2026-01-10",
     "fileName": "brcgs_alpha_2025.png"},
    # New row in the Beta block
    {"supplier_name": "BETA FILMS", "certification": "ISO 22000", "measure": "(EC) No 2023/2006",
     "product_category": "PET Film", "scope": "!", "date_issued": "15.03.2025", "date_expired": None,
     "file_name": "iso22000_beta.png"},
    # Older duplicate of the row above; dropped before export
    {"supplier_name": "Beta Films", "certification": "ISO 22000", "measure": "(EC) No 2023/2006",
     "product_category": "PET Film", "scope": "!", "date_issued": "2021-03-15", "date_expired": "2024-03-15",
     "file_name": "iso22000_beta_old.png"},
    # Supplier that is not in the master
    {"supplier_name": "Delta Cups Srl", "country": "Italy", "certification": "Compostable",
     "measure": "EN 13432 (Compostable)", "product_category": "Compostable Paper Cup", "scope": "+",
     "date_issued": "2025-04-01", "date_expired": "2030-04-01", "file_name": "din_delta.png"},
]
CERTIFICATES.write_text(json.dumps(certificates, indent=2) + "\n", encoding="utf-8")
print(f"Created: {CERTIFICATES}")
