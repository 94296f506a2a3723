from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

DATE_SENTINELS = {"", "-", "not found", "no date", "null", "none", "n/a", "na", "nat"}
NO_DATE_TEXT = "No Date"

STATUS_EXPIRED = "Expired"
STATUS_UP_TO_DATE = "Up to date"
STATUS_UNKNOWN = "Unknown"

ISO_DATE_RE = re.compile(r"^(\d{4})[-/](\d{1,2})[-/](\d{1,2})(?:[T ].*)?$")
DAY_FIRST_RE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{4})$")

# Field name -> payload keys accepted for it, most preferred first.
PAYLOAD_ALIASES = {
    "supplier_name": ("supplier_name", "supplierName"),
    "certificate_number": ("certificate_number", "certificateNumber"),
    "country": ("country", "region"),
    "scope": ("scope",),
    "measure": ("measure", "ec_regulation", "ecRegulation"),
    "certification": ("certification", "cert_type", "certType"),
    "product_category": ("product_category", "productCategory", "product"),
    "issue_date": ("date_issued", "issue_date", "issueDate"),
    "expiry_date": ("date_expired", "date_expiry", "expiry_date", "expiryDate"),
}


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def is_date_sentinel(value: Any) -> bool:
    return clean_text(value).lower() in DATE_SENTINELS


def parse_date(value: Any) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = clean_text(value)
    if raw.lower() in DATE_SENTINELS:
        return None
    match = ISO_DATE_RE.match(raw)
    if match:
        year, month, day = (int(part) for part in match.groups())
    else:
        match = DAY_FIRST_RE.match(raw)
        if not match:
            return None
        day, month, year = (int(part) for part in match.groups())
    try:
        return date(year, month, day)
    except ValueError:
        return None


def add_years(value: date, years: int) -> date:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        # 29 February in a non-leap target year
        return value.replace(year=value.year + years, day=28)


def effective_expiry(issue_date: Any, expiry_date: Any) -> str:
    """Expiry to record for a certificate, falling back to issue + 3 years.

    A real expiry value is returned verbatim. Without one, a parseable issue
    date yields its three-year anniversary in ISO form. Otherwise the result is
    ``""`` and the workbook shows ``"No Date"``.
    """
    if not is_date_sentinel(expiry_date):
        return clean_text(expiry_date)
    issued = parse_date(issue_date)
    if issued is None:
        return ""
    return add_years(issued, 3).isoformat()


def days_to_expiry(expiry: Any, today: date | None = None) -> int | None:
    parsed = parse_date(expiry)
    if parsed is None:
        return None
    return (parsed - (today or date.today())).days


def expiry_status(days: int | None) -> str:
    if days is None:
        return STATUS_UNKNOWN
    if days < 0:
        return STATUS_EXPIRED
    return STATUS_UP_TO_DATE


def _first_present(payload: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = clean_text(payload.get(key))
        if value:
            return value
    return ""


@dataclass
class CertificateRecord:
    supplier_name: str = ""
    certificate_number: str = ""
    country: str = ""
    scope: str = ""
    measure: str = ""
    certification: str = ""
    product_category: str = ""
    issue_date: str = ""
    expiry_date: str = ""
    file_name: str = ""
    # Reconciliation annotations. Only matched_account reaches the workbook.
    matched_account: str | None = field(default=None, compare=False)
    original_supplier_name: str | None = field(default=None, compare=False)
    match_confidence: float | None = field(default=None, compare=False)
    is_new_supplier: bool = field(default=False, compare=False)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], file_name: str | None = None) -> "CertificateRecord":
        values = {name: _first_present(payload, keys) for name, keys in PAYLOAD_ALIASES.items()}
        record = cls(**values, file_name=clean_text(file_name) or _first_present(payload, ("file_name", "fileName")))
        account = _first_present(payload, ("matched_account", "supplier_account"))
        if account:
            record.matched_account = account
        return record

    def status_on(self, today: date | None = None) -> str:
        expiry = parse_date(self.expiry_date)
        if expiry is None:
            return "unknown"
        return "valid" if expiry >= (today or date.today()) else "expired"

    @property
    def status(self) -> str:
        return self.status_on()

    @property
    def effective_expiry(self) -> str:
        return effective_expiry(self.issue_date, self.expiry_date)

    def has_usable_date(self) -> bool:
        return not is_date_sentinel(self.expiry_date) or not is_date_sentinel(self.issue_date)

    def to_payload(self) -> dict[str, Any]:
        payload = {
            "supplier_name": self.supplier_name,
            "certificate_number": self.certificate_number,
            "country": self.country,
            "scope": self.scope,
            "measure": self.measure,
            "certification": self.certification,
            "product_category": self.product_category,
            "date_issued": self.issue_date,
            "date_expired": self.expiry_date,
            "file_name": self.file_name,
            "status": self.status,
        }
        if self.matched_account:
            payload["matched_account"] = self.matched_account
        return payload


def records_from_json(text: str) -> list[CertificateRecord]:
    """Parse a JSON list of certificate payloads, or an object with a ``records`` list."""
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Records are not valid JSON: {exc}") from exc
    if isinstance(payload, dict):
        payload = payload.get("records", [])
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise ValueError("Records must be a JSON list of certificate objects.")
    return [CertificateRecord.from_payload(item) for item in payload]
