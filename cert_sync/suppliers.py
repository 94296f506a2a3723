from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

import pandas as pd

from cert_sync.errors import ParseError, StructureError
from cert_sync.names import calculate_similarity, skeleton_key, word_overlap_score
from cert_sync.records import CertificateRecord

logger = logging.getLogger(__name__)

HEADER_SCAN_ROWS = 10
DEFAULT_MATCH_THRESHOLD = 0.75
MIN_RAW_OVERLAP = 0.5
SUPPLIER_HEADER_HINTS = ("supplier name", "supplier account")
FALLBACK_SHEET_NAME = "certificates"
SKIPPED_SHEET_NAME = "instructions"


@dataclass(frozen=True)
class SupplierEntry:
    official_name: str
    country: str | None = None
    account_code: str | None = None

    @property
    def key(self) -> str:
        return skeleton_key(self.official_name)


@dataclass
class SupplierIndex:
    entries: dict[str, SupplierEntry] = field(default_factory=dict)
    file_name: str = ""
    sheet_name: str = ""
    header_row: int = 1

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, key: str) -> bool:
        return key in self.entries

    def add(self, entry: SupplierEntry) -> bool:
        key = entry.key
        if not key or key in self.entries:
            return False
        self.entries[key] = entry
        return True

    def get(self, key: str) -> SupplierEntry | None:
        return self.entries.get(key)

    def find_by_name(self, name: str) -> SupplierEntry | None:
        return self.entries.get(skeleton_key(name))

    def to_payload(self) -> dict[str, Any]:
        return {
            "file_name": self.file_name,
            "sheet_name": self.sheet_name,
            "header_row": self.header_row,
            "total_suppliers": len(self),
            "suppliers": [
                {
                    "key": key,
                    "official_name": entry.official_name,
                    "country": entry.country,
                    "account_code": entry.account_code,
                }
                for key, entry in self.entries.items()
            ],
        }


@dataclass
class MatchResult:
    matched_name: str
    was_matched: bool
    confidence: float
    matched_account: str | None = None


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if value != value:
            return ""
        if value.is_integer():
            return str(int(value))
    if isinstance(value, pd.Timestamp):
        return value.date().isoformat()
    return str(value).strip()


def _header_texts(frame: pd.DataFrame, row_idx: int) -> list[str]:
    return [cell_text(value).lower() for value in frame.iloc[row_idx].tolist()]


def _has_supplier_header(frame: pd.DataFrame) -> bool:
    for row_idx in range(min(len(frame), HEADER_SCAN_ROWS)):
        for value in _header_texts(frame, row_idx):
            if any(hint in value for hint in SUPPLIER_HEADER_HINTS):
                return True
    return False


def choose_supplier_sheet(frames: dict[str, pd.DataFrame]) -> str:
    if not frames:
        raise StructureError("No worksheet found in Master File")
    for name, frame in frames.items():
        if _has_supplier_header(frame):
            return name
    for name in frames:
        if name.strip().lower() == FALLBACK_SHEET_NAME:
            return name
    for name in frames:
        if name.strip().lower() != SKIPPED_SHEET_NAME:
            return name
    return next(iter(frames))


def locate_supplier_columns(frame: pd.DataFrame) -> tuple[int, dict[str, int | None]]:
    """Return the 0-based header row and the account/name/country columns."""
    for row_idx in range(min(len(frame), HEADER_SCAN_ROWS)):
        texts = _header_texts(frame, row_idx)
        name_col = next(
            (idx for idx, value in enumerate(texts) if "supplier name" in value or value == "supplier"),
            None,
        )
        if name_col is None:
            continue
        account_col = next(
            (idx for idx, value in enumerate(texts) if "supplier account" in value or value == "account"),
            None,
        )
        country_col = next((idx for idx, value in enumerate(texts) if value == "country"), None)
        return row_idx, {"account": account_col, "name": name_col, "country": country_col}
    logger.info("No supplier header found; using default column positions")
    return 0, {"account": 0, "name": 1, "country": 2}


def read_master_frames(data: bytes) -> dict[str, pd.DataFrame]:
    try:
        return pd.read_excel(io.BytesIO(data), sheet_name=None, header=None, dtype=object)
    except Exception as exc:
        raise ParseError(
            "Unable to parse Excel file. Please ensure it is a valid .xlsx or .xls file."
        ) from exc


def build_supplier_index(data: bytes, file_name: str = "master.xlsx") -> SupplierIndex:
    frames = read_master_frames(data)
    sheet_name = choose_supplier_sheet(frames)
    frame = frames[sheet_name]
    header_idx, columns = locate_supplier_columns(frame)
    width = frame.shape[1]

    def column_value(row: list[Any], column: int | None) -> str | None:
        if column is None or column >= width:
            return None
        return cell_text(row[column])

    index = SupplierIndex(file_name=file_name, sheet_name=sheet_name, header_row=header_idx + 1)
    for values in frame.iloc[header_idx + 1 :].itertuples(index=False, name=None):
        row = list(values)
        name = column_value(row, columns["name"])
        if not name:
            continue
        entry = SupplierEntry(
            official_name=name,
            country=column_value(row, columns["country"]),
            account_code=column_value(row, columns["account"]),
        )
        index.add(entry)

    if not index.entries:
        raise StructureError("Master File appears to be empty or has no data rows")
    logger.info("Parsed master file %s: %d unique suppliers on sheet %r", file_name, len(index), sheet_name)
    return index


def match_supplier(
    extracted_name: str,
    index: SupplierIndex,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> MatchResult:
    """Resolve an extracted supplier name against the master index.

    An exact skeleton-key hit is a match with confidence 1.0. Otherwise every
    entry is scored by edit distance and by token overlap; the single highest
    score that clears its gate wins, earlier entries winning ties. No winner
    means a new supplier and the name comes back unchanged.
    """
    if not extracted_name or not index.entries:
        return MatchResult(extracted_name, False, 0.0)
    key = skeleton_key(extracted_name)
    if not key:
        return MatchResult(extracted_name, False, 0.0)

    exact = index.get(key)
    if exact is not None:
        return MatchResult(exact.official_name, True, 1.0, exact.account_code)

    best: SupplierEntry | None = None
    best_score = 0.0
    for candidate_key, entry in index.entries.items():
        score = calculate_similarity(key, candidate_key)
        if score >= threshold and score > best_score:
            best, best_score = entry, score
        raw, adjusted = word_overlap_score(key, candidate_key)
        if raw >= MIN_RAW_OVERLAP and adjusted >= threshold and adjusted > best_score:
            best, best_score = entry, adjusted

    if best is None:
        logger.debug("New supplier: %r", extracted_name)
        return MatchResult(extracted_name, False, 0.0)
    logger.debug("Fuzzy matched %r -> %r (%.2f)", extracted_name, best.official_name, best_score)
    return MatchResult(best.official_name, True, best_score, best.account_code)


def apply_supplier_matching(
    records: Iterable[CertificateRecord],
    index: SupplierIndex | None,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
) -> list[CertificateRecord]:
    matched = []
    for record in records:
        if index is None or not index.entries:
            matched.append(record)
            continue
        result = match_supplier(record.supplier_name, index, threshold)
        if result.was_matched:
            if result.matched_name != record.supplier_name:
                record.original_supplier_name = record.supplier_name
                record.supplier_name = result.matched_name
            record.match_confidence = result.confidence
            if not record.matched_account and result.matched_account:
                record.matched_account = result.matched_account
            record.is_new_supplier = False
        else:
            record.match_confidence = 0.0
            record.is_new_supplier = True
        matched.append(record)
    return matched
