from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, NamedTuple

from cert_sync.records import CertificateRecord

logger = logging.getLogger(__name__)


class DedupKey(NamedTuple):
    supplier: str
    certification: str
    measure: str

    @classmethod
    def for_record(cls, record: CertificateRecord) -> "DedupKey":
        return cls(
            record.supplier_name.strip().lower(),
            record.certification.strip().lower(),
            record.measure.strip().lower(),
        )


@dataclass
class DedupResult:
    records: list[CertificateRecord] = field(default_factory=list)
    duplicates_removed: int = 0


def _prefer(candidate: CertificateRecord, current: CertificateRecord) -> bool:
    candidate_dated = candidate.has_usable_date()
    current_dated = current.has_usable_date()
    if candidate_dated != current_dated:
        return candidate_dated
    if not candidate_dated:
        return False
    # ISO strings order the same way as the dates they spell.
    return candidate.effective_expiry > current.effective_expiry


def dedupe_certificates(records: Iterable[CertificateRecord]) -> DedupResult:
    """Keep one certificate per (supplier, certification, measure).

    Dated certificates beat undated ones, later effective expiry beats
    earlier, and on a tie the certificate seen first stays.
    """
    winners: dict[DedupKey, CertificateRecord] = {}
    total = 0
    for record in records:
        total += 1
        key = DedupKey.for_record(record)
        current = winners.get(key)
        if current is None:
            winners[key] = record
            continue
        if _prefer(record, current):
            winners[key] = record
        logger.debug("Duplicate certificate for %s", "|".join(key))

    result = DedupResult(records=list(winners.values()), duplicates_removed=total - len(winners))
    if result.duplicates_removed:
        logger.info("Removed %d duplicate certificate(s)", result.duplicates_removed)
    return result
