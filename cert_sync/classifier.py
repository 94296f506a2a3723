"""Certificate field extraction through an OpenAI-compatible chat endpoint.

The model is a black box here: it receives one certificate (an image, or the
decoded text of a text file) and must answer with one JSON object in the
payload shape :meth:`CertificateRecord.from_payload` understands.
"""

from __future__ import annotations

import base64
import json
import logging
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Iterable

import chardet
import requests

from cert_sync import __version__ as TOOL_VERSION
from cert_sync.config import Settings
from cert_sync.contracts import build_contract, build_run_summary
from cert_sync.errors import ExtractionError, WriteConflict
from cert_sync.records import CertificateRecord
from cert_sync.suppliers import SupplierIndex, match_supplier

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}
TEXT_TYPES = {".txt", ".text", ".md"}
UNSUPPORTED_HINTS = {
    ".pdf": "rasterise PDF pages to PNG first",
    ".docx": "export the document text to .txt first",
    ".doc": "export the document text to .txt first",
}

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
JSON_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)

SYSTEM_PROMPT = """You are a compliance data extraction engine.
Extract structured data for the supplier master file.

Scope (a single symbol):
- "!" for factory or management-system certificates: BRC, BRCGS, ISO 9001, ISO 22000,
  ISO 45001, ISO 14001, GMP, FSC, GRS, FSSC 22000, Declarations of Compliance (DoC)
  and migration test reports.
- "+" for product-specific performance certificates: compostable (EN 13432),
  recyclable (ISO 14021), food grade under 10/2011.

Measure (mapped standard):
- Declaration of Compliance, migration report or 1935/2004 -> "Regulation (EC) No 1935/2004"
- ISO 22000, BRC, BRCGS, ISO 9001, FSSC 22000 -> "(EC) No 2023/2006"
- Compostable (DIN CERTCO, TUV, EN 13432) -> "EN 13432 (Compostable)"
- Recyclable (ISO 14021) -> "ISO 14021 (Recyclable)"
- FSC -> "FSC"
- 10/2011 -> "Commission Regulation (EU) No 10/2011"

Product category: the full product description from the certificate
(for example "Aqueous Coated Paper Cup"), never a generic word like "Paper".
Certification: the document type or certifying body (for example "BRCGS", "ISO 9001",
"Migration Test Report", "Declaration of Compliance").
Supplier name: the plain company name without legal suffixes.
Country: derived from the address, in English.
Certificate number: from "Report No", "Certificate No" or "Registration No".
Dates: YYYY-MM-DD; "11.03.2019" means 11 March 2019.

Answer with one JSON object and nothing else:
{"supplier_name": "", "certificate_number": "", "country": "", "scope": "! or +",
 "measure": "", "certification": "", "product_category": "",
 "date_issued": "YYYY-MM-DD", "date_expired": "YYYY-MM-DD or null"}
"""

_BATCH_LOCK = threading.Lock()


@dataclass
class CertificateInput:
    file_name: str
    data: bytes

    @classmethod
    def from_path(cls, path: Path) -> "CertificateInput":
        return cls(file_name=path.name, data=path.read_bytes())


@dataclass
class BatchResult:
    records: list[CertificateRecord] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)


def extract_json(text: str) -> dict[str, Any]:
    """Pull the JSON object out of a model reply, fenced or not."""
    cleaned = CODE_FENCE_RE.sub("", text or "").replace("```", "").strip()
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError:
        match = JSON_OBJECT_RE.search(cleaned)
        if not match:
            raise ExtractionError("Classifier reply contained no JSON object") from None
        try:
            payload = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"Classifier reply is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ExtractionError("Classifier reply is JSON but not an object")
    return payload


def read_certificate_text(raw: bytes) -> str:
    """Decode a text certificate line by line, tolerating mixed encodings."""
    detected = (chardet.detect(raw[:65536]).get("encoding") or "").lower()
    lines = []
    for raw_line in raw.split(b"\n"):
        decoded = None
        for encoding in ("utf-8", detected, "latin-1"):
            if not encoding:
                continue
            try:
                decoded = raw_line.decode(encoding)
                break
            except (LookupError, UnicodeDecodeError):
                continue
        if decoded is None:
            decoded = raw_line.decode("cp1252", errors="replace")
        lines.append(decoded.replace("\x00", "").rstrip("\r"))
    return "\n".join(lines).strip()


def certificate_content(file_name: str, data: bytes) -> dict[str, Any]:
    suffix = Path(file_name).suffix.lower()
    if suffix in IMAGE_TYPES:
        encoded = base64.b64encode(data).decode("ascii")
        return {"type": "image_url", "image_url": {"url": f"data:{IMAGE_TYPES[suffix]};base64,{encoded}"}}
    if suffix in TEXT_TYPES:
        text = read_certificate_text(data)
        if not text:
            raise ExtractionError("Text certificate is empty")
        return {"type": "text", "text": f"Certificate text:\n{text}"}
    hint = UNSUPPORTED_HINTS.get(suffix)
    if hint:
        raise ExtractionError(f"Unsupported certificate type {suffix}: {hint}")
    raise ExtractionError(f"Unsupported certificate type {suffix or '[missing extension]'}")


class CertificateClassifier:
    def __init__(self, settings: Settings, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.session = session or requests.Session()

    def build_payload(self, file_name: str, data: bytes) -> dict[str, Any]:
        return {
            "model": self.settings.model,
            "max_tokens": self.settings.max_tokens,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        certificate_content(file_name, data),
                        {
                            "type": "text",
                            "text": f'Analyze this certificate. Filename: "{file_name}". Extract all certificate information.',
                        },
                    ],
                },
            ],
        }

    def classify(self, file_name: str, data: bytes) -> dict[str, Any]:
        if not self.settings.api_key:
            raise ExtractionError("OPENAI_API_KEY is not set")
        payload = self.build_payload(file_name, data)
        try:
            response = self.session.post(
                self.settings.api_url,
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
                json=payload,
                timeout=self.settings.request_timeout,
            )
        except requests.RequestException as exc:
            raise ExtractionError(f"Classifier request failed: {exc}") from exc

        if not response.ok:
            try:
                error = response.json().get("error")
            except ValueError:
                error = None
            message = error.get("message") if isinstance(error, dict) else (error or response.reason)
            raise ExtractionError(f"Classifier error {response.status_code}: {message}")

        try:
            choices = response.json().get("choices") or [{}]
        except ValueError as exc:
            raise ExtractionError("Classifier returned a non-JSON response") from exc
        content = (choices[0].get("message") or {}).get("content")
        if not content:
            raise ExtractionError("No response from classifier")
        return extract_json(content)

    def __call__(self, file_name: str, data: bytes) -> dict[str, Any]:
        return self.classify(file_name, data)


def resolve_override_account(
    supplier_name: str,
    account: str | None,
    index: SupplierIndex | None,
    threshold: float = 0.75,
) -> str | None:
    if account:
        return account.strip()
    if index is None or not len(index):
        return None
    entry = index.find_by_name(supplier_name)
    if entry is not None:
        return entry.account_code
    return match_supplier(supplier_name, index, threshold).matched_account


def process_batch(
    items: Iterable[CertificateInput],
    classify: Callable[[str, bytes], dict[str, Any]],
    *,
    index: SupplierIndex | None = None,
    supplier_override: str | None = None,
    account_override: str | None = None,
    threshold: float = 0.75,
) -> BatchResult:
    """Classify certificates one after another, collecting per-file failures.

    A supplier override replaces every extracted supplier name and pins the
    account (given explicitly, or looked up in ``index``). Only one batch may
    run at a time.
    """
    if not _BATCH_LOCK.acquire(blocking=False):
        raise WriteConflict("Another certificate batch is already being processed.")
    try:
        override_name = (supplier_override or "").strip()
        override_account = None
        if override_name:
            override_account = resolve_override_account(override_name, account_override, index, threshold)

        result = BatchResult()
        for item in items:
            try:
                payload = classify(item.file_name, item.data)
            except (ExtractionError, ValueError) as exc:
                logger.warning("Extraction failed for %s: %s", item.file_name, exc)
                result.errors.append(f"{item.file_name}: {exc}")
                continue
            record = CertificateRecord.from_payload(payload, item.file_name)
            if override_name:
                record.original_supplier_name = record.supplier_name or None
                record.supplier_name = override_name
                record.matched_account = override_account
            result.records.append(record)
        logger.info("Batch extracted %d record(s), %d failure(s)", len(result.records), len(result.errors))
        return result
    finally:
        _BATCH_LOCK.release()


def build_extract_summary(*, inputs: list[str], output_path, result: BatchResult) -> dict[str, Any]:
    contract = build_contract("cert_sync.extract_summary")
    return {
        "contract": contract,
        "schema_version": contract["version"],
        "tool_version": TOOL_VERSION,
        "inputs": list(inputs),
        "records": [record.to_payload() for record in result.records],
        "errors": list(result.errors),
        "run_summary": build_run_summary(
            command="extract",
            input_path=None,
            status="partial" if result.partial else "ok",
            output_path=output_path,
            metrics={"files": len(inputs), "records": len(result.records), "failures": len(result.errors)},
            warnings=list(result.errors),
        ),
    }
