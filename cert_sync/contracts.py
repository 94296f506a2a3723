"""Shared versioned contracts for cert-sync machine outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

CONTRACT_VERSIONS = {
    "cert_sync.supplier_index": "1.0.0",
    "cert_sync.sanitize_summary": "1.0.0",
    "cert_sync.extract_summary": "1.0.0",
    "cert_sync.append_summary": "1.1.0",
    "cert_sync.feeder_summary": "1.0.0",
}


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def build_contract(name: str) -> dict[str, str]:
    version = CONTRACT_VERSIONS[name]
    return {"name": name, "version": version}


def build_run_summary(
    *,
    command: str,
    input_path: Path | None,
    status: str = "ok",
    output_path: Path | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "cert-sync",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path) if input_path else None,
        "output_file": str(output_path) if output_path else None,
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
