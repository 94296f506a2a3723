#!/usr/bin/env python3
from __future__ import annotations

import sys
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cert_sync.classifier import IMAGE_TYPES, TEXT_TYPES, CertificateClassifier, CertificateInput, process_batch
from cert_sync.config import Settings, load_settings
from cert_sync.errors import ConfirmationRequired, WriteAborted, WriteConflict
from cert_sync.exporter import ExportPlan, append_to_master, feeder_output_name, prepare_export
from cert_sync.feeder import write_feeder_workbook
from cert_sync.records import CertificateRecord, days_to_expiry, expiry_status, records_from_json
from cert_sync.suppliers import SupplierIndex, build_supplier_index

MASTER_EXTS = {".xlsx", ".xlsm", ".xls"}
CERTIFICATE_EXTS = set(IMAGE_TYPES) | TEXT_TYPES
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
REVIEW_COLUMNS = [
    "Supplier",
    "Account",
    "Certification",
    "Measure",
    "Product Category",
    "Issued",
    "Expiry",
    "Status",
    "File",
    "New supplier",
]


def ensure_state() -> None:
    st.session_state.setdefault("processing", False)
    st.session_state.setdefault("index", None)
    st.session_state.setdefault("master_bytes", None)
    st.session_state.setdefault("master_name", "")
    st.session_state.setdefault("records", [])
    st.session_state.setdefault("errors", [])
    st.session_state.setdefault("outputs", {})


@st.cache_resource(show_spinner=False)
def app_settings() -> Settings:
    return load_settings()


def index_master(data: bytes, name: str) -> SupplierIndex:
    return build_supplier_index(data, name)


def certificate_inputs(uploads) -> list[CertificateInput]:
    items = []
    for upload in uploads or []:
        if Path(upload.name).suffix.lower() == ".json":
            continue
        items.append(CertificateInput(file_name=upload.name, data=upload.getvalue()))
    return items


def uploaded_records(uploads) -> list[CertificateRecord]:
    records = []
    for upload in uploads or []:
        if Path(upload.name).suffix.lower() == ".json":
            records.extend(records_from_json(upload.getvalue().decode("utf-8")))
    return records


def records_frame(records: list[CertificateRecord], today: Optional[date] = None) -> pd.DataFrame:
    rows = []
    for record in records:
        expiry = record.effective_expiry
        rows.append(
            [
                record.supplier_name,
                record.matched_account or "",
                record.certification,
                record.measure,
                record.product_category,
                record.issue_date,
                expiry,
                expiry_status(days_to_expiry(expiry, today)),
                record.file_name,
                "YES" if record.is_new_supplier else "",
            ]
        )
    return pd.DataFrame(rows, columns=REVIEW_COLUMNS)


def plan_export(records: list[CertificateRecord], index: Optional[SupplierIndex], settings: Settings) -> ExportPlan:
    return prepare_export(records, index, settings.match_threshold)


def build_outputs(
    plan: ExportPlan,
    master_bytes: Optional[bytes],
    *,
    confirm_new_suppliers: bool,
    settings: Settings,
) -> dict:
    """Produce the feeder workbook and, with a master loaded, the updated master."""
    outputs = {
        "feeder": (feeder_output_name(), write_feeder_workbook(plan)),
        "messages": [],
    }
    if master_bytes is None:
        outputs["messages"].append("No master file loaded; only the feeder workbook was produced.")
        return outputs
    result = append_to_master(
        master_bytes,
        plan,
        confirm_new_suppliers=confirm_new_suppliers,
        settings=settings,
    )
    outputs["master"] = (result.file_name, result.data)
    outputs["messages"].append(
        f"{result.inserted} row(s) inserted and {result.updated} row(s) updated on {result.sheet_name!r}."
    )
    outputs["messages"].extend(f"Could not write {failure}" for failure in result.failures)
    outputs["messages"].extend(result.warnings)
    return outputs


def set_visuals() -> None:
    st.set_page_config(page_title="cert-sync", page_icon="📋", layout="wide", initial_sidebar_state="collapsed")
    st.markdown(
        """
        <style>
        .block-container {
            padding-top: 2rem;
            padding-bottom: 2rem;
            max-width: 1200px;
        }
        [data-testid="stDecoration"], [data-testid="stStatusWidget"] {
            display: none !important;
        }
        .sync-panel {
            border-radius: 12px;
            padding: 0.5rem 0;
        }
        </style>
        """,
        unsafe_allow_html=True,
    )


def render_master_section(processing: bool) -> None:
    st.subheader("1. Master file")
    upload = st.file_uploader(
        "Upload the supplier master workbook",
        type=[ext.lstrip(".") for ext in sorted(MASTER_EXTS)],
        key="master_input",
        disabled=processing,
    )
    if upload is None:
        return
    if upload.name != st.session_state["master_name"]:
        data = upload.getvalue()
        try:
            st.session_state["index"] = index_master(data, upload.name)
        except ValueError as exc:
            st.session_state["index"] = None
            st.session_state["master_bytes"] = None
            st.error(str(exc))
            return
        st.session_state["master_bytes"] = data if Path(upload.name).suffix.lower() != ".xls" else None
        st.session_state["master_name"] = upload.name
    index = st.session_state["index"]
    if index is not None:
        st.caption(f"{len(index)} unique suppliers on sheet {index.sheet_name!r} (header row {index.header_row}).")
        if st.session_state["master_bytes"] is None:
            st.warning("Legacy .xls masters are used for supplier matching only; save as .xlsx to append rows.")


def render_certificate_section(processing: bool, settings: Settings) -> None:
    st.subheader("2. Certificates")
    uploads = st.file_uploader(
        "Upload certificate images, text files, or a records JSON",
        type=[ext.lstrip(".") for ext in sorted(CERTIFICATE_EXTS | {".json"})],
        accept_multiple_files=True,
        key="certificates_input",
        disabled=processing,
    )
    columns = st.columns(2)
    supplier = columns[0].text_input("Supplier override (optional)", key="supplier_input", disabled=processing)
    account = columns[1].text_input("Supplier account (optional)", key="account_input", disabled=processing)
    run = st.button("Extract", type="primary", disabled=processing or not uploads)
    if not run:
        return

    st.session_state["processing"] = True
    try:
        records = uploaded_records(uploads)
        items = certificate_inputs(uploads)
        errors: list[str] = []
        if items:
            with st.spinner(f"Extracting {len(items)} certificate(s)..."):
                batch = process_batch(
                    items,
                    CertificateClassifier(settings),
                    index=st.session_state["index"],
                    supplier_override=supplier or None,
                    account_override=account or None,
                    threshold=settings.match_threshold,
                )
            records.extend(batch.records)
            errors.extend(batch.errors)
        st.session_state["records"] = records
        st.session_state["errors"] = errors
        st.session_state["outputs"] = {}
    except (ValueError, WriteConflict) as exc:
        st.error(str(exc))
    finally:
        st.session_state["processing"] = False


def render_review_section(processing: bool, settings: Settings) -> None:
    records = st.session_state["records"]
    for error in st.session_state["errors"]:
        st.warning(error)
    if not records:
        return

    st.subheader("3. Review and export")
    plan = plan_export(records, st.session_state["index"], settings)
    metrics = st.columns(4)
    metrics[0].metric("Certificates", plan.stats["total"])
    metrics[1].metric("Matched suppliers", plan.stats["matched"])
    metrics[2].metric("New suppliers", plan.stats["new_suppliers"])
    metrics[3].metric("Duplicates removed", plan.stats["duplicates_removed"])
    st.dataframe(records_frame(plan.records), width="stretch", hide_index=True)

    confirm = False
    if plan.new_suppliers:
        st.warning("Not found in the master file: " + ", ".join(plan.new_suppliers))
        confirm = st.checkbox("Add these as new suppliers", key="confirm_input", disabled=processing)

    if st.button("Build workbooks", type="primary", disabled=processing):
        try:
            st.session_state["outputs"] = build_outputs(
                plan,
                st.session_state["master_bytes"],
                confirm_new_suppliers=confirm,
                settings=settings,
            )
        except (ConfirmationRequired, WriteAborted, WriteConflict, ValueError) as exc:
            st.error(str(exc))
            st.session_state["outputs"] = {}

    outputs = st.session_state["outputs"]
    for message in outputs.get("messages", []):
        st.info(message)
    for key, label in (("master", "Download updated master"), ("feeder", "Download feeder workbook")):
        if key in outputs:
            file_name, data = outputs[key]
            st.download_button(label, data=data, file_name=file_name, mime=XLSX_MIME, key=f"download_{key}")


def main() -> None:
    set_visuals()
    ensure_state()
    settings = app_settings()

    st.title("cert-sync")
    st.caption("Reconcile supplier certificates with the master file and append them as new rows.")

    processing = st.session_state["processing"]
    with st.container():
        st.markdown('<div class="sync-panel">', unsafe_allow_html=True)
        render_master_section(processing)
        render_certificate_section(processing, settings)
        st.markdown("</div>", unsafe_allow_html=True)
    render_review_section(processing, settings)


if __name__ == "__main__":
    main()
