import json
import logging

import pandas as pd
import plotly.graph_objects as go
import streamlit as st
from dotenv import load_dotenv

load_dotenv()
logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(name)s: %(message)s")

# ── Project modules ────────────────────────────────────────────────────────────
from sidebar import render_sidebar
from style import inject_css

from prompts.menu_csv import (
    forward_csv_to_importer,
    generate_bulk_csv,
    packages_to_dataframe,
    rows_from_dataframe,
)
from prompts.menu_extraction import extract_packages_with_report
from prompts.menu_normalizer import summarize_batch, validate_package_batch
from prompts.menu_ocr import handle_upload_and_extract_ocr
from prompts.menu_types import CSV_COLUMNS, IncomingFile
from utils.durability import persist_csv, persist_result_snapshot
from utils.errors import InputRejectedError
from utils.settings import get_settings

logger = logging.getLogger("app")

# ─── Streamlit page config ─────────────────────────────────────────────────────
st.set_page_config(page_title="Clinic Menu OCR", layout="wide")
inject_css()
render_sidebar()
settings = get_settings()

st.title("Clinic Menu OCR → Bulk CSV")
st.markdown(
    "Upload one or more clinic price menus. Each file is read page by page, "
    "sent to the AI once, and split into packages you can review before import."
)

# ─── Upload + run ──────────────────────────────────────────────────────────────
uploads = st.file_uploader(
    "Menu files (PDF, JPG, PNG, HEIC)",
    type=["pdf", "jpg", "jpeg", "png", "heic", "heif"],
    accept_multiple_files=True,
    key="menu_files",
)

if st.button("🔍 Run OCR + extraction", disabled=not uploads):
    incoming = [
        IncomingFile(name=u.name, mime_type=u.type or "", data=u.getvalue(), field_name="files[]")
        for u in uploads
    ]
    try:
        with st.spinner("Reading text (PDF text layer / Tesseract OCR)…"):
            batch = handle_upload_and_extract_ocr(incoming, settings)
    except InputRejectedError as e:
        st.error(f"❌ {e.user_message} (HTTP {e.status})")
        st.stop()

    with st.spinner(f"Extracting packages from {len(batch.files_meta)} file(s)…"):
        report = extract_packages_with_report(batch.ocr_pages)
    # flags invalid rows now so the editor's warnings column is stable across reruns
    validate_package_batch(report.packages)

    st.session_state["batch"] = batch
    st.session_state["report"] = report
    persist_result_snapshot(settings.output_dir, batch.batch_id, {**batch.to_dict(), **report.to_dict()})
    persist_csv(settings.output_dir, batch.batch_id, generate_bulk_csv(report.packages))

batch = st.session_state.get("batch")
report = st.session_state.get("report")
if batch is None or report is None:
    st.info("Upload at least one menu and press **Run OCR + extraction**.")
    st.stop()

st.caption(f"Batch `{batch.batch_id}`")

# ─── Per-file status ───────────────────────────────────────────────────────────
st.subheader("Files")
ocr_errors = {m.file_id: m.error for m in batch.files_meta if m.error}
file_rows = []
for f in report.files:
    file_rows.append({
        "file": f.file_name,
        "pages": f.page_count,
        "price anchors": f.anchors,
        "packages": f.package_count,
        "status": "❌ failed" if (f.error or f.file_id in ocr_errors) else ("⏭ skipped" if f.skipped else "✅ ok"),
    })
st.dataframe(pd.DataFrame(file_rows), use_container_width=True, hide_index=True)

for f in report.files:
    if f.file_id in ocr_errors:
        st.error(f"OCR failed for **{f.file_name}**: {ocr_errors[f.file_id]}")
    if f.error:
        st.error(f"AI extraction failed for **{f.file_name}**: {f.error}")
    for w in f.warnings:
        st.warning(f"**{f.file_name}**: {w}")

if report.files and len(report.failed_files) == len([f for f in report.files if not f.skipped]):
    st.error("No file could be extracted. Check the errors above and the server log.")

packages = report.packages
if not packages:
    st.stop()

# ─── Review + edit ─────────────────────────────────────────────────────────────
st.subheader("Packages")
table = packages_to_dataframe(packages)
table.insert(0, "confidence", [p.meta.confidence_score for p in packages])
table.insert(1, "warnings", ["; ".join(p.warnings) for p in packages])
table.insert(2, "source", [f"{p.meta.source_file} p{p.meta.source_page or '?'}" for p in packages])

edited = st.data_editor(
    table,
    disabled=["confidence", "warnings", "source"],
    num_rows="fixed",
    use_container_width=True,
    hide_index=True,
    key=f"editor_{batch.batch_id}",
)
rows = rows_from_dataframe(edited[CSV_COLUMNS], packages)

buckets = validate_package_batch(rows)
summary = summarize_batch(buckets)
c1, c2, c3, c4 = st.columns(4)
c1.metric("Total", summary["total"])
c2.metric("Valid", summary["valid"])
c3.metric("With warnings", summary["withWarnings"])
c4.metric("Invalid", summary["invalid"])

scores = [r.meta.confidence_score for r in rows if r.meta.confidence_score is not None]
if scores:
    fig = go.Figure(go.Histogram(
        x=scores,
        xbins={"start": 0.0, "end": 1.0, "size": 0.1},
        marker={"color": "#0F6E78"},
    ))
    fig.update_layout(
        title={"text": "Model confidence per package", "font": {"color": "#33414A"}},
        xaxis={"title": "confidence_score", "range": [0, 1]},
        yaxis={"title": "packages"},
        bargap=0.05,
        height=300,
        margin={"l": 40, "r": 20, "t": 50, "b": 40},
    )
    st.plotly_chart(fig, use_container_width=True)

if buckets.invalid_packages:
    with st.expander(f"⚠️ {len(buckets.invalid_packages)} invalid package(s)"):
        for r in buckets.invalid_packages:
            st.markdown(f"- **{r.title or '(no title)'}** · {'; '.join(r.warnings)}")

with st.expander("Raw OCR text"):
    for page in batch.ocr_pages:
        st.markdown(f"**{page.file_name}** · page {page.page_number}")
        st.code(page.raw_text or "(empty)", language=None)

# ─── Export ────────────────────────────────────────────────────────────────────
st.subheader("Export")
include_invalid = st.checkbox("Include invalid rows in CSV", value=False)
export_rows = rows if include_invalid else buckets.valid_packages + buckets.packages_with_warnings
csv_text = generate_bulk_csv(export_rows)

col_dl, col_json = st.columns(2)
with col_dl:
    st.download_button(
        "⬇️ Download bulk-import CSV",
        data=csv_text.encode("utf-8"),
        file_name=f"{batch.batch_id}.csv",
        mime="text/csv",
    )
with col_json:
    st.download_button(
        "⬇️ Download JSON",
        data=json.dumps([r.to_dict() for r in rows], ensure_ascii=False, indent=2).encode("utf-8"),
        file_name=f"{batch.batch_id}.json",
        mime="application/json",
    )

confirm_auto_create = st.checkbox("Auto-create unknown hospitals/treatments on import", value=False)
clear_existing = st.checkbox("Clear existing packages before import", value=False)
if st.button("📤 Forward CSV to importer", disabled=not export_rows):
    persist_csv(settings.output_dir, batch.batch_id, csv_text)
    with st.spinner("Sending CSV to importer…"):
        status = forward_csv_to_importer(
            csv_text,
            confirm_auto_create=confirm_auto_create,
            clear_existing=clear_existing,
        )
    if status == "success":
        st.success(f"✅ Forwarded {len(export_rows)} package(s) to the importer")
    else:
        st.error(f"❌ Importer: {status.split(':', 1)[-1]}")
    logger.info("Importer status for %s: %s", batch.batch_id, status)
