import os
import time

import streamlit as st

from doc_converter.client import API_BASE, ClientError, ConverterClient

REFRESH_SEC = float(os.getenv("DOC_CONVERTER_UI_REFRESH_SEC", "2.0"))

STATUS_ICONS = {"pending": "⏳", "complete": "✅", "failed": "❌"}


def _client() -> ConverterClient:
    if "client" not in st.session_state:
        st.session_state["client"] = ConverterClient(API_BASE)
    return st.session_state["client"]


def _reset_uploader() -> None:
    # Bump the uploader key to clear the previous file widget state
    st.session_state["upload_key"] = st.session_state.get("upload_key", 0) + 1


def _upload_section(client: ConverterClient) -> None:
    if "upload_key" not in st.session_state:
        st.session_state["upload_key"] = 0
    uploaded = st.file_uploader(
        "Upload a document (DOCX, XLSX, ODT)",
        type=["docx", "xlsx", "odt"],
        key=f"uploader-{st.session_state['upload_key']}",
    )
    if uploaded and st.button("Convert to HTML", type="primary"):
        with st.spinner("Uploading..."):
            try:
                job_id = client.upload(uploaded.name, uploaded.getvalue())
            except ClientError as e:
                st.error(f"Upload failed: {e}")
                return
        st.toast(f"Job {job_id} created", icon="✅")
        _reset_uploader()
        st.rerun()


def _job_row(client: ConverterClient, job: dict[str, object]) -> None:
    job_id = str(job["id"])
    status = str(job.get("status", "unknown"))
    col1, col2, col3 = st.columns([4, 2, 2])
    with col1:
        st.write(f"{STATUS_ICONS.get(status, '')} **{job.get('original_file', '')}**")
        st.caption(f"{job_id} · created {job.get('created_at', '')}")
        if job.get("error"):
            st.caption(f"Error: {job['error']}")
    with col2:
        if status == "complete":
            try:
                html = client.download(job_id)
            except ClientError as e:
                st.caption(f"Download unavailable: {e}")
            else:
                name = os.path.basename(str(job.get("converted_file", f"{job_id}.html")))
                st.download_button("Download", data=html, file_name=name, mime="text/html", key=f"dl-{job_id}")
    with col3:
        if status in {"complete", "failed"} and st.button("Delete", key=f"del-{job_id}"):
            try:
                client.delete(job_id)
            except ClientError as e:
                st.error(f"Delete failed: {e}")
            else:
                st.rerun()


def main() -> None:
    st.set_page_config(page_title="Document Converter", page_icon="📄", layout="wide")
    st.title("📄 Document Converter")
    st.caption(f"API base: {API_BASE}")

    client = _client()
    _upload_section(client)

    st.subheader("Recent conversions")
    try:
        jobs = client.list_jobs()
    except ClientError as e:
        st.error(f"Could not load jobs: {e}")
        return
    if not jobs:
        st.info("No conversions yet.")
    for job in jobs:
        _job_row(client, job)

    # Keep polling while any job is still converting
    if any(job.get("status") == "pending" for job in jobs):
        time.sleep(REFRESH_SEC)
        st.rerun()


if __name__ == "__main__":
    main()
