#!/usr/bin/env python3
from __future__ import annotations

import io
import sys
import tempfile
import zipfile
from pathlib import Path
from typing import Optional

import pandas as pd
import streamlit as st


ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from rabv_redcap.dictionary import DictionaryError, load_dictionary  # noqa: E402
from rabv_redcap.forms import ACCESS_GROUPS, FixedAccessGroup, InferAccessGroup, MissingColumnError  # noqa: E402
from rabv_redcap.loader import ALL_FORMATS, load_export  # noqa: E402
from rabv_redcap.pipeline import build_process_summary, run_pipeline  # noqa: E402
from rabv_redcap.reporter import (  # noqa: E402
    render_column_report,
    render_country_report,
    render_diagnosis_report,
    render_level_reports,
    render_normalization_report,
    render_preparation_report,
    render_recode_report,
)

INFER_OPTION = "Infer from country"


def ensure_state() -> None:
    st.session_state.setdefault("result", None)
    st.session_state.setdefault("summary", None)
    st.session_state.setdefault("error", None)


def form_csv_bytes(form: pd.DataFrame) -> bytes:
    return form.to_csv(index=False).encode("utf-8")


def forms_zip_bytes(result: dict) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        archive.writestr("diagnostic_form.csv", form_csv_bytes(result["diagnostic_form"]))
        archive.writestr("sequencing_form.csv", form_csv_bytes(result["sequencing_form"]))
    return buffer.getvalue()


def process_upload(
    name: str,
    file_bytes: bytes,
    dictionary_source: Optional[str],
    access_choice: str,
    sheet_name: Optional[str],
) -> tuple[dict, dict]:
    access = InferAccessGroup() if access_choice == INFER_OPTION else FixedAccessGroup(access_choice)
    loaded_dictionary = load_dictionary(dictionary_source or None)
    with tempfile.TemporaryDirectory(prefix="rabv-redcap-") as folder:
        path = Path(folder) / name
        path.write_bytes(file_bytes)
        loaded = load_export(path, sheet_name=sheet_name or None)
    result = run_pipeline(loaded["dataframe"], loaded_dictionary["dictionary"], access)
    result["warnings"] = list(loaded["warnings"]) + result["warnings"]
    summary = build_process_summary(result, input_path=Path(name), dictionary_loaded=loaded_dictionary)
    return result, summary


def render_results(result: dict, summary: dict) -> None:
    reports = result["reports"]
    st.subheader("Results")
    metrics = st.columns(4)
    metrics[0].metric("Records", summary["rows"]["records"])
    metrics[1].metric("Diagnostic rows", summary["rows"]["diagnostic_form"])
    metrics[2].metric("Sequencing rows", summary["rows"]["sequencing_form"])
    metrics[3].metric("Needs review", "yes" if summary["review_required"] else "no")
    st.caption(f"Dictionary: {summary['dictionary_source']}  •  Access groups: {summary['access_mode']}")

    for warning in summary["warnings"]:
        st.warning(warning)

    with st.expander("Review", expanded=summary["review_required"]):
        st.text(render_recode_report(reports["recode"]))
        country_report = render_country_report(
            reports["forms"]["unrecognized_countries"],
            reports["forms"]["country_field"],
        )
        if country_report:
            st.text(country_report)

    with st.expander("Stage reports", expanded=False):
        st.text(render_preparation_report(reports["preparation"]))
        st.text(render_column_report(reports["columns"]))
        st.text(render_normalization_report(reports["normalization"]))
        st.text(render_level_reports(reports["levels"], only_problems=True) or "✅ No level mismatches.")
        st.text(render_diagnosis_report(reports["diagnosis"]))

    left, right = st.columns(2)
    with left:
        st.caption("Diagnostic form")
        st.dataframe(result["diagnostic_form"].head(50), width="stretch", hide_index=True)
        st.download_button(
            "Download diagnostic_form.csv",
            data=form_csv_bytes(result["diagnostic_form"]),
            file_name="diagnostic_form.csv",
            mime="text/csv",
            width="stretch",
        )
    with right:
        st.caption("Sequencing form")
        st.dataframe(result["sequencing_form"].head(50), width="stretch", hide_index=True)
        st.download_button(
            "Download sequencing_form.csv",
            data=form_csv_bytes(result["sequencing_form"]),
            file_name="sequencing_form.csv",
            mime="text/csv",
            width="stretch",
        )
    st.download_button(
        "Download both forms (.zip)",
        data=forms_zip_bytes(result),
        file_name="redcap_import_forms.zip",
        mime="application/zip",
        width="stretch",
    )


def main() -> None:
    st.set_page_config(page_title="rabv-redcap", page_icon="🧪", layout="wide", initial_sidebar_state="collapsed")
    ensure_state()
    st.title("rabv-redcap")
    st.caption("Upload a laboratory export, choose how records map to access groups, and download the REDCap import forms.")

    upload = st.file_uploader("Laboratory export", type=[ext.lstrip(".") for ext in sorted(ALL_FORMATS)])
    dictionary_source = st.text_input(
        "Dictionary path or URL",
        placeholder="Leave blank to use the bundled dictionary",
    )
    sheet_name = st.text_input("Workbook sheet", placeholder="Only needed for workbooks with several sheets")
    access_choice = st.selectbox("Access group", options=[INFER_OPTION, *ACCESS_GROUPS])
    submit = st.button("Run", type="primary", width="stretch", disabled=upload is None)

    if submit and upload is not None:
        st.session_state["error"] = None
        try:
            with st.spinner("Curating records..."):
                result, summary = process_upload(
                    upload.name,
                    upload.getvalue(),
                    dictionary_source.strip(),
                    access_choice,
                    sheet_name.strip(),
                )
            st.session_state["result"] = result
            st.session_state["summary"] = summary
        except (MissingColumnError, DictionaryError, FileNotFoundError, ValueError) as exc:
            st.session_state["result"] = None
            st.session_state["summary"] = None
            st.session_state["error"] = str(exc)

    if st.session_state["error"]:
        st.error(st.session_state["error"])
        return
    if st.session_state["result"] is None:
        st.info(f"Supported here: {' '.join(sorted(ALL_FORMATS))}")
        return
    render_results(st.session_state["result"], st.session_state["summary"])


if __name__ == "__main__":
    main()
