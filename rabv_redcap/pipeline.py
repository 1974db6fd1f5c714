"""
pipeline.py — end-to-end curation of one laboratory export

    prepare → reconcile columns → tidy values → scan levels (advisory)
            → diagnostic result → recode → split into import forms

The dictionary is passed to every stage that needs it; nothing is cached
between runs.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd

from rabv_redcap import __version__ as TOOL_VERSION
from rabv_redcap.contracts import build_contract, build_run_summary
from rabv_redcap.diagnosis import RESULT_FIELD, RESULTS, add_diagnostic_result
from rabv_redcap.dictionary import DataDictionary, form_columns
from rabv_redcap.forms import AccessGroupMode, InferAccessGroup, partition_forms
from rabv_redcap.levels import scan_all_levels
from rabv_redcap.loader import DUPLICATE_ID_FIELD, prepare_records
from rabv_redcap.normalization import tidy_up_values
from rabv_redcap.recode import recode_data
from rabv_redcap.reconcile import reconcile_columns


def count_results(results: pd.Series) -> dict[str, int]:
    counts = {label: int((results == label).sum()) for label in RESULTS}
    counts["missing"] = int(results.isna().sum())
    return counts


def run_pipeline(
    records: pd.DataFrame,
    dictionary: DataDictionary,
    access: AccessGroupMode,
    *,
    scan_fields: Optional[Iterable[str]] = None,
) -> dict[str, Any]:
    """
    Curate a raw export into the diagnostic and sequencing import forms.

    Returns:
        dict with keys: diagnostic_form, sequencing_form, reports,
        review_required, warnings. ``reports`` holds each stage's own result
        (without DataFrames) under preparation, columns, normalization,
        levels, diagnosis, recode, forms.
    """
    prepared = prepare_records(records)
    reconciled = reconcile_columns(prepared["dataframe"], [*dictionary.field_names, DUPLICATE_ID_FIELD])
    tidied = tidy_up_values(reconciled["dataframe"])
    scans = scan_all_levels(tidied["dataframe"], dictionary, scan_fields)
    classified = add_diagnostic_result(tidied["dataframe"])
    recoded = recode_data(classified, dictionary)
    # Access groups come from the countries as entered, so the report names them.
    countries = None
    if isinstance(access, InferAccessGroup) and access.country_field in classified.columns:
        countries = classified[access.country_field]
    forms = partition_forms(
        recoded["dataframe"],
        form_columns(dictionary),
        access,
        dictionary=dictionary,
        countries=countries,
    )

    review_required = bool(recoded["unmatched"] or forms["unrecognized_countries"])
    return {
        "diagnostic_form": forms["diagnostic_form"],
        "sequencing_form": forms["sequencing_form"],
        "reports": {
            "preparation":   {key: value for key, value in prepared.items() if key != "dataframe"},
            "columns":       {key: value for key, value in reconciled.items() if key != "dataframe"},
            "normalization": {"changes": tidied["changes"]},
            "levels":        scans,
            "diagnosis":     count_results(classified[RESULT_FIELD]),
            "recode":        {"unmatched": recoded["unmatched"]},
            "forms": {
                "access_mode":            forms["access_mode"],
                "country_field":          access.country_field if isinstance(access, InferAccessGroup) else None,
                "unrecognized_countries": forms["unrecognized_countries"],
            },
        },
        "review_required": review_required,
        "warnings": list(prepared["warnings"]),
    }


def build_process_summary(
    result: dict[str, Any],
    *,
    input_path: Optional[Path],
    dictionary_loaded: dict[str, Any],
    output_paths: Optional[dict[str, Path]] = None,
) -> dict[str, Any]:
    contract = build_contract("rabv_redcap.process")
    reports = result["reports"]
    warnings = list(dictionary_loaded["warnings"]) + list(result["warnings"])
    dictionary_source = f"{dictionary_loaded['source']}:{dictionary_loaded['location']}"
    rows = {
        "records":         reports["preparation"]["entries"],
        "diagnostic_form": len(result["diagnostic_form"]),
        "sequencing_form": len(result["sequencing_form"]),
    }
    review = {
        "unmatched_fields":       reports["recode"]["unmatched"],
        "unrecognized_countries": reports["forms"]["unrecognized_countries"],
        "level_mismatches": {
            scan["field"]: scan["unmatched"]
            for scan in reports["levels"]
            if scan["coded"] and scan["unmatched"]
        },
    }
    return {
        "contract":          contract,
        "schema_version":    contract["version"],
        "tool_version":      TOOL_VERSION,
        "input_file":        str(input_path) if input_path else None,
        "dictionary_source": dictionary_source,
        "access_mode":       reports["forms"]["access_mode"],
        "rows":              rows,
        "columns":           reports["columns"],
        "normalization":     reports["normalization"],
        "diagnosis":         reports["diagnosis"],
        "review":            review,
        "review_required":   result["review_required"],
        "warnings":          warnings,
        "run_summary": build_run_summary(
            command="process",
            input_path=input_path,
            dictionary_source=dictionary_source,
            status="review" if result["review_required"] else "ok",
            output_paths=output_paths,
            metrics={
                **rows,
                "duplicate_sample_ids": reports["preparation"]["duplicate_sample_ids"],
                "missing_columns_added": len(reports["columns"]["missing_columns"]),
                "unmatched_fields": len(reports["recode"]["unmatched"]),
                "unrecognized_countries": len(reports["forms"]["unrecognized_countries"]),
            },
            warnings=warnings,
        ),
    }
