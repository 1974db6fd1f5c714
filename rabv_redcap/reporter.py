"""
reporter.py — human-readable text for each curation stage

Each renderer takes the dict a stage returned and gives back plain text meant
for a person deciding what to fix in the export before re-running. Nothing
here is parsed by machines; the JSON summary is the machine-readable view.
"""

from __future__ import annotations

from typing import Any, Optional

from rabv_redcap.forms import unrecognized_examples


def _blank(value: str) -> str:
    return value if value else "[blank]"


def render_dictionary_report(loaded: dict[str, Any]) -> str:
    dictionary = loaded["dictionary"]
    lines = [
        f"📖 Dictionary: {loaded['location']} ({loaded['source']})",
        f"   {len(dictionary.field_names)} fields, {len(dictionary.coded_fields)} coded",
    ]
    for warning in loaded["warnings"]:
        lines.append(f"⚠️ {warning}")
    return "\n".join(lines) + "\n"


def render_preparation_report(prepared: dict[str, Any]) -> str:
    lines = [
        f"✅ Your data contains {prepared['entries']} entries.",
        f"🔁 Detected {prepared['duplicate_sample_ids']} duplicate sample IDs.",
    ]
    if prepared["filled_sample_ids"]:
        lines.append(f"🛠️ Filled {prepared['filled_sample_ids']} blank sample IDs from sample_sequenceid.")
    if prepared["unparsed_run_dates"]:
        lines.append("⚠️ Run dates that could not be read (left unchanged):")
        lines.append("- " + ", ".join(prepared["unparsed_run_dates"]))
    return "\n".join(lines) + "\n"


def render_column_report(reconciled: dict[str, Any]) -> str:
    lines: list[str] = []
    extra = reconciled["extra_columns"]
    missing = reconciled["missing_columns"]
    if extra:
        lines.append("ℹ️ Columns in the file but NOT in the dictionary:")
        lines.append("- " + ", ".join(extra))
    else:
        lines.append("✅ All file columns are found in the dictionary.")
    if missing:
        lines.append("⚠️ Columns in the dictionary but NOT in the file:")
        lines.append("- " + ", ".join(missing))
        lines.append("🛠️ These columns will be added to the dataset with blank values.")
    else:
        lines.append("✅ All dictionary fields are found in the file.")
    return "\n".join(lines) + "\n"


def render_normalization_report(tidied: dict[str, Any]) -> str:
    changes = tidied["changes"]
    if not changes:
        return "✅ No values needed harmonising.\n"
    lines = ["🧹 Harmonised values:"]
    lines.extend(f"- {field}: {count}" for field, count in changes.items())
    return "\n".join(lines) + "\n"


def render_level_report(scan: dict[str, Any]) -> str:
    field = scan["field"]
    if not scan["coded"]:
        return f"⚠️ '{field}' is not a coded field (i.e., not constrained in the dictionary).\n"
    if not scan["unmatched"]:
        return f"✅ All values in '{field}' are valid and match the dictionary.\n"
    lines = [
        f"❌ The following values in '{field}' are not listed in the dictionary:",
        " - " + ", ".join(_blank(value) for value in scan["unmatched"]),
    ]
    if scan["fallback"]:
        lines.append(f"ℹ️ These values will be classed as: {' or '.join(scan['fallback'])}")
    return "\n".join(lines) + "\n"


def render_level_reports(scans: list[dict[str, Any]], *, only_problems: bool = False) -> str:
    parts = [
        render_level_report(scan)
        for scan in scans
        if not only_problems or not scan["coded"] or scan["unmatched"]
    ]
    return "".join(parts)


def render_diagnosis_report(counts: dict[str, int]) -> str:
    summary = ", ".join(f"{label}: {count}" for label, count in counts.items())
    return f"🧪 Diagnostic results: {summary}\n"


def render_recode_report(recoded: dict[str, Any]) -> str:
    unmatched = recoded["unmatched"]
    if not unmatched:
        return "✅ All coded values matched the dictionary.\n"
    lines = [
        "⚠️ Some values could not be matched to dictionary codes.",
        "→ Please review and replace these in your data to match allowed dictionary values.",
    ]
    for field, detail in unmatched.items():
        target = (
            f" → recoded as '{detail['fallback']}' ({detail['fallback_code']})"
            if detail["fallback"]
            else " → left blank"
        )
        if detail["values"]:
            lines.append(f" - `{field}`: {', '.join(detail['values'])}{target}")
        if detail["blanks"]:
            lines.append(f" - `{field}`: contains blanks{target}")
    return "\n".join(lines) + "\n"


def render_country_report(unrecognized: list[str], country_field: Optional[str] = "country") -> str:
    if not unrecognized:
        return ""
    return (
        f"⚠️ Could not infer an access group for some '{country_field}' values: "
        f"{unrecognized_examples(unrecognized)}\n"
    )


def render_process_text(summary: dict[str, Any]) -> str:
    rows = summary["rows"]
    lines = [
        "rabv-redcap process",
        f"Input: {summary['input_file'] or '[in memory]'}",
        f"Dictionary: {summary['dictionary_source']}",
        f"Access groups: {summary['access_mode']}",
        f"Records: {rows['records']}",
        f"Diagnostic form rows: {rows['diagnostic_form']}",
        f"Sequencing form rows: {rows['sequencing_form']}",
        f"Fields with unmatched values: {len(summary['review']['unmatched_fields'])}",
        f"Unrecognized countries: {len(summary['review']['unrecognized_countries'])}",
        f"Review needed: {'yes' if summary['review_required'] else 'no'}",
    ]
    if summary["warnings"]:
        lines.append("Warnings:")
        lines.extend(f"- {warning}" for warning in summary["warnings"])
    return "\n".join(lines) + "\n"
