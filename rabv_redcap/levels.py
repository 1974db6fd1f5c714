"""Read-only checks of coded columns against the dictionary's labels."""

from __future__ import annotations

from typing import Iterable, Optional

import pandas as pd

from rabv_redcap.dictionary import DataDictionary

FALLBACK_SCAN_LABELS = ("Unknown", "Other")


def _observed_text(value) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    # Trimmed the same way the recoder trims before matching.
    return str(value).strip()


def scan_mismatched_levels(df: pd.DataFrame, dictionary: DataDictionary, field: str) -> dict:
    """
    List the values of ``field`` that are not labels in the dictionary.

    Blank and missing values are both reported as "". Fields without choices
    come back with coded=False and unmatched=None.
    """
    if not dictionary.is_coded(field):
        return {"field": field, "coded": False, "present": field in df.columns, "unmatched": None, "fallback": []}

    allowed = dictionary.allowed_labels(field)
    observed: list[str] = []
    if field in df.columns:
        observed = list(dict.fromkeys(_observed_text(value) for value in df[field]))

    allowed_set = set(allowed)
    unmatched = sorted(value for value in observed if value not in allowed_set)
    fallback = [label for label in dictionary.labels(field) if label in FALLBACK_SCAN_LABELS]

    return {
        "field":     field,
        "coded":     True,
        "present":   field in df.columns,
        "unmatched": unmatched,
        "fallback":  fallback if unmatched else [],
    }


def scan_all_levels(
    df: pd.DataFrame,
    dictionary: DataDictionary,
    fields: Optional[Iterable[str]] = None,
) -> list[dict]:
    if fields is None:
        fields = [name for name in dictionary.coded_fields if name in df.columns]
    return [scan_mismatched_levels(df, dictionary, name) for name in fields]
