from __future__ import annotations

from collections import Counter
from typing import Any, Optional

import pandas as pd

from rabv_redcap.dictionary import DataDictionary, DictionaryError

# Checked in this order; the first label a field defines absorbs its unmatched values.
FALLBACK_LABELS = ("Unknown", "Other", "NA")


def _is_blank(value: Any) -> bool:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return True
    return str(value).strip() == ""


def label_to_code(dictionary: DataDictionary, field: str) -> dict[str, str]:
    """
    Invert a field's code → label map.

    Raises DictionaryError when two codes share a label, since a label could
    then recode to either.
    """
    entries = dictionary.choices[field]
    counts = Counter(entries.values())
    shared = sorted(label for label, count in counts.items() if count > 1)
    if shared:
        raise DictionaryError(
            f"Field '{field}' uses the same label for more than one code: {', '.join(repr(s) for s in shared)}"
        )
    inverse = {label: code for code, label in entries.items()}
    for alias, code in dictionary.aliases.get(field, {}).items():
        inverse.setdefault(alias, code)
    return inverse


def fallback_for(dictionary: DataDictionary, field: str) -> tuple[Optional[str], Optional[str]]:
    entries = dictionary.choices[field]
    for label in FALLBACK_LABELS:
        for code, candidate in entries.items():
            if candidate == label:
                return label, code
    return None, None


def recode_data(df: pd.DataFrame, dictionary: DataDictionary) -> dict:
    """
    Replace human-readable labels with dictionary codes.

    Only columns that are both in the export and coded in the dictionary are
    touched. Values that match no label become the field's Unknown/Other/NA
    code when it has one, otherwise missing.

    Returns:
        dict with keys: dataframe, unmatched. ``unmatched`` maps each field with
        problems to {"values", "blanks", "fallback", "fallback_code", "count"}.
    """
    recoded = df.copy()
    unmatched: dict[str, dict] = {}

    for field in dictionary.coded_fields:
        if field not in recoded.columns:
            continue
        inverse = label_to_code(dictionary, field)
        fallback, fallback_code = fallback_for(dictionary, field)

        values: list[Optional[str]] = []
        mismatches: list[str] = []
        blanks = False
        count = 0
        for value in recoded[field]:
            code = None if _is_blank(value) else inverse.get(str(value).strip())
            if code is None:
                count += 1
                if _is_blank(value):
                    blanks = True
                elif str(value) not in mismatches:
                    mismatches.append(str(value))
                code = fallback_code
            values.append(code)

        recoded[field] = pd.Series(values, index=recoded.index, dtype=object)
        if count:
            unmatched[field] = {
                "values":        mismatches,
                "blanks":        blanks,
                "fallback":      fallback,
                "fallback_code": fallback_code,
                "count":         count,
            }

    return {"dataframe": recoded, "unmatched": unmatched}
