from __future__ import annotations

from typing import Iterable

import pandas as pd


def reconcile_columns(df: pd.DataFrame, dictionary_fields: Iterable[str]) -> dict:
    """
    Compare the export's columns with the dictionary's declared fields.

    Columns only in the export are reported and left alone. Dictionary fields
    missing from the export are added as empty (missing) columns, so a second
    run reports nothing missing.
    """
    fields = list(dict.fromkeys(dictionary_fields))
    file_cols = [str(column) for column in df.columns]
    field_set = set(fields)
    file_set = set(file_cols)

    extra = [column for column in file_cols if column not in field_set]
    missing = [name for name in fields if name not in file_set]

    reconciled = df.copy()
    for name in missing:
        reconciled[name] = None

    return {
        "dataframe":       reconciled,
        "extra_columns":   extra,
        "missing_columns": missing,
    }
