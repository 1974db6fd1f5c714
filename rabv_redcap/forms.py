"""
forms.py — split curated records into REDCap import forms

Public API:
    result = partition_forms(df, form_columns(dictionary), FixedAccessGroup("peru"))
    result = partition_forms(df, columns, InferAccessGroup(), dictionary=dictionary)
    result["diagnostic_form"], result["sequencing_form"]

Both forms are all-text: every missing value becomes "", which is what
REDCap expects for "no value" on import.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

import pandas as pd

from rabv_redcap.dictionary import (
    COUNTRY_FIELD,
    REPEAT_INSTANCE_FIELD,
    REPEAT_INSTRUMENT_FIELD,
    SAMPLE_ID_FIELD,
    SEQUENCING_FORM,
    DataDictionary,
    FormColumns,
)
from rabv_redcap.loader import DUPLICATE_ID_FIELD, assign_duplicate_ids

ACCESS_GROUP_FIELD = "redcap_data_access_group"
ACCESS_GROUPS = ("east_africa", "malawi", "nigeria", "peru", "philippines")

COUNTRY_ACCESS_GROUPS = {
    "kenya": "east_africa",
    "uganda": "east_africa",
    "tanzania": "east_africa",
    "united republic of tanzania": "east_africa",
    "malawi": "malawi",
    "nigeria": "nigeria",
    "peru": "peru",
    "philippines": "philippines",
}

PLATFORM_FIELD = "ngs_platform"
NANOPORE_FIELD = "nanopore_platform"
ILLUMINA_FIELD = "illumina_platform"

UNRECOGNIZED_EXAMPLE_LIMIT = 5


class MissingColumnError(ValueError):
    """A column the stage cannot run without is absent."""


@dataclass(frozen=True)
class InferAccessGroup:
    country_field: str = COUNTRY_FIELD


@dataclass(frozen=True)
class FixedAccessGroup:
    group: str

    def __post_init__(self) -> None:
        if self.group not in ACCESS_GROUPS:
            raise ValueError(
                f"Unknown access group '{self.group}'. Choose one of: {', '.join(ACCESS_GROUPS)}"
            )


AccessGroupMode = Union[InferAccessGroup, FixedAccessGroup]


def _is_missing(value: Any) -> bool:
    return value is None or (not isinstance(value, str) and pd.isna(value))


def _decoded(value: Any, field: str, dictionary: Optional[DataDictionary]) -> str:
    """Folded label for a value given as a label, an alias or a code."""
    if _is_missing(value):
        return ""
    text = str(value).strip()
    if dictionary is not None:
        text = dictionary.aliases.get(field, {}).get(text, text)
        text = dictionary.label_for(field, text) or text
    return text.strip().lower()


def access_group_for_country(value: Any, dictionary: Optional[DataDictionary] = None) -> Optional[str]:
    return COUNTRY_ACCESS_GROUPS.get(_decoded(value, COUNTRY_FIELD, dictionary))


def infer_access_groups(
    countries: pd.Series,
    dictionary: Optional[DataDictionary] = None,
) -> tuple[pd.Series, list[str]]:
    """Map each country to its access group; unknown countries become missing."""
    groups: list[Optional[str]] = []
    unrecognized: list[str] = []
    for value in countries:
        group = access_group_for_country(value, dictionary)
        if group is None:
            shown = "" if _is_missing(value) else str(value)
            if shown not in unrecognized:
                unrecognized.append(shown)
        groups.append(group)
    return pd.Series(groups, index=countries.index, dtype=object), unrecognized


def harmonize_platforms(df: pd.DataFrame, dictionary: Optional[DataDictionary] = None) -> pd.DataFrame:
    """Blank the sub-platform column that does not belong to the chosen platform."""
    if PLATFORM_FIELD not in df.columns:
        return df
    harmonized = df.copy()
    platform = harmonized[PLATFORM_FIELD].map(lambda value: _decoded(value, PLATFORM_FIELD, dictionary))
    if ILLUMINA_FIELD in harmonized.columns:
        harmonized.loc[platform == "nanopore", ILLUMINA_FIELD] = None
    if NANOPORE_FIELD in harmonized.columns:
        harmonized.loc[platform == "illumina", NANOPORE_FIELD] = None
    return harmonized


def _as_import_text(value: Any) -> str:
    if _is_missing(value):
        return ""
    return str(value)


def _form_table(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    selected = [name for name in columns if name in df.columns]
    table = df.loc[:, selected].copy()
    for name in selected:
        table[name] = table[name].map(_as_import_text)
    return table.reset_index(drop=True)


def partition_forms(
    df: pd.DataFrame,
    columns: FormColumns,
    access: AccessGroupMode,
    *,
    dictionary: Optional[DataDictionary] = None,
    countries: Optional[pd.Series] = None,
) -> dict:
    """
    Build the diagnostic and sequencing import tables.

    Args:
        df:         Fully recoded records.
        columns:    Form column sets from dictionary.form_columns().
        access:     InferAccessGroup (per-record, from the country column) or
                    FixedAccessGroup (one group for the whole batch).
        dictionary: Used to read recoded country and platform codes as labels.
        countries:  Country values as entered, one per record of ``df``. In
                    infer mode these are looked up and reported instead of
                    the recoded column.

    Raises:
        MissingColumnError  if sample_id, or the country column in infer mode, is absent.
        TypeError           if access is not one of the two modes.
        ValueError          if countries does not have one value per record.
    """
    if not isinstance(access, (InferAccessGroup, FixedAccessGroup)):
        raise TypeError("access must be InferAccessGroup or FixedAccessGroup")
    if SAMPLE_ID_FIELD not in df.columns:
        raise MissingColumnError(f"Cannot build import forms without a '{SAMPLE_ID_FIELD}' column")

    records = harmonize_platforms(df, dictionary)
    if records is df:
        records = df.copy()

    unrecognized: list[str] = []
    if isinstance(access, InferAccessGroup):
        if countries is None:
            if access.country_field not in records.columns:
                raise MissingColumnError(
                    f"Cannot infer access groups: column '{access.country_field}' is missing"
                )
            countries = records[access.country_field]
        elif len(countries) != len(records):
            raise ValueError("countries must hold one value per record")
        groups, unrecognized = infer_access_groups(countries, dictionary)
        records[ACCESS_GROUP_FIELD] = groups.to_numpy()
        access_mode = "inferred"
    else:
        records[ACCESS_GROUP_FIELD] = access.group
        access_mode = "fixed"

    if DUPLICATE_ID_FIELD in records.columns:
        records[REPEAT_INSTANCE_FIELD] = records[DUPLICATE_ID_FIELD]
    else:
        records[REPEAT_INSTANCE_FIELD] = assign_duplicate_ids(records[SAMPLE_ID_FIELD])
    records[REPEAT_INSTRUMENT_FIELD] = ""

    diagnostic = _form_table(records, [*columns.diagnostic, ACCESS_GROUP_FIELD])

    records[REPEAT_INSTRUMENT_FIELD] = SEQUENCING_FORM
    sequencing = _form_table(records, [*columns.sequencing, ACCESS_GROUP_FIELD])

    return {
        "diagnostic_form":        diagnostic,
        "sequencing_form":        sequencing,
        "unrecognized_countries": unrecognized,
        "access_mode":            access_mode,
    }


def unrecognized_examples(values: list[str], limit: int = UNRECOGNIZED_EXAMPLE_LIMIT) -> str:
    shown = ", ".join(value if value else "[blank]" for value in values[:limit])
    return shown + (", ..." if len(values) > limit else "")
