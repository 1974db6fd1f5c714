"""
diagnosis.py — overall rabies diagnostic result from the individual assays

Inputs (any column may be absent, any value may be missing):
    lateral_flow_test   Positive / Negative
    rtqpcr              RT-qPCR Ct value, read as a number
    hmpcr_n405          Pos1 / Pos2 / Neg
    fat                 Positive / Negative
    drit                Positive / Negative

Decision order (first match wins):
    1. nothing recorded                        → missing
    2. lateral flow Positive                   → Positive
    3. every recorded result is "Negative"     → Negative
    4. FAT or dRIT Positive                    → Positive
    5. Ct < 32 → Positive, 32–36 → Inconclusive, > 36 → Negative
    6. HMPCR Pos1/Pos2 → Positive, Neg → Negative
    7. otherwise                               → missing

A recorded Ct value is a number, so it never counts as "Negative" in step 3;
neither does an HMPCR "Neg".
"""

from __future__ import annotations

import math
from typing import Any, Optional

import pandas as pd

LATERAL_FLOW_FIELD = "lateral_flow_test"
CT_FIELD = "rtqpcr"
HMPCR_FIELD = "hmpcr_n405"
FAT_FIELD = "fat"
DRIT_FIELD = "drit"
RESULT_FIELD = "diagnostic_result"

POSITIVE = "Positive"
NEGATIVE = "Negative"
INCONCLUSIVE = "Inconclusive"
RESULTS = (POSITIVE, NEGATIVE, INCONCLUSIVE)

CT_POSITIVE_BELOW = 32.0
CT_NEGATIVE_ABOVE = 36.0

HMPCR_POSITIVE = ("Pos1", "Pos2")
HMPCR_NEGATIVE = "Neg"


def _categorical(value: Any) -> Optional[str]:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def parse_ct_value(value: Any) -> Optional[float]:
    """Read a Ct value as a float; blank or non-numeric input gives None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number):
        return None
    return number


def classify_result(
    lateral_flow: Any = None,
    ct_value: Any = None,
    hmpcr: Any = None,
    fat: Any = None,
    drit: Any = None,
) -> Optional[str]:
    lft = _categorical(lateral_flow)
    ct = parse_ct_value(ct_value)
    hmp = _categorical(hmpcr)
    fat_result = _categorical(fat)
    drit_result = _categorical(drit)

    recorded = [value for value in (lft, ct, hmp, fat_result, drit_result) if value is not None]
    if not recorded:
        return None

    if lft == POSITIVE:
        return POSITIVE

    if all(value == NEGATIVE for value in recorded):
        return NEGATIVE

    if fat_result == POSITIVE or drit_result == POSITIVE:
        return POSITIVE

    if ct is not None:
        if ct < CT_POSITIVE_BELOW:
            return POSITIVE
        if ct <= CT_NEGATIVE_ABOVE:
            return INCONCLUSIVE
        return NEGATIVE

    if hmp in HMPCR_POSITIVE:
        return POSITIVE
    if hmp == HMPCR_NEGATIVE:
        return NEGATIVE

    return None


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    if name in df.columns:
        return df[name]
    return pd.Series([None] * len(df), index=df.index, dtype=object)


def create_diagnostic_results(df: pd.DataFrame) -> pd.Series:
    """One overall result per record; absent columns count as missing."""
    results = [
        classify_result(lft, ct, hmp, fat, drit)
        for lft, ct, hmp, fat, drit in zip(
            _column(df, LATERAL_FLOW_FIELD),
            _column(df, CT_FIELD),
            _column(df, HMPCR_FIELD),
            _column(df, FAT_FIELD),
            _column(df, DRIT_FIELD),
        )
    ]
    return pd.Series(results, index=df.index, dtype=object, name=RESULT_FIELD)


def add_diagnostic_result(df: pd.DataFrame) -> pd.DataFrame:
    classified = df.copy()
    classified[RESULT_FIELD] = create_diagnostic_results(df)
    return classified
