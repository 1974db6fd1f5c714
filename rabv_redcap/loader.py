"""
loader.py — Laboratory export loader for rabv-redcap

Supports: .csv .tsv .txt .xlsx .xlsm

Public API:
    result   = load_export("path/to/export.csv")
    prepared = prepare_records(result["dataframe"])
    df       = prepared["dataframe"]

Every column is read as text. Empty cells stay as empty strings; only the
literal "NA" is read as missing, matching how the laboratory sheets mark
tests that were not run.
"""

from __future__ import annotations

import csv
import io
import re
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Optional

import chardet
import pandas as pd

TEXT_FORMATS  = {".csv", ".tsv", ".txt"}
EXCEL_FORMATS = {".xlsx", ".xlsm"}
ALL_FORMATS   = TEXT_FORMATS | EXCEL_FORMATS

MISSING_TOKENS = ["NA"]

SAMPLE_ID_FIELD = "sample_id"
SEQUENCE_ID_FIELD = "sample_sequenceid"
DUPLICATE_ID_FIELD = "duplicate_id"
RUN_DATE_FIELD = "ngs_rundate"


# ══════════════════════════════════════════════════════════════════════════════
# ENCODING DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_encoding(raw: bytes) -> tuple[str, float]:
    result = chardet.detect(raw)
    detected = result.get("encoding") or "unknown"
    confidence = round(result.get("confidence") or 0.0, 2)
    return detected, confidence


def _decode_line(raw_line: bytes, encodings: list[str]) -> str:
    for enc in encodings:
        try:
            return raw_line.decode(enc)
        except (LookupError, UnicodeDecodeError):
            continue
    return raw_line.decode("latin-1")


def _read_text_safely(raw: bytes, detected: str) -> str:
    """
    Decode an export one line at a time.

    Each line is tried as UTF-8, then as the chardet guess, and finally as
    latin-1, which accepts any byte. NUL bytes and a leading BOM are dropped.
    """
    encodings = [enc for enc in ("utf-8", detected) if enc and enc != "unknown"]
    lines = [_decode_line(raw_line, encodings).replace("\x00", "") for raw_line in raw.split(b"\n")]
    return "\n".join(lines).lstrip("\ufeff")


# ══════════════════════════════════════════════════════════════════════════════
# DELIMITER DETECTION
# ══════════════════════════════════════════════════════════════════════════════

def _detect_delimiter(text: str) -> str:
    """
    Infer the delimiter from sample lines.

    Uses csv.Sniffer first; falls back to scoring each candidate delimiter by
    column-count consistency.
    """
    sample_lines = [line for line in text.splitlines() if line.strip()][:50]
    sample = "\n".join(sample_lines[:25])

    if sample:
        try:
            return csv.Sniffer().sniff(sample, delimiters=",;\t|").delimiter
        except csv.Error:
            pass

    best_delim = ","
    best_score = float("-inf")
    for delim in [",", ";", "\t", "|"]:
        rows = [
            row
            for row in csv.reader(io.StringIO("\n".join(sample_lines)), delimiter=delim)
            if any(cell.strip() for cell in row)
        ]
        if len(rows) < 2:
            continue
        widths = Counter(len(row) for row in rows)
        mode_width, mode_count = widths.most_common(1)[0]
        score = mode_width * 2.0 + (mode_count / len(rows)) * mode_width
        if mode_width == 1:
            score -= 10.0
        if score > best_score:
            best_score = score
            best_delim = delim
    return best_delim


# ══════════════════════════════════════════════════════════════════════════════
# FORMAT LOADERS
# ══════════════════════════════════════════════════════════════════════════════

def _load_text(path: Path, suffix: str) -> dict:
    raw = path.read_bytes()
    detected, confidence = _detect_encoding(raw)
    enc = detected if detected != "unknown" else "utf-8"
    text = _read_text_safely(raw, enc)
    if not text.strip():
        raise ValueError(f"{path.name} is empty")

    delimiter = "\t" if suffix == ".tsv" else _detect_delimiter(text)
    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            sep=delimiter,
            keep_default_na=False,
            na_values=MISSING_TOKENS,
        )
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise ValueError(f"Could not parse {suffix} file: {exc}") from exc

    warnings: list[str] = []
    if detected.upper().replace("-", "") not in ("UTF8", "ASCII", "UTF8SIG"):
        warnings.append(f"File decoded as {detected} (confidence {confidence}); check accented values")

    return {
        "dataframe":         df,
        "detected_format":   suffix.lstrip("."),
        "detected_encoding": enc,
        "delimiter":         delimiter,
        "sheet_name":        None,
        "original_rows":     len(df) + 1,
        "original_columns":  len(df.columns),
        "warnings":          warnings,
    }


def _load_excel(path: Path, suffix: str, sheet_name: Optional[str] = None) -> dict:
    try:
        with pd.ExcelFile(path, engine="openpyxl") as xf:
            all_sheets = list(xf.sheet_names)
            if sheet_name is None:
                if len(all_sheets) > 1:
                    raise ValueError(
                        f"Multiple sheets found in {suffix} workbook; pass sheet_name='...'. "
                        f"Available sheets: {all_sheets}"
                    )
                sheet_name = all_sheets[0]
            elif sheet_name not in all_sheets:
                raise ValueError(f"Sheet '{sheet_name}' not found. Available: {all_sheets}")
            df = pd.read_excel(
                xf,
                sheet_name=sheet_name,
                dtype=str,
                keep_default_na=False,
                na_values=MISSING_TOKENS,
            )
    except ValueError:
        raise
    except Exception as exc:
        raise ValueError(f"Could not read workbook: {exc}") from exc

    return {
        "dataframe":         df,
        "detected_format":   suffix.lstrip("."),
        "detected_encoding": None,
        "delimiter":         None,
        "sheet_name":        sheet_name,
        "original_rows":     len(df) + 1,
        "original_columns":  len(df.columns),
        "warnings":          [],
    }


def load_export(path: "str | Path", sheet_name: Optional[str] = None) -> dict:
    """
    Load a laboratory export into a string-typed DataFrame.

    Returns:
        dict with keys: dataframe, detected_format, detected_encoding,
        delimiter, sheet_name, original_rows, original_columns, warnings.

    Raises:
        FileNotFoundError  if the file does not exist.
        ValueError         if the format is unsupported or unreadable.
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    if suffix not in ALL_FORMATS:
        supported = ", ".join(sorted(ALL_FORMATS))
        raise ValueError(f"Unsupported format '{suffix}'. Supported: {supported}")

    if suffix in TEXT_FORMATS:
        return _load_text(path, suffix)
    return _load_excel(path, suffix, sheet_name)


# ══════════════════════════════════════════════════════════════════════════════
# RECORD PREPARATION
# ══════════════════════════════════════════════════════════════════════════════

MONTH_NAMES = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}


def _expand_year(year: int) -> int:
    if year >= 100:
        return year
    return 2000 + year if year < 50 else 1900 + year


def normalise_run_date(value: str) -> tuple[str, bool]:
    """
    Normalise a day-first date to YYYY-MM-DD.

    Returns (value, parsed). Unparseable values come back unchanged with
    parsed=False; ISO dates are returned as-is.
    """
    v = value.strip()
    if re.match(r"^\d{4}-\d{2}-\d{2}$", v):
        return v, True

    m = re.match(r"^(\d{4}-\d{2}-\d{2})T", v)
    if m:
        return m.group(1), True

    m = re.match(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2}|\d{4})$", v)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), _expand_year(int(m.group(3)))
        try:
            return datetime(year, month, day).strftime("%Y-%m-%d"), True
        except ValueError:
            return value, False

    m = re.match(r"^(\d{1,2})[\s\-/]+([A-Za-z]+)[\s\-/,]+(\d{2}|\d{4})$", v)
    if m:
        month = MONTH_NAMES.get(m.group(2).lower())
        if month is None:
            return value, False
        try:
            return datetime(_expand_year(int(m.group(3))), month, int(m.group(1))).strftime("%Y-%m-%d"), True
        except ValueError:
            return value, False

    return value, False


def _is_blank(value) -> bool:
    if value is None:
        return True
    if not isinstance(value, str) and pd.isna(value):
        return True
    return str(value).strip() == ""


def assign_duplicate_ids(sample_ids: pd.Series) -> pd.Series:
    """1-based occurrence counter within each sample id, in row order."""
    keys = sample_ids.map(lambda value: "" if _is_blank(value) else str(value))
    return keys.groupby(keys, sort=False).cumcount() + 1


def prepare_records(df: pd.DataFrame) -> dict:
    """
    Prepare a freshly loaded export for the curation pipeline.

    - blank sample_id values are filled from sample_sequenceid
    - duplicate_id counts repeated sample ids (1, 2, ...)
    - ngs_rundate is normalised from day-first text to YYYY-MM-DD
    """
    prepared = df.copy()
    warnings: list[str] = []
    filled = 0
    unparsed: list[str] = []

    if SAMPLE_ID_FIELD not in prepared.columns:
        warnings.append(f"Export has no '{SAMPLE_ID_FIELD}' column")
        prepared[SAMPLE_ID_FIELD] = None

    if SEQUENCE_ID_FIELD in prepared.columns:
        blank_ids = prepared[SAMPLE_ID_FIELD].map(_is_blank)
        usable = ~prepared[SEQUENCE_ID_FIELD].map(_is_blank)
        fill_mask = blank_ids & usable
        filled = int(fill_mask.sum())
        prepared.loc[fill_mask, SAMPLE_ID_FIELD] = prepared.loc[fill_mask, SEQUENCE_ID_FIELD]

    still_blank = int(prepared[SAMPLE_ID_FIELD].map(_is_blank).sum())
    if still_blank:
        warnings.append(f"{still_blank} records have no sample id")

    prepared[DUPLICATE_ID_FIELD] = assign_duplicate_ids(prepared[SAMPLE_ID_FIELD])
    duplicate_count = int((prepared[DUPLICATE_ID_FIELD] > 1).sum())

    if RUN_DATE_FIELD in prepared.columns:
        normalised = []
        for value in prepared[RUN_DATE_FIELD]:
            if _is_blank(value):
                normalised.append(value)
                continue
            new_value, parsed = normalise_run_date(str(value))
            if not parsed and str(value) not in unparsed:
                unparsed.append(str(value))
            normalised.append(new_value)
        prepared[RUN_DATE_FIELD] = normalised
        if unparsed:
            warnings.append(f"{len(unparsed)} run dates could not be read as day-first dates and were left unchanged")

    return {
        "dataframe":            prepared,
        "entries":              len(prepared),
        "duplicate_sample_ids": duplicate_count,
        "filled_sample_ids":    filled,
        "unparsed_run_dates":   unparsed,
        "warnings":             warnings,
    }
