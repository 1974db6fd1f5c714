"""
dictionary.py — REDCap data dictionary loading and choice parsing

Public API:
    loaded     = load_dictionary()                 # bundled copy
    loaded     = load_dictionary("https://...")    # remote, bundled fallback
    dictionary = loaded["dictionary"]
    columns    = form_columns(dictionary)

A dictionary's "Choices, Calculations, OR Slider Labels" cells look like
"1, Brain | 2, Saliva | 99, Other". Each coded field becomes an ordered
code → label mapping; free-text fields (empty choice cell) are left out.
"""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import pandas as pd
import requests

BUNDLED_DICTIONARY = Path(__file__).resolve().parent / "bundled" / "RABVlab_DataDictionary.csv"

FIELD_NAME_COLUMN = "Variable / Field Name"
FORM_NAME_COLUMN = "Form Name"
CHOICES_COLUMN = "Choices, Calculations, OR Slider Labels"

SAMPLE_ID_FIELD = "sample_id"
COUNTRY_FIELD = "country"
REPEAT_INSTRUMENT_FIELD = "redcap_repeat_instrument"
REPEAT_INSTANCE_FIELD = "redcap_repeat_instance"
REPEAT_METADATA_FIELDS = (REPEAT_INSTRUMENT_FIELD, REPEAT_INSTANCE_FIELD)
FORM_REQUIRED_FIELDS = (SAMPLE_ID_FIELD, *REPEAT_METADATA_FIELDS)

DIAGNOSTIC_FORM = "diagnostic"
SEQUENCING_FORM = "sequencing"

DEFAULT_TIMEOUT = 60


class DictionaryError(ValueError):
    """The dictionary table cannot be used as a codebook."""


@dataclass
class DataDictionary:
    table: pd.DataFrame
    field_names: list[str]
    forms: dict[str, str]
    choices: dict[str, dict[str, str]]
    aliases: dict[str, dict[str, str]] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def coded_fields(self) -> list[str]:
        return list(self.choices)

    def is_coded(self, name: str) -> bool:
        return name in self.choices

    def labels(self, name: str) -> list[str]:
        return list(self.choices.get(name, {}).values())

    def allowed_labels(self, name: str) -> list[str]:
        """Labels plus any alias that recodes to the same value."""
        allowed = self.labels(name)
        for alias in self.aliases.get(name, {}):
            if alias not in allowed:
                allowed.append(alias)
        return allowed

    def label_for(self, name: str, value: Any) -> Optional[str]:
        if value is None or pd.isna(value):
            return None
        return self.choices.get(name, {}).get(str(value).strip())


@dataclass
class FormColumns:
    diagnostic: list[str]
    sequencing: list[str]
    all_fields: list[str]


# ══════════════════════════════════════════════════════════════════════════════
# CHOICE PARSING
# ══════════════════════════════════════════════════════════════════════════════

def parse_choices(choice_str: Any) -> tuple[dict[str, str], list[str]]:
    """
    Parse "code, label | code, label" into an ordered code → label dict.

    Pieces without a comma keep their code with an empty label and are
    reported. A repeated code keeps its first label.
    """
    entries: dict[str, str] = {}
    problems: list[str] = []
    if choice_str is None or (not isinstance(choice_str, str) and pd.isna(choice_str)):
        return entries, problems

    for piece in str(choice_str).split("|"):
        piece = piece.strip()
        if not piece:
            continue
        code, sep, label = piece.partition(",")
        code = code.strip()
        label = label.strip()
        if not sep:
            problems.append(f"choice '{piece}' has no comma separator; its label is empty")
        if code in entries:
            problems.append(f"code '{code}' is listed more than once; keeping '{entries[code]}'")
            continue
        entries[code] = label
    return entries, problems


def split_country_label(label: str) -> tuple[Optional[str], str]:
    """Split "KEN: Kenya" into ("KEN", "Kenya"); labels without a colon are kept whole."""
    token, sep, name = label.partition(":")
    if sep and name.strip():
        return token.strip() or None, name.strip()
    return None, label.strip()


def _normalise_header_for_match(value: str) -> str:
    return "".join(ch for ch in str(value).lower() if ch.isalnum())


def _resolve_column(table: pd.DataFrame, wanted: str) -> Optional[str]:
    target = _normalise_header_for_match(wanted)
    for column in table.columns:
        if _normalise_header_for_match(column) == target:
            return column
    return None


def _cell_text(value: Any) -> str:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return ""
    return str(value).strip()


def parse_dictionary(table: pd.DataFrame) -> DataDictionary:
    """Build a DataDictionary from a REDCap dictionary table."""
    name_col = _resolve_column(table, FIELD_NAME_COLUMN)
    choices_col = _resolve_column(table, CHOICES_COLUMN)
    form_col = _resolve_column(table, FORM_NAME_COLUMN)
    if name_col is None:
        raise DictionaryError(f"Dictionary has no '{FIELD_NAME_COLUMN}' column")
    if choices_col is None:
        raise DictionaryError(f"Dictionary has no '{CHOICES_COLUMN}' column")

    warnings: list[str] = []
    if form_col is None:
        warnings.append(f"Dictionary has no '{FORM_NAME_COLUMN}' column; form columns will be empty")

    field_names: list[str] = []
    forms: dict[str, str] = {}
    choices: dict[str, dict[str, str]] = {}

    for _, row in table.iterrows():
        name = _cell_text(row[name_col])
        if not name:
            continue
        if name in forms:
            warnings.append(f"Field '{name}' is declared more than once; keeping the first declaration")
            continue
        field_names.append(name)
        forms[name] = _cell_text(row[form_col]) if form_col is not None else ""

        choice_str = _cell_text(row[choices_col])
        if not choice_str:
            continue
        entries, problems = parse_choices(choice_str)
        warnings.extend(f"{name}: {problem}" for problem in problems)
        if entries:
            choices[name] = entries

    aliases: dict[str, dict[str, str]] = {}
    if COUNTRY_FIELD in choices:
        country_choices: dict[str, str] = {}
        country_aliases: dict[str, str] = {}
        for code, label in choices[COUNTRY_FIELD].items():
            token, name = split_country_label(label)
            country_choices[code] = name
            if token and token != name:
                country_aliases[token] = code
        choices[COUNTRY_FIELD] = country_choices
        if country_aliases:
            aliases[COUNTRY_FIELD] = country_aliases

    return DataDictionary(
        table=table,
        field_names=field_names,
        forms=forms,
        choices=choices,
        aliases=aliases,
        warnings=warnings,
    )


# ══════════════════════════════════════════════════════════════════════════════
# RETRIEVAL
# ══════════════════════════════════════════════════════════════════════════════

def read_dictionary_table(raw: bytes) -> pd.DataFrame:
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")
    try:
        return pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as exc:
        raise DictionaryError(f"Could not parse dictionary: {exc}") from exc


def is_url(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def fetch_dictionary_bytes(url: str, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    response = requests.get(url, timeout=timeout, allow_redirects=True)
    try:
        response.raise_for_status()
        return response.content
    finally:
        response.close()


def _loaded(table: pd.DataFrame, source: str, location: str, warnings: list[str]) -> dict:
    dictionary = parse_dictionary(table)
    return {
        "dictionary": dictionary,
        "source":     source,
        "location":   location,
        "warnings":   warnings + dictionary.warnings,
    }


def load_dictionary(
    source: "str | Path | None" = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
) -> dict:
    """
    Load and parse a dictionary.

    Args:
        source:  None for the bundled copy, an http(s) URL, or a local path.
        timeout: Passed to the single remote request.

    Returns:
        dict with keys: dictionary, source ("bundled", "remote", "local"),
        location, warnings.

    A remote failure falls back to the bundled copy once and is reported in
    warnings. A missing local file raises FileNotFoundError.
    """
    text = str(source).strip() if source is not None else ""
    if not text:
        return _loaded(read_dictionary_table(BUNDLED_DICTIONARY.read_bytes()), "bundled", str(BUNDLED_DICTIONARY), [])

    if is_url(text):
        try:
            raw = fetch_dictionary_bytes(text, timeout=timeout)
        except requests.RequestException as exc:
            warning = f"Could not fetch dictionary from {text} ({exc}); using the bundled copy instead"
            return _loaded(
                read_dictionary_table(BUNDLED_DICTIONARY.read_bytes()),
                "bundled",
                str(BUNDLED_DICTIONARY),
                [warning],
            )
        return _loaded(read_dictionary_table(raw), "remote", text, [])

    path = Path(text)
    if not path.exists():
        raise FileNotFoundError(f"Dictionary not found: {path}")
    return _loaded(read_dictionary_table(path.read_bytes()), "local", str(path), [])


# ══════════════════════════════════════════════════════════════════════════════
# FORM COLUMNS
# ══════════════════════════════════════════════════════════════════════════════

def _union(*groups) -> list[str]:
    seen: list[str] = []
    for group in groups:
        for name in group:
            if name not in seen:
                seen.append(name)
    return seen


def form_columns(dictionary: DataDictionary) -> FormColumns:
    """Split dictionary fields into the diagnostic and sequencing import forms."""
    diagnostic = [name for name in dictionary.field_names if dictionary.forms.get(name) == DIAGNOSTIC_FORM]
    sequencing = [name for name in dictionary.field_names if dictionary.forms.get(name) == SEQUENCING_FORM]
    return FormColumns(
        diagnostic=_union(FORM_REQUIRED_FIELDS, diagnostic),
        sequencing=_union(FORM_REQUIRED_FIELDS, sequencing),
        all_fields=_union(dictionary.field_names, REPEAT_METADATA_FIELDS),
    )


def describe_field(dictionary: DataDictionary, name: str) -> dict:
    if name not in dictionary.field_names:
        raise DictionaryError(f"Field '{name}' is not declared in the dictionary")
    return {
        "field":   name,
        "form":    dictionary.forms.get(name, ""),
        "coded":   dictionary.is_coded(name),
        "choices": [
            {"code": code, "label": label}
            for code, label in dictionary.choices.get(name, {}).items()
        ],
        "aliases": dict(dictionary.aliases.get(name, {})),
    }
