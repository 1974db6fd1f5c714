from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping

import pandas as pd

POSITIVE_TOKENS = ("pos", "positive", "pos1", "pos2")
NEGATIVE_TOKENS = ("neg", "negative")


@dataclass(frozen=True)
class Rule:
    """Rewrite a case-folded value to ``value`` when it matches ``patterns``.

    ``match`` is "exact" (the whole value equals a pattern) or "contains"
    (a pattern occurs anywhere in the value).
    """

    match: str
    patterns: tuple[str, ...]
    value: str

    def matches(self, folded: str) -> bool:
        if self.match == "exact":
            return folded in self.patterns
        return any(pattern in folded for pattern in self.patterns)


RESULT_RULES = (
    Rule("exact", POSITIVE_TOKENS, "Positive"),
    Rule("exact", NEGATIVE_TOKENS, "Negative"),
)

NORMALIZATION_RULES: dict[str, tuple[Rule, ...]] = {
    "sample_tissuetype": (
        Rule("contains", ("salivary",), "Salivary_gland"),
        Rule("contains", ("saliva",), "Saliva"),
        Rule("contains", ("brain",), "Brain"),
    ),
    "sample_buffer": (
        Rule("exact", ("none", "no buffer"), "No_buffer_fresh"),
        Rule("contains", ("glycerol",), "Glycerol-saline"),
        Rule("contains", ("shield",), "RNAshield"),
        Rule("contains", ("rnala",), "RNAlater"),
        Rule("contains", ("-80",), "No_buffer_fresh_stored_at_-80"),
    ),
    "fat": RESULT_RULES,
    "drit": RESULT_RULES,
    "lateral_flow_test": RESULT_RULES,
    "hmpcr_n405": (
        Rule("exact", ("pos1",), "Pos1"),
        Rule("exact", ("pos2",), "Pos2"),
        Rule("exact", ("neg",), "Neg"),
    ),
}

# '&' and '+' break REDCap record ids on import.
IDENTIFIER_FIELDS = ("sample_id",)
IDENTIFIER_UNSAFE_RE = re.compile(r"[&+]")


def normalise_value(value: Any, rules: tuple[Rule, ...]) -> Any:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return value
    folded = str(value).lower()
    for rule in rules:
        if rule.matches(folded):
            return rule.value
    return value


def sanitise_identifier(value: Any) -> Any:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return value
    return IDENTIFIER_UNSAFE_RE.sub("_", str(value))


def tidy_up_values(
    df: pd.DataFrame,
    rules: Mapping[str, tuple[Rule, ...]] = NORMALIZATION_RULES,
    identifier_fields: tuple[str, ...] = IDENTIFIER_FIELDS,
) -> dict:
    """Harmonise messy categorical values and make sample ids import-safe."""
    tidied = df.copy()
    changes: dict[str, int] = {}

    for field, field_rules in rules.items():
        if field not in tidied.columns:
            continue
        before = tidied[field]
        after = before.map(lambda value: normalise_value(value, field_rules))
        changes[field] = _count_changes(before, after)
        tidied[field] = after

    for field in identifier_fields:
        if field not in tidied.columns:
            continue
        before = tidied[field]
        after = before.map(sanitise_identifier)
        changes[field] = _count_changes(before, after)
        tidied[field] = after

    return {"dataframe": tidied, "changes": {field: n for field, n in changes.items() if n}}


def _count_changes(before: pd.Series, after: pd.Series) -> int:
    both_missing = before.isna() & after.isna()
    return int(((before != after) & ~both_missing).sum())
