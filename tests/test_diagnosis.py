from __future__ import annotations

import sys
import unittest
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.diagnosis import (
    add_diagnostic_result,
    classify_result,
    create_diagnostic_results,
    parse_ct_value,
)


class ParseCtValueTests(unittest.TestCase):
    def test_numbers_and_text(self):
        self.assertEqual(parse_ct_value(" 28.5 "), 28.5)
        self.assertEqual(parse_ct_value(31), 31.0)
        self.assertIsNone(parse_ct_value(""))
        self.assertIsNone(parse_ct_value("not done"))
        self.assertIsNone(parse_ct_value(float("nan")))
        self.assertIsNone(parse_ct_value(None))
        self.assertIsNone(parse_ct_value(True))


class ClassifyResultTests(unittest.TestCase):
    def test_nothing_recorded_is_missing(self):
        self.assertIsNone(classify_result())
        self.assertIsNone(classify_result(lateral_flow="", ct_value="not done"))

    def test_lateral_flow_positive_wins(self):
        self.assertEqual(classify_result(lateral_flow="Positive", fat="Negative", ct_value="40"), "Positive")

    def test_all_negative_results(self):
        self.assertEqual(classify_result(lateral_flow="Negative", fat="Negative", drit="Negative"), "Negative")

    def test_numeric_ct_is_never_counted_as_negative(self):
        self.assertEqual(classify_result(lateral_flow="Negative", ct_value="24"), "Positive")

    def test_fat_or_drit_positive_beats_ct(self):
        self.assertEqual(classify_result(fat="Positive", ct_value="40"), "Positive")
        self.assertEqual(classify_result(drit="Positive", lateral_flow="Negative"), "Positive")

    def test_ct_boundaries(self):
        self.assertEqual(classify_result(ct_value="31.9"), "Positive")
        self.assertEqual(classify_result(ct_value="32"), "Inconclusive")
        self.assertEqual(classify_result(ct_value="36"), "Inconclusive")
        self.assertEqual(classify_result(ct_value="36.1"), "Negative")

    def test_hmpcr_decides_last(self):
        self.assertEqual(classify_result(hmpcr="Pos1"), "Positive")
        self.assertEqual(classify_result(hmpcr="Pos2", fat="Negative"), "Positive")
        self.assertEqual(classify_result(hmpcr="Neg", drit="Negative"), "Negative")

    def test_inconclusive_assays_alone_give_no_result(self):
        self.assertIsNone(classify_result(lateral_flow="Inconclusive"))
        self.assertIsNone(classify_result(fat="Unknown", drit="Inconclusive"))

    def test_categorical_inputs_are_trimmed(self):
        self.assertEqual(classify_result(lateral_flow=" Positive "), "Positive")


class DiagnosticColumnTests(unittest.TestCase):
    def test_absent_columns_count_as_missing(self):
        df = pd.DataFrame({"rtqpcr": ["20", "34", None]})
        results = create_diagnostic_results(df)
        self.assertEqual(results.tolist(), ["Positive", "Inconclusive", None])
        self.assertEqual(results.name, "diagnostic_result")

    def test_add_diagnostic_result_keeps_input_untouched(self):
        df = pd.DataFrame(
            {
                "lateral_flow_test": ["Positive", "Negative", None, None],
                "rtqpcr": [None, None, "37", None],
                "hmpcr_n405": [None, None, None, "Neg"],
                "fat": [None, "Negative", None, None],
                "drit": [None, None, None, None],
            }
        )
        classified = add_diagnostic_result(df)
        self.assertEqual(classified["diagnostic_result"].tolist(), ["Positive", "Negative", "Negative", "Negative"])
        self.assertNotIn("diagnostic_result", df.columns)

    def test_ct_positive_outranks_negative_hmpcr(self):
        df = pd.DataFrame(
            {
                "lateral_flow_test": ["Negative"],
                "rtqpcr": ["30"],
                "hmpcr_n405": ["Neg"],
                "fat": [None],
                "drit": [None],
            }
        )
        self.assertEqual(create_diagnostic_results(df).tolist(), ["Positive"])
        self.assertEqual(
            classify_result(lateral_flow="Negative", ct_value="30", hmpcr="Neg"),
            "Positive",
        )


if __name__ == "__main__":
    unittest.main()
