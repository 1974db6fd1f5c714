from __future__ import annotations

import sys
import unittest
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.dictionary import (
    CHOICES_COLUMN,
    FIELD_NAME_COLUMN,
    FORM_NAME_COLUMN,
    DictionaryError,
    load_dictionary,
    parse_dictionary,
)
from rabv_redcap.recode import fallback_for, label_to_code, recode_data


class RecodeTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.dictionary = load_dictionary()["dictionary"]

    def test_matched_labels_round_trip_through_codes(self):
        df = pd.DataFrame({"sample_tissuetype": ["Brain", "Saliva", "Salivary_gland"]})
        recoded = recode_data(df, self.dictionary)["dataframe"]
        self.assertEqual(recoded["sample_tissuetype"].tolist(), ["1", "2", "3"])
        labels = [self.dictionary.label_for("sample_tissuetype", code) for code in recoded["sample_tissuetype"]]
        self.assertEqual(labels, df["sample_tissuetype"].tolist())

    def test_unmatched_values_and_blanks_take_the_unknown_code(self):
        df = pd.DataFrame({"sample_buffer": ["RNAlater", "Formalin", None, ""]})
        result = recode_data(df, self.dictionary)
        self.assertEqual(result["dataframe"]["sample_buffer"].tolist(), ["3", "9", "9", "9"])
        detail = result["unmatched"]["sample_buffer"]
        self.assertEqual(detail["values"], ["Formalin"])
        self.assertTrue(detail["blanks"])
        self.assertEqual(detail["fallback"], "Unknown")
        self.assertEqual(detail["fallback_code"], "9")
        self.assertEqual(detail["count"], 3)

    def test_other_and_na_fallbacks(self):
        df = pd.DataFrame({"animal_species": ["Fox"], "ngs_analysis_type": ["Everything"]})
        result = recode_data(df, self.dictionary)
        self.assertEqual(result["dataframe"]["animal_species"].tolist(), ["99"])
        self.assertEqual(result["unmatched"]["animal_species"]["fallback"], "Other")
        self.assertEqual(result["dataframe"]["ngs_analysis_type"].tolist(), ["99"])
        self.assertEqual(result["unmatched"]["ngs_analysis_type"]["fallback"], "NA")

    def test_field_without_fallback_becomes_missing(self):
        df = pd.DataFrame({"lateral_flow_test": ["Positive", "maybe"]})
        result = recode_data(df, self.dictionary)
        self.assertEqual(result["dataframe"]["lateral_flow_test"].tolist(), ["1", None])
        self.assertIsNone(result["unmatched"]["lateral_flow_test"]["fallback"])

    def test_country_name_and_alias_share_a_code(self):
        df = pd.DataFrame({"country": ["Kenya", "KEN", " Peru "]})
        result = recode_data(df, self.dictionary)
        self.assertEqual(result["dataframe"]["country"].tolist(), ["1", "1", "6"])
        self.assertEqual(result["unmatched"], {})

    def test_only_coded_columns_present_are_touched(self):
        df = pd.DataFrame({"sample_id": ["Brain"], "fat": ["Positive"]})
        recoded = recode_data(df, self.dictionary)["dataframe"]
        self.assertEqual(recoded["sample_id"].tolist(), ["Brain"])
        self.assertEqual(list(recoded.columns), ["sample_id", "fat"])
        self.assertEqual(df["fat"].tolist(), ["Positive"])

    def test_fallback_order(self):
        self.assertEqual(fallback_for(self.dictionary, "sample_buffer"), ("Unknown", "9"))
        self.assertEqual(fallback_for(self.dictionary, "fat"), ("Unknown", "9"))
        self.assertEqual(fallback_for(self.dictionary, "test_centre"), ("Other", "99"))
        self.assertEqual(fallback_for(self.dictionary, "diagnostic_result"), (None, None))

    def test_shared_labels_are_rejected(self):
        table = pd.DataFrame(
            [["answer", "diagnostic", "1, Yes | 2, Yes | 0, No"]],
            columns=[FIELD_NAME_COLUMN, FORM_NAME_COLUMN, CHOICES_COLUMN],
        )
        dictionary = parse_dictionary(table)
        with self.assertRaises(DictionaryError):
            label_to_code(dictionary, "answer")
        with self.assertRaises(DictionaryError):
            recode_data(pd.DataFrame({"answer": ["Yes"]}), dictionary)


if __name__ == "__main__":
    unittest.main()
