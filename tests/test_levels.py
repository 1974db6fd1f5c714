from __future__ import annotations

import sys
import unittest
from pathlib import Path

import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.dictionary import load_dictionary
from rabv_redcap.levels import scan_all_levels, scan_mismatched_levels
from rabv_redcap.recode import recode_data


class LevelScanTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.dictionary = load_dictionary()["dictionary"]

    def test_unlisted_values_and_blanks_are_reported_sorted(self):
        df = pd.DataFrame({"sample_buffer": ["RNAlater", "Formalin", "", None, "Ethanol", "RNAlater"]})
        scan = scan_mismatched_levels(df, self.dictionary, "sample_buffer")
        self.assertTrue(scan["coded"])
        self.assertEqual(scan["unmatched"], ["", "Ethanol", "Formalin"])
        self.assertEqual(scan["fallback"], ["Unknown"])

    def test_clean_field_has_nothing_unmatched(self):
        df = pd.DataFrame({"fat": ["Positive", "Negative"]})
        scan = scan_mismatched_levels(df, self.dictionary, "fat")
        self.assertEqual(scan["unmatched"], [])
        self.assertEqual(scan["fallback"], [])

    def test_country_aliases_are_allowed(self):
        df = pd.DataFrame({"country": ["Kenya", "KEN", "PER"]})
        scan = scan_mismatched_levels(df, self.dictionary, "country")
        self.assertEqual(scan["unmatched"], [])

    def test_padded_values_match_as_the_recoder_does(self):
        df = pd.DataFrame({"country": [" Peru ", "Kenya  ", " Atlantis"]})
        scan = scan_mismatched_levels(df, self.dictionary, "country")
        self.assertEqual(scan["unmatched"], ["Atlantis"])
        recoded = recode_data(df[["country"]].iloc[:2], self.dictionary)
        self.assertEqual(recoded["unmatched"], {})
        self.assertEqual(recoded["dataframe"]["country"].tolist(), ["6", "1"])

    def test_free_text_field_is_not_coded(self):
        df = pd.DataFrame({"rtqpcr": ["24.1"]})
        scan = scan_mismatched_levels(df, self.dictionary, "rtqpcr")
        self.assertFalse(scan["coded"])
        self.assertIsNone(scan["unmatched"])

    def test_field_without_fallback_label(self):
        df = pd.DataFrame({"lateral_flow_test": ["maybe"]})
        scan = scan_mismatched_levels(df, self.dictionary, "lateral_flow_test")
        self.assertEqual(scan["unmatched"], ["maybe"])
        self.assertEqual(scan["fallback"], [])

    def test_scan_is_read_only(self):
        df = pd.DataFrame({"sample_buffer": ["Formalin"]})
        scan_mismatched_levels(df, self.dictionary, "sample_buffer")
        self.assertEqual(df["sample_buffer"].tolist(), ["Formalin"])

    def test_scan_all_covers_coded_columns_present(self):
        df = pd.DataFrame({"fat": ["Positive"], "country": ["Kenya"], "rtqpcr": ["30"]})
        fields = [scan["field"] for scan in scan_all_levels(df, self.dictionary)]
        self.assertEqual(fields, ["country", "fat"])

    def test_scan_all_with_explicit_fields(self):
        df = pd.DataFrame({"fat": ["Positive"]})
        scans = scan_all_levels(df, self.dictionary, ["drit"])
        self.assertEqual(len(scans), 1)
        self.assertFalse(scans[0]["present"])
        self.assertEqual(scans[0]["unmatched"], [])


if __name__ == "__main__":
    unittest.main()
