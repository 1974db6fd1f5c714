from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.reporter import (
    render_column_report,
    render_country_report,
    render_level_report,
    render_level_reports,
    render_normalization_report,
    render_preparation_report,
    render_recode_report,
)


class ReporterTests(unittest.TestCase):
    def test_level_report_variants(self):
        not_coded = render_level_report({"field": "rtqpcr", "coded": False, "unmatched": None, "fallback": []})
        self.assertIn("not a coded field", not_coded)

        clean = render_level_report({"field": "fat", "coded": True, "unmatched": [], "fallback": []})
        self.assertIn("All values in 'fat' are valid", clean)

        mismatched = render_level_report(
            {"field": "sample_buffer", "coded": True, "unmatched": ["", "Formalin"], "fallback": ["Unknown"]}
        )
        self.assertIn("[blank], Formalin", mismatched)
        self.assertIn("classed as: Unknown", mismatched)

    def test_only_problems_filter(self):
        scans = [
            {"field": "fat", "coded": True, "unmatched": [], "fallback": []},
            {"field": "drit", "coded": True, "unmatched": ["x"], "fallback": []},
        ]
        text = render_level_reports(scans, only_problems=True)
        self.assertNotIn("'fat'", text)
        self.assertIn("'drit'", text)

    def test_column_and_preparation_reports(self):
        text = render_column_report({"extra_columns": ["lab_technician"], "missing_columns": []})
        self.assertIn("lab_technician", text)
        self.assertIn("All dictionary fields are found", text)

        prep = render_preparation_report(
            {"entries": 4, "duplicate_sample_ids": 1, "filled_sample_ids": 0, "unparsed_run_dates": ["soon"]}
        )
        self.assertIn("4 entries", prep)
        self.assertIn("soon", prep)

    def test_normalization_report(self):
        self.assertIn("No values", render_normalization_report({"changes": {}}))
        self.assertIn("fat: 2", render_normalization_report({"changes": {"fat": 2}}))

    def test_recode_report(self):
        self.assertIn("All coded values matched", render_recode_report({"unmatched": {}}))
        text = render_recode_report(
            {
                "unmatched": {
                    "sample_buffer": {
                        "values": ["Formalin"],
                        "blanks": True,
                        "fallback": "Unknown",
                        "fallback_code": "9",
                        "count": 2,
                    },
                    "lateral_flow_test": {
                        "values": ["maybe"],
                        "blanks": False,
                        "fallback": None,
                        "fallback_code": None,
                        "count": 1,
                    },
                }
            }
        )
        self.assertIn("`sample_buffer`: Formalin → recoded as 'Unknown' (9)", text)
        self.assertIn("`sample_buffer`: contains blanks", text)
        self.assertIn("`lateral_flow_test`: maybe → left blank", text)

    def test_country_report(self):
        self.assertEqual(render_country_report([]), "")
        text = render_country_report(["a", "b", "c", "d", "e", "f"], "country")
        self.assertIn("a, b, c, d, e, ...", text)


if __name__ == "__main__":
    unittest.main()
