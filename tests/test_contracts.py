from __future__ import annotations

import sys
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.contracts import CONTRACT_VERSIONS, build_contract, build_run_summary, utc_now_iso


class ContractTests(unittest.TestCase):
    def test_every_contract_is_versioned(self):
        for name in ("rabv_redcap.process", "rabv_redcap.scan", "rabv_redcap.dictionary"):
            contract = build_contract(name)
            self.assertEqual(contract["name"], name)
            self.assertEqual(contract["version"], CONTRACT_VERSIONS[name])

    def test_unknown_contract_raises(self):
        with self.assertRaises(KeyError):
            build_contract("rabv_redcap.unknown")

    def test_run_summary_shape(self):
        summary = build_run_summary(
            command="process",
            input_path=Path("export.csv"),
            dictionary_source="bundled:dictionary.csv",
            status="review",
            output_paths={"diagnostic_form": Path("out/diagnostic_form.csv")},
            metrics={"records": 3},
            warnings=["one"],
        )
        self.assertEqual(summary["tool"], "rabv-redcap")
        self.assertEqual(summary["status"], "review")
        self.assertEqual(summary["input_file"], "export.csv")
        self.assertEqual(summary["output_files"], {"diagnostic_form": str(Path("out/diagnostic_form.csv"))})
        self.assertEqual(summary["warnings_count"], 1)
        self.assertEqual(summary["metrics"], {"records": 3})

    def test_run_summary_defaults(self):
        summary = build_run_summary(command="scan", input_path=None, dictionary_source="bundled:x")
        self.assertIsNone(summary["input_file"])
        self.assertEqual(summary["output_files"], {})
        self.assertEqual(summary["warnings"], [])
        self.assertEqual(summary["status"], "ok")

    def test_timestamps_are_utc(self):
        self.assertTrue(utc_now_iso().endswith("Z"))


if __name__ == "__main__":
    unittest.main()
