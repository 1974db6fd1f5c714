from __future__ import annotations

import json
import sys
import tempfile
import unittest
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from rabv_redcap.config import ConfigError, PipelineConfig, resolve_config
from rabv_redcap.forms import FixedAccessGroup, InferAccessGroup


def write_config(folder: str, payload) -> Path:
    path = Path(folder) / "rabv-redcap.json"
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


class ResolveConfigTests(unittest.TestCase):
    def test_defaults(self):
        config = resolve_config(environ={})
        self.assertIsNone(config.dictionary)
        self.assertIsNone(config.access_group)
        self.assertEqual(config.country_field, "country")
        self.assertEqual(config.request_timeout, 60)
        self.assertIsNone(config.scan_fields)

    def test_precedence_file_then_env_then_flags(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = write_config(
                tmpdir,
                {"dictionary": "file.csv", "access_group": "peru", "request_timeout": "30", "country_field": "site"},
            )
            from_file = resolve_config(path, environ={})
            self.assertEqual(from_file.dictionary, "file.csv")
            self.assertEqual(from_file.request_timeout, 30.0)
            self.assertEqual(from_file.country_field, "site")

            env = {"RABV_REDCAP_DICTIONARY": "env.csv", "RABV_REDCAP_ACCESS_GROUP": "malawi"}
            from_env = resolve_config(path, environ=env)
            self.assertEqual(from_env.dictionary, "env.csv")
            self.assertEqual(from_env.access_group, "malawi")

            from_flags = resolve_config(path, overrides={"dictionary": "flag.csv", "access_group": None}, environ=env)
            self.assertEqual(from_flags.dictionary, "flag.csv")
            self.assertEqual(from_flags.access_group, "malawi")

    def test_bad_files_are_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ConfigError):
                resolve_config(Path(tmpdir) / "missing.json", environ={})
            with self.assertRaises(ConfigError):
                resolve_config(write_config(tmpdir, ["not", "an", "object"]), environ={})
            with self.assertRaises(ConfigError):
                resolve_config(write_config(tmpdir, {"colour": "blue"}), environ={})
            with self.assertRaises(ConfigError):
                resolve_config(write_config(tmpdir, {"request_timeout": "soon"}), environ={})
            with self.assertRaises(ConfigError):
                resolve_config(write_config(tmpdir, {"scan_fields": "fat"}), environ={})
            bad_json = Path(tmpdir) / "broken.json"
            bad_json.write_text("{", encoding="utf-8")
            with self.assertRaises(ConfigError):
                resolve_config(bad_json, environ={})

    def test_access_mode(self):
        self.assertEqual(PipelineConfig(access_group="peru").access_mode(), FixedAccessGroup("peru"))
        self.assertEqual(PipelineConfig(country_field="site").access_mode(), InferAccessGroup("site"))
        with self.assertRaises(ValueError):
            PipelineConfig(access_group="atlantis").access_mode()


if __name__ == "__main__":
    unittest.main()
