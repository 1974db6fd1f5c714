from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rabv_redcap import __version__ as TOOL_VERSION
from rabv_redcap.config import STARTER_CONFIG, ConfigError, PipelineConfig, resolve_config
from rabv_redcap.contracts import build_contract, build_run_summary
from rabv_redcap.dictionary import describe_field, load_dictionary
from rabv_redcap.forms import ACCESS_GROUPS, MissingColumnError
from rabv_redcap.levels import scan_all_levels
from rabv_redcap.loader import ALL_FORMATS, DUPLICATE_ID_FIELD, load_export, prepare_records
from rabv_redcap.normalization import tidy_up_values
from rabv_redcap.pipeline import build_process_summary, run_pipeline
from rabv_redcap.reconcile import reconcile_columns
from rabv_redcap.reporter import (
    render_column_report,
    render_country_report,
    render_diagnosis_report,
    render_dictionary_report,
    render_level_reports,
    render_normalization_report,
    render_preparation_report,
    render_process_text,
    render_recode_report,
)


EXIT_SUCCESS = 0
EXIT_COMMAND_ERROR = 1
EXIT_PARSE_FAILED = 2
EXIT_REVIEW_NEEDED = 3
EXIT_STAGE_FAILED = 5

DIAGNOSTIC_OUTPUT = "diagnostic_form.csv"
SEQUENCING_OUTPUT = "sequencing_form.csv"
SUMMARY_OUTPUT = "process-summary.json"


class CliError(Exception):
    def __init__(self, message: str, code: int = EXIT_COMMAND_ERROR) -> None:
        super().__init__(message)
        self.code = code


class RabvRedcapArgumentParser(argparse.ArgumentParser):
    def error(self, message: str) -> None:
        raise CliError(message, EXIT_COMMAND_ERROR)


def eprint(message: str) -> None:
    print(message, file=sys.stderr)


def emit_human(message: str, *, quiet: bool = False) -> None:
    if not quiet:
        eprint(message)


def json_dumps(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True)


def timestamp_token() -> str:
    override = os.environ.get("RABV_REDCAP_OUTPUT_STAMP")
    if override:
        return override
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def default_output_dir(input_path: Path) -> Path:
    return Path.cwd() / "rabv-redcap-output" / f"{input_path.stem}-{timestamp_token()}"


def determine_output_dir(args: argparse.Namespace, input_path: Path) -> Path:
    if getattr(args, "out_dir", None):
        return Path(args.out_dir)
    return default_output_dir(input_path)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def write_text(path: Path, payload: str) -> None:
    ensure_parent(path)
    path.write_text(payload, encoding="utf-8")


def write_json(path: Path, payload: Any) -> None:
    write_text(path, json_dumps(payload))


def safe_output_path(path: Path) -> Path:
    if path.exists():
        raise CliError(f"Refusing to overwrite existing output: {path}", EXIT_COMMAND_ERROR)
    return path


def maybe_emit_json_stdout(payload: Any, enabled: bool) -> None:
    if enabled:
        print(json_dumps(payload))


def classify_backend_exception(exc: Exception) -> int:
    if isinstance(exc, CliError):
        return exc.code
    if isinstance(exc, MissingColumnError):
        return EXIT_STAGE_FAILED
    if isinstance(exc, (ConfigError, FileNotFoundError)):
        return EXIT_COMMAND_ERROR
    if isinstance(exc, (UnicodeDecodeError, ValueError)):
        return EXIT_PARSE_FAILED
    return EXIT_COMMAND_ERROR


def check_input(path: Path) -> Path:
    if not path.exists():
        raise CliError(f"File not found: {path}", EXIT_COMMAND_ERROR)
    if path.suffix.lower() not in ALL_FORMATS:
        raise CliError(
            f"Unsupported file type '{path.suffix.lower() or '[missing extension]'}'. "
            f"Supported: {', '.join(sorted(ALL_FORMATS))}",
            EXIT_COMMAND_ERROR,
        )
    return path


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    config_path = Path(args.config) if getattr(args, "config", None) else None
    overrides = {
        "dictionary":    getattr(args, "dictionary", None),
        "access_group":  getattr(args, "access_group", None),
        "country_field": getattr(args, "country_field", None),
        "scan_fields":   getattr(args, "fields", None),
    }
    config = resolve_config(config_path, overrides=overrides)
    if getattr(args, "infer_access_group", False):
        config = replace(config, access_group=None)
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = RabvRedcapArgumentParser(
        prog="rabv-redcap",
        description="Curate rabies laboratory exports into REDCap import forms.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    process = subparsers.add_parser("process", help="Curate an export and write both import forms.")
    process.add_argument("input", help="Laboratory export (.csv, .tsv, .txt, .xlsx, .xlsm)")
    process.add_argument("--dictionary", help="Dictionary path or URL (default: bundled copy)")
    access = process.add_mutually_exclusive_group()
    access.add_argument("--access-group", choices=ACCESS_GROUPS, help="Assign every record to this access group")
    access.add_argument("--infer-access-group", action="store_true", help="Infer each record's access group from its country")
    process.add_argument("--country-field", help="Column used to infer access groups (default: country)")
    process.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    process.add_argument("--config", help="JSON config file")
    process.add_argument("-o", "--out", dest="out_dir", help="Output directory")
    process.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    process.add_argument("--dry-run", action="store_true", help="Run the pipeline without writing outputs")
    process.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")
    process.add_argument("-v", "--verbose", action="store_true", help="More human logs")

    scan = subparsers.add_parser("scan", help="Compare an export's columns and values with the dictionary.")
    scan.add_argument("input", help="Laboratory export")
    scan.add_argument("--dictionary", help="Dictionary path or URL (default: bundled copy)")
    scan.add_argument("--field", dest="fields", action="append", help="Coded field to scan (repeatable)")
    scan.add_argument("--sheet", dest="sheet_name", help="Workbook sheet name")
    scan.add_argument("--config", help="JSON config file")
    scan.add_argument("--json", action="store_true", help="Write machine JSON to stdout")
    scan.add_argument("-q", "--quiet", action="store_true", help="Minimal human logs")

    dictionary = subparsers.add_parser("dictionary", help="Show the dictionary's coded fields.")
    dictionary.add_argument("--dictionary", help="Dictionary path or URL (default: bundled copy)")
    dictionary.add_argument("--field", help="Show the codes of one field")
    dictionary.add_argument("--config", help="JSON config file")
    dictionary.add_argument("--json", action="store_true", help="Write machine JSON to stdout")

    config = subparsers.add_parser("config", help="Generate configuration.")
    config_subparsers = config.add_subparsers(dest="config_command", required=True)
    config_init = config_subparsers.add_parser("init", help="Write a starter config file.")
    config_init.add_argument("--path", default="rabv-redcap.json", help="Config output path")

    subparsers.add_parser("version", help="Print version")
    return parser


def write_process_outputs(result: dict[str, Any], out_dir: Path) -> dict[str, Path]:
    paths = {
        "diagnostic_form": safe_output_path(out_dir / DIAGNOSTIC_OUTPUT),
        "sequencing_form": safe_output_path(out_dir / SEQUENCING_OUTPUT),
        "summary":         safe_output_path(out_dir / SUMMARY_OUTPUT),
    }
    out_dir.mkdir(parents=True, exist_ok=True)
    result["diagnostic_form"].to_csv(paths["diagnostic_form"], index=False)
    result["sequencing_form"].to_csv(paths["sequencing_form"], index=False)
    return paths


def run_process(args: argparse.Namespace) -> int:
    try:
        input_path = check_input(Path(args.input))
        config = config_from_args(args)
        access = config.access_mode()

        loaded_dictionary = load_dictionary(config.dictionary, timeout=config.request_timeout)
        loaded = load_export(input_path, sheet_name=args.sheet_name)
        result = run_pipeline(
            loaded["dataframe"],
            loaded_dictionary["dictionary"],
            access,
            scan_fields=config.scan_fields,
        )
        result["warnings"] = list(loaded["warnings"]) + result["warnings"]

        output_paths: dict[str, Path] = {}
        if not args.dry_run:
            output_paths = write_process_outputs(result, determine_output_dir(args, input_path))

        summary = build_process_summary(
            result,
            input_path=input_path,
            dictionary_loaded=loaded_dictionary,
            output_paths=output_paths,
        )
        if output_paths:
            write_json(output_paths["summary"], summary)

        if args.json:
            maybe_emit_json_stdout(summary, True)
        else:
            reports = result["reports"]
            if args.verbose:
                emit_human(render_dictionary_report(loaded_dictionary).rstrip(), quiet=args.quiet)
                emit_human(render_preparation_report(reports["preparation"]).rstrip(), quiet=args.quiet)
                emit_human(render_column_report(reports["columns"]).rstrip(), quiet=args.quiet)
                emit_human(render_normalization_report(reports["normalization"]).rstrip(), quiet=args.quiet)
                emit_human(render_level_reports(reports["levels"]).rstrip(), quiet=args.quiet)
                emit_human(render_diagnosis_report(reports["diagnosis"]).rstrip(), quiet=args.quiet)
            emit_human(render_process_text(summary).rstrip(), quiet=args.quiet)
            if result["review_required"]:
                emit_human(render_recode_report(reports["recode"]).rstrip(), quiet=args.quiet)
                country_report = render_country_report(
                    reports["forms"]["unrecognized_countries"],
                    reports["forms"]["country_field"],
                )
                if country_report:
                    emit_human(country_report.rstrip(), quiet=args.quiet)
            if output_paths:
                emit_human(f"Diagnostic form written: {output_paths['diagnostic_form']}", quiet=args.quiet)
                emit_human(f"Sequencing form written: {output_paths['sequencing_form']}", quiet=args.quiet)
                emit_human(f"Summary written: {output_paths['summary']}", quiet=args.quiet)
            else:
                emit_human("Dry run: no files written.", quiet=args.quiet)

        return EXIT_REVIEW_NEEDED if result["review_required"] else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_scan(args: argparse.Namespace) -> int:
    try:
        input_path = check_input(Path(args.input))
        config = config_from_args(args)
        loaded_dictionary = load_dictionary(config.dictionary, timeout=config.request_timeout)
        dictionary = loaded_dictionary["dictionary"]
        loaded = load_export(input_path, sheet_name=args.sheet_name)

        prepared = prepare_records(loaded["dataframe"])
        reconciled = reconcile_columns(prepared["dataframe"], [*dictionary.field_names, DUPLICATE_ID_FIELD])
        tidied = tidy_up_values(reconciled["dataframe"])
        scans = scan_all_levels(tidied["dataframe"], dictionary, config.scan_fields)

        mismatched = {scan["field"]: scan["unmatched"] for scan in scans if scan["coded"] and scan["unmatched"]}
        warnings = list(loaded_dictionary["warnings"]) + list(loaded["warnings"]) + list(prepared["warnings"])
        dictionary_source = f"{loaded_dictionary['source']}:{loaded_dictionary['location']}"
        columns = {key: value for key, value in reconciled.items() if key != "dataframe"}
        contract = build_contract("rabv_redcap.scan")
        payload = {
            "contract":          contract,
            "schema_version":    contract["version"],
            "tool_version":      TOOL_VERSION,
            "input_file":        str(input_path),
            "dictionary_source": dictionary_source,
            "columns":           columns,
            "levels":            scans,
            "warnings":          warnings,
            "run_summary": build_run_summary(
                command="scan",
                input_path=input_path,
                dictionary_source=dictionary_source,
                status="review" if mismatched else "ok",
                metrics={
                    "records":          len(prepared["dataframe"]),
                    "fields_scanned":   len(scans),
                    "fields_mismatched": len(mismatched),
                    "extra_columns":    len(columns["extra_columns"]),
                    "missing_columns":  len(columns["missing_columns"]),
                },
                warnings=warnings,
            ),
        }

        if args.json:
            maybe_emit_json_stdout(payload, True)
        else:
            emit_human(render_column_report(columns).rstrip(), quiet=args.quiet)
            emit_human(render_level_reports(scans).rstrip(), quiet=args.quiet)
            for warning in warnings:
                emit_human(f"⚠️ {warning}", quiet=args.quiet)
        return EXIT_REVIEW_NEEDED if mismatched else EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_dictionary(args: argparse.Namespace) -> int:
    try:
        config = config_from_args(args)
        loaded_dictionary = load_dictionary(config.dictionary, timeout=config.request_timeout)
        dictionary = loaded_dictionary["dictionary"]
        contract = build_contract("rabv_redcap.dictionary")
        payload: dict[str, Any] = {
            "contract":          contract,
            "schema_version":    contract["version"],
            "dictionary_source": f"{loaded_dictionary['source']}:{loaded_dictionary['location']}",
            "warnings":          loaded_dictionary["warnings"],
        }
        if args.field:
            payload["field"] = describe_field(dictionary, args.field)
        else:
            payload["fields"] = [
                {
                    "field":   name,
                    "form":    dictionary.forms.get(name, ""),
                    "choices": len(dictionary.choices.get(name, {})),
                }
                for name in dictionary.field_names
            ]

        if args.json:
            maybe_emit_json_stdout(payload, True)
            return EXIT_SUCCESS

        lines = [render_dictionary_report(loaded_dictionary).rstrip()]
        if args.field:
            detail = payload["field"]
            lines.append(f"{detail['field']} ({detail['form'] or 'no form'})")
            if not detail["coded"]:
                lines.append("  free text")
            lines.extend(f"  {choice['code']}: {choice['label']}" for choice in detail["choices"])
            lines.extend(f"  alias {alias} -> {code}" for alias, code in detail["aliases"].items())
        else:
            for item in payload["fields"]:
                kind = f"{item['choices']} choices" if item["choices"] else "free text"
                lines.append(f"- {item['field']} [{item['form']}] {kind}")
        print("\n".join(lines))
        return EXIT_SUCCESS
    except Exception as exc:
        eprint(str(exc))
        return classify_backend_exception(exc)


def run_config_init(args: argparse.Namespace) -> int:
    config_path = Path(args.path)
    if config_path.exists():
        eprint(f"Refusing to overwrite existing config: {config_path}")
        return EXIT_COMMAND_ERROR
    write_json(config_path, STARTER_CONFIG)
    emit_human(f"Config written: {config_path}")
    return EXIT_SUCCESS


def run_version() -> int:
    print(TOOL_VERSION)
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    try:
        parser = build_parser()
        args = parser.parse_args(argv)
        if args.command == "process":
            return run_process(args)
        if args.command == "scan":
            return run_scan(args)
        if args.command == "dictionary":
            return run_dictionary(args)
        if args.command == "config":
            if args.config_command == "init":
                return run_config_init(args)
        if args.command == "version":
            return run_version()
        raise CliError(f"Unknown command: {args.command}", EXIT_COMMAND_ERROR)
    except CliError as exc:
        eprint(str(exc))
        return exc.code


if __name__ == "__main__":
    raise SystemExit(main())
