"""Shared versioned contracts for machine-readable rabv-redcap outputs."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

CONTRACT_VERSIONS = {
    "rabv_redcap.process": "1.0.0",
    "rabv_redcap.scan": "1.0.0",
    "rabv_redcap.dictionary": "1.0.0",
}


def utc_now_iso() -> str:
    """Current UTC time to the second, e.g. 2026-03-01T01:02:03Z."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def build_contract(name: str) -> dict[str, str]:
    """Name and version stamped on a JSON payload. Unknown names raise KeyError."""
    return {"name": name, "version": CONTRACT_VERSIONS[name]}


def build_run_summary(
    *,
    command: str,
    input_path: Path | None,
    dictionary_source: str,
    status: str = "ok",
    output_paths: dict[str, Path] | None = None,
    metrics: dict[str, Any] | None = None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "tool": "rabv-redcap",
        "command": command,
        "status": status,
        "generated_at": utc_now_iso(),
        "input_file": str(input_path) if input_path else None,
        "dictionary_source": dictionary_source,
        "output_files": {key: str(path) for key, path in (output_paths or {}).items()},
        "warnings_count": len(warnings or []),
        "warnings": list(warnings or []),
        "metrics": metrics or {},
    }
