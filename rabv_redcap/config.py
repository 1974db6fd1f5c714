"""
config.py — run configuration for rabv-redcap

Precedence, lowest first: defaults, JSON config file, environment
(RABV_REDCAP_DICTIONARY, RABV_REDCAP_ACCESS_GROUP), command-line flags.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

from rabv_redcap.dictionary import COUNTRY_FIELD, DEFAULT_TIMEOUT
from rabv_redcap.forms import AccessGroupMode, FixedAccessGroup, InferAccessGroup

ENV_DICTIONARY = "RABV_REDCAP_DICTIONARY"
ENV_ACCESS_GROUP = "RABV_REDCAP_ACCESS_GROUP"

CONFIG_KEYS = {"dictionary", "access_group", "country_field", "request_timeout", "scan_fields"}


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class PipelineConfig:
    dictionary: Optional[str] = None
    access_group: Optional[str] = None
    country_field: str = COUNTRY_FIELD
    request_timeout: float = DEFAULT_TIMEOUT
    scan_fields: Optional[list[str]] = field(default=None)

    def access_mode(self) -> AccessGroupMode:
        """A fixed access group wins; without one, groups are inferred per record."""
        if self.access_group:
            return FixedAccessGroup(self.access_group)
        return InferAccessGroup(self.country_field)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _validated(payload: dict[str, Any], origin: str) -> dict[str, Any]:
    unknown = sorted(set(payload) - CONFIG_KEYS)
    if unknown:
        raise ConfigError(f"Unknown config keys in {origin}: {', '.join(unknown)}")
    if "request_timeout" in payload:
        try:
            payload["request_timeout"] = float(payload["request_timeout"])
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"request_timeout in {origin} must be a number") from exc
    scan_fields = payload.get("scan_fields")
    if scan_fields is not None and (
        not isinstance(scan_fields, list) or not all(isinstance(item, str) for item in scan_fields)
    ):
        raise ConfigError(f"scan_fields in {origin} must be a list of field names")
    return payload


def load_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise ConfigError(f"Config not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"Could not read config: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError("Config root must be a JSON object.")
    return _validated(payload, str(path))


def resolve_config(
    config_path: Optional[Path] = None,
    *,
    overrides: Optional[dict[str, Any]] = None,
    environ: Optional[dict[str, str]] = None,
) -> PipelineConfig:
    environ = os.environ if environ is None else environ
    config = PipelineConfig()
    if config_path is not None:
        config = replace(config, **load_config_file(config_path))

    env_values: dict[str, Any] = {}
    if environ.get(ENV_DICTIONARY):
        env_values["dictionary"] = environ[ENV_DICTIONARY]
    if environ.get(ENV_ACCESS_GROUP):
        env_values["access_group"] = environ[ENV_ACCESS_GROUP]
    config = replace(config, **env_values)

    explicit = {key: value for key, value in (overrides or {}).items() if value is not None}
    return replace(config, **_validated(explicit, "overrides"))


STARTER_CONFIG = {
    "dictionary": None,
    "access_group": None,
    "country_field": COUNTRY_FIELD,
    "request_timeout": DEFAULT_TIMEOUT,
    "scan_fields": None,
}
