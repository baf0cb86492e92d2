"""
config_loader.py

Responsibility: Load a YAML build-matrix file into a `BuildMatrixConfig`.

The file is a YAML mapping whose keys mirror `BuildMatrixConfig`. Anything
omitted falls back to the stock defaults; a fixed-role mapping (bench, clippy,
rustfmt) is merged over that role's default entry, so `clippy: {run: false}`
is enough to switch clippy off.

Unknown keys are rejected rather than ignored: a typo in a CI config should
fail loudly.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path
from typing import Any

import yaml

from cigen.errors import ConfigError, InvalidEntry
from cigen.model import FIXED_ROLES, BuildMatrixConfig, MatrixEntry, default_entry

log = logging.getLogger(__name__)

_ENTRY_KEYS = frozenset(f.name for f in dataclasses.fields(MatrixEntry))
_CONFIG_KEYS = frozenset(f.name for f in dataclasses.fields(BuildMatrixConfig))
_STRING_KEYS = ("os", "dist", "test_commandline", "test_schedule")


def _require_mapping(value: Any, where: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ConfigError(f"`{where}` must be an object/mapping when provided.")
    return value


def _require_str_list(value: Any, where: str) -> list[str]:
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigError(f"`{where}` must be a list of strings.")
    return [str(v) for v in value]


def _require_version(value: Any, where: str) -> str:
    # YAML reads `1.40` as the float 1.4; guessing the digits back is not possible.
    if not isinstance(value, str):
        raise ConfigError(f"`{where}` must be a string; quote toolchain versions such as \"1.40\" (got {value!r}).")
    return value.strip()


def _parse_entry(raw: Any, where: str, base: MatrixEntry | None = None) -> MatrixEntry:
    data = _require_mapping(raw, where)
    unknown = sorted(set(map(str, data)) - _ENTRY_KEYS)
    if unknown:
        raise ConfigError(f"Unknown key(s) in `{where}`: {', '.join(unknown)}")

    values: dict[str, Any] = dataclasses.asdict(base) if base is not None else {}
    for key in ("run", "run_cron"):
        if key in data:
            if not isinstance(data[key], bool):
                raise ConfigError(f"`{where}.{key}` must be a boolean.")
            values[key] = data[key]
    if "version" in data:
        values["version"] = _require_version(data["version"], f"{where}.version")
    if "install_commandline" in data:
        install = data["install_commandline"]
        values["install_commandline"] = None if install is None else str(install).strip()
    if "commandline" in data:
        values["commandline"] = str(data["commandline"] or "").strip()

    try:
        return MatrixEntry(**values)
    except InvalidEntry as e:
        raise InvalidEntry(f"`{where}`: {e}") from e


def config_from_dict(data: dict[str, Any]) -> BuildMatrixConfig:
    """Build a config from an already-parsed mapping (e.g. YAML or JSON)."""
    unknown = sorted(set(map(str, data)) - _CONFIG_KEYS)
    if unknown:
        raise ConfigError(f"Unknown top-level key(s): {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for role in FIXED_ROLES:
        if role in data:
            kwargs[role] = _parse_entry(data[role], role, base=default_entry(role))

    if "additional_matrix_entries" in data:
        extra_raw = _require_mapping(data["additional_matrix_entries"], "additional_matrix_entries")
        kwargs["additional_matrix_entries"] = {
            str(name): _parse_entry(raw, f"additional_matrix_entries.{name}")
            for name, raw in extra_raw.items()
        }

    if "cache" in data:
        cache = data["cache"]
        kwargs["cache"] = None if cache in (None, False) else str(cache).strip()

    for key in _STRING_KEYS:
        if key in data:
            if data[key] is None:
                raise ConfigError(f"`{key}` must not be null.")
            kwargs[key] = str(data[key]).strip()

    if "versions" in data:
        if isinstance(data["versions"], str) or not isinstance(data["versions"], (list, tuple)):
            raise ConfigError("`versions` must be a list of strings.")
        kwargs["versions"] = tuple(_require_version(v, "versions") for v in data["versions"])
    if "scheduled_test_branches" in data:
        kwargs["scheduled_test_branches"] = frozenset(
            _require_str_list(data["scheduled_test_branches"], "scheduled_test_branches")
        )

    return BuildMatrixConfig(**kwargs)


def parse_config(text: str) -> BuildMatrixConfig:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigError(f"Config is not valid YAML: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping/object at the top level.")
    return config_from_dict(data)


def load_config(path: str | Path) -> BuildMatrixConfig:
    """
    Load a YAML config file into a `BuildMatrixConfig`.

    Recognised top-level keys:
    - bench / clippy / rustfmt: entry mappings merged over the role defaults
    - additional_matrix_entries: mapping of role -> entry (no defaults applied)
    - cache, os, dist, test_commandline, test_schedule: strings
    - versions, scheduled_test_branches: lists of strings
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file does not exist: {p}")
    log.debug("loading config from %s", p)
    return parse_config(p.read_text(encoding="utf-8"))


def config_to_dict(config: BuildMatrixConfig) -> dict[str, Any]:
    def entry(e: MatrixEntry) -> dict[str, Any]:
        return dataclasses.asdict(e)

    return {
        **{role: entry(e) for role, e in config.fixed_entries().items()},
        "additional_matrix_entries": {
            name: entry(e) for name, e in sorted(config.additional_matrix_entries.items())
        },
        "cache": config.cache,
        "os": config.os,
        "dist": config.dist,
        "versions": list(config.versions),
        "test_commandline": config.test_commandline,
        "scheduled_test_branches": sorted(config.scheduled_test_branches),
        "test_schedule": config.test_schedule,
    }


def dump_config(config: BuildMatrixConfig) -> str:
    """YAML text that `parse_config` reads back into an equal config."""
    return yaml.safe_dump(config_to_dict(config), sort_keys=False, default_flow_style=False)
