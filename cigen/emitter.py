"""
emitter.py

Responsibility: Serialize a `Descriptor` into Travis CI YAML.

Rules:
- Check the descriptor for internal consistency before rendering anything.
- Render with Jinja2 (`StrictUndefined`) from the packaged `travis.yml.j2`.
- Guards keep the folded multi-line layout when YAML reads it back unchanged
  and fall back to a double-quoted scalar for commands containing `: ` or ` #`.
- Parse the output back with PyYAML and compare it with the descriptor.
- All-or-nothing: return the full text or raise `EmitError`.

This module intentionally does NOT touch the filesystem beyond loading its template.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from cigen.errors import EmitError
from cigen.model import BuildMatrixConfig, is_valid_channel
from cigen.renderer import Descriptor, ScriptGuard, render

log = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
TRAVIS_TEMPLATE = "travis.yml.j2"

_BOOL_STRINGS = ("true", "false")


def _quote(value: str) -> str:
    # A JSON string is a valid YAML double-quoted scalar.
    return json.dumps(value, ensure_ascii=False)


def _yaml_scalar(value: str) -> str:
    """Emit `value` bare when YAML reads it back as the same string, quoted otherwise."""
    try:
        loaded = yaml.safe_load(value)
    except yaml.YAMLError:
        return _quote(value)
    if loaded == value and value.strip() == value:
        return value
    return _quote(value)


def _sq_escape(command: str) -> str:
    """Escape a command for embedding inside a single-quoted `bash -c` argument."""
    return command.replace("'", "'\\''")


def guard_line(g: ScriptGuard) -> str:
    """The single-line shell text a guard reads as once YAML folds it."""
    return f'bash -c \'if [[ "${g.flag}" == "true" ]]; then {_sq_escape(g.command)} ; fi\''


def _plain_guard(g: ScriptGuard) -> str:
    # Continuation lines are indented for a sequence item at column 2.
    return (
        f'bash -c \'if [[ "${g.flag}" == "true" ]]; then\n'
        f"      {_sq_escape(g.command)}\n"
        "      ;\n"
        "    fi'"
    )


def _guard_scalar(g: ScriptGuard) -> str:
    """
    The multi-line plain layout when YAML folds it back into `guard_line(g)`;
    a double-quoted scalar otherwise (commands containing `: ` or ` #`).
    """
    plain = _plain_guard(g)
    try:
        loaded = yaml.safe_load(f"guards:\n  - {plain}\n")
    except yaml.YAMLError:
        return _quote(guard_line(g))
    if loaded == {"guards": [guard_line(g)]}:
        return plain
    return _quote(guard_line(g))


def _cron_condition(descriptor: Descriptor) -> str:
    return f"type = cron AND branch IN ({', '.join(descriptor.schedule.branches)})"


def _build_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )
    env.filters["quote"] = _quote
    env.filters["yaml_scalar"] = _yaml_scalar
    env.filters["guard"] = _guard_scalar
    return env


def _check_descriptor(descriptor: Descriptor) -> None:
    if not descriptor.versions:
        raise EmitError("Descriptor declares no toolchain versions.")

    for flag, value in descriptor.env_defaults.items():
        if value not in _BOOL_STRINGS:
            raise EmitError(f"Global default for {flag} must be 'true' or 'false', got {value!r}")

    labels: set[str] = set()
    for job in descriptor.jobs:
        if job.label in labels:
            raise EmitError(f"Duplicate job label: {job.label!r}")
        labels.add(job.label)
        if job.is_cron_only and not descriptor.schedule.branches:
            raise EmitError(f"Cron-only job {job.label!r} has no scheduled branches to run on")
        if not is_valid_channel(job.toolchain_version):
            raise EmitError(f"Job {job.label!r} references unknown toolchain channel {job.toolchain_version!r}")
        if not job.env_overrides and job.toolchain_version not in descriptor.versions:
            raise EmitError(
                f"Baseline job {job.label!r} references undeclared toolchain channel {job.toolchain_version!r}"
            )
        for flag, value in job.env_overrides.items():
            if flag not in descriptor.env_defaults:
                raise EmitError(f"Job {job.label!r} overrides undeclared flag {flag}")
            if value not in _BOOL_STRINGS:
                raise EmitError(f"Job {job.label!r} sets {flag} to non-boolean {value!r}")

    for table_name, table in (("before_script", descriptor.before_script), ("script", descriptor.script)):
        for g in table:
            if g.flag not in descriptor.env_defaults:
                raise EmitError(f"{table_name} guard references undeclared flag {g.flag}")
            if not g.command.strip() or "\n" in g.command:
                raise EmitError(f"{table_name} guard for {g.flag} has an empty or multi-line command")


def _expected_document(descriptor: Descriptor) -> dict[str, Any]:
    include = []
    for job in descriptor.included_jobs:
        item: dict[str, Any] = {
            "rust": job.toolchain_version,
            "env": [f"{k}={v}" for k, v in job.env_overrides.items()],
        }
        if job.is_cron_only:
            item["if"] = _cron_condition(descriptor)
        include.append(item)
    return {
        "rust": list(descriptor.versions),
        "env": {"global": [f"{k}={v}" for k, v in descriptor.env_defaults.items()]},
        "include": include,
        "before_script": [guard_line(g) for g in descriptor.before_script],
        "script": [guard_line(g) for g in descriptor.script],
        "branches": {"only": list(descriptor.branches)},
    }


def _verify(text: str, descriptor: Descriptor) -> None:
    try:
        doc = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise EmitError("Emitted pipeline is not valid YAML") from e
    if not isinstance(doc, dict):
        raise EmitError("Emitted pipeline is not a YAML mapping")

    expected = _expected_document(descriptor)
    actual = {
        "rust": [str(v) for v in doc.get("rust") or []],
        "env": doc.get("env"),
        "include": (doc.get("matrix") or {}).get("include") or [],
        "before_script": doc.get("before_script") or [],
        "script": doc.get("script") or [],
        "branches": doc.get("branches"),
    }
    for key, want in expected.items():
        if actual[key] != want:
            raise EmitError(f"Emitted `{key}` does not read back as intended: {actual[key]!r}")


def emit(descriptor: Descriptor) -> str:
    """Serialize `descriptor` to Travis CI YAML, or raise `EmitError`."""
    _check_descriptor(descriptor)

    env = _build_env()
    try:
        template = env.get_template(TRAVIS_TEMPLATE)
        text = template.render(
            settings=descriptor.settings,
            versions=descriptor.versions,
            env_defaults=descriptor.env_defaults,
            included_jobs=descriptor.included_jobs,
            before_script=descriptor.before_script,
            script=descriptor.script,
            schedule=descriptor.schedule,
            cron_condition=_cron_condition(descriptor),
            branches=descriptor.branches,
            notifications=descriptor.notifications,
        )
    except Exception as e:  # noqa: BLE001 - surface as EmitError
        raise EmitError(f"Failed rendering template: {TRAVIS_TEMPLATE}") from e

    _verify(text, descriptor)
    log.debug("emitted %d bytes", len(text))
    return text


def render_text(config: BuildMatrixConfig) -> str:
    """`render` then `emit`: config in, pipeline text out."""
    return emit(render(config))
