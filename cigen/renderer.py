"""
renderer.py

Responsibility: Translate a `BuildMatrixConfig` into a provider-agnostic `Descriptor`.

Rules:
- Roles are walked in a stable order (test, rustfmt, bench, clippy, then
  additional entries by key) so identical input always yields identical output.
- Guard flags are derived from role identifiers; two roles deriving the same
  flag is an error, never a silent merge.
- The shell conditionals in the output are data: this module only builds
  tables of (flag, command) pairs.

This module intentionally does NOT know about YAML, Jinja2, or files.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from cigen.errors import FlagCollision
from cigen.model import BuildMatrixConfig, MatrixEntry

log = logging.getLogger(__name__)

TEST_ROLE = "test"
TEST_FLAG = "RUN_TEST"

RELEASE_TAG_PATTERN = r"/^v\d+\.\d+\.\d+.*$/"
DEFAULT_BRANCHES: tuple[str, ...] = (RELEASE_TAG_PATTERN, "master", "trying", "staging")


def derive_flag(role: str) -> str:
    """`rustfmt` -> `RUN_RUSTFMT`, `miri-check` -> `RUN_MIRI_CHECK`."""
    return "RUN_" + re.sub(r"[^A-Z0-9]", "_", role.upper())


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


@dataclass(frozen=True)
class JobSpec:
    label: str
    toolchain_version: str
    env_overrides: Mapping[str, str] = field(default_factory=dict)
    is_cron_only: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "env_overrides", MappingProxyType(dict(self.env_overrides)))


@dataclass(frozen=True)
class ScriptGuard:
    """Run `command` only in jobs whose environment has `flag` set to true."""

    flag: str
    command: str


@dataclass(frozen=True)
class ProviderSettings:
    os: str
    dist: str
    cache: str | None
    language: str = "rust"
    sudo: str = "required"
    fast_finish: bool = True


@dataclass(frozen=True)
class ScheduleSpec:
    branches: tuple[str, ...]
    cron: str


@dataclass(frozen=True)
class NotificationPolicy:
    on_success: str = "never"


@dataclass(frozen=True)
class Descriptor:
    settings: ProviderSettings
    versions: tuple[str, ...]
    env_defaults: Mapping[str, str]
    jobs: tuple[JobSpec, ...]
    before_script: tuple[ScriptGuard, ...]
    script: tuple[ScriptGuard, ...]
    schedule: ScheduleSpec
    branches: tuple[str, ...] = DEFAULT_BRANCHES
    notifications: NotificationPolicy = field(default_factory=NotificationPolicy)

    def __post_init__(self) -> None:
        object.__setattr__(self, "env_defaults", MappingProxyType(dict(self.env_defaults)))

    @property
    def baseline_jobs(self) -> tuple[JobSpec, ...]:
        return tuple(j for j in self.jobs if not j.env_overrides)

    @property
    def included_jobs(self) -> tuple[JobSpec, ...]:
        return tuple(j for j in self.jobs if j.env_overrides)


def _ordered_roles(config: BuildMatrixConfig) -> list[tuple[str, MatrixEntry]]:
    roles = list(config.fixed_entries().items())
    roles.extend(sorted(config.additional_matrix_entries.items(), key=lambda kv: kv[0]))
    return roles


def _role_flags(roles: list[tuple[str, MatrixEntry]]) -> dict[str, str]:
    """Map role -> flag, raising `FlagCollision` if derivation is not injective."""
    owners: dict[str, str] = {TEST_FLAG: TEST_ROLE}
    flags: dict[str, str] = {}
    for role, _entry in roles:
        flag = derive_flag(role)
        if flag in owners:
            raise FlagCollision(f"Roles {owners[flag]!r} and {role!r} both derive the guard flag {flag}")
        owners[flag] = role
        flags[role] = flag
    return flags


def _warn_shared_cron_channels(jobs: list[JobSpec]) -> None:
    counts = Counter(j.toolchain_version for j in jobs if j.is_cron_only)
    for version, n in sorted(counts.items()):
        if n > 1:
            log.warning("%d cron-only jobs share the %r toolchain channel", n, version)


def render(config: BuildMatrixConfig) -> Descriptor:
    """
    Render a config into a `Descriptor`.

    Produces one baseline job per toolchain channel, one included job per enabled
    role (overriding its own flag to true and RUN_TEST to false), the global flag
    defaults, and the before-script/script guard tables.
    """
    roles = _ordered_roles(config)
    flags = _role_flags(roles)

    env_defaults: dict[str, str] = {TEST_FLAG: "true"}
    for role, _entry in roles:
        env_defaults[flags[role]] = "false"

    jobs: list[JobSpec] = [JobSpec(label=f"{TEST_ROLE}-{v}", toolchain_version=v) for v in config.versions]
    before_script: list[ScriptGuard] = []
    script: list[ScriptGuard] = [ScriptGuard(TEST_FLAG, config.test_commandline)]

    for role, entry in roles:
        if not entry.run:
            log.debug("role %s disabled; no job or script guard", role)
            continue
        flag = flags[role]
        jobs.append(
            JobSpec(
                label=role,
                toolchain_version=entry.version,
                env_overrides={flag: _bool_str(True), TEST_FLAG: _bool_str(False)},
                is_cron_only=entry.run_cron,
            )
        )
        if entry.install_commandline:
            before_script.append(ScriptGuard(flag, entry.install_commandline))
        script.append(ScriptGuard(flag, entry.commandline))

    _warn_shared_cron_channels(jobs)
    log.debug(
        "rendered %d jobs, %d before_script guards, %d script guards",
        len(jobs),
        len(before_script),
        len(script),
    )

    return Descriptor(
        settings=ProviderSettings(os=config.os, dist=config.dist, cache=config.cache),
        versions=config.versions,
        env_defaults=env_defaults,
        jobs=tuple(jobs),
        before_script=tuple(before_script),
        script=tuple(script),
        schedule=ScheduleSpec(branches=tuple(sorted(config.scheduled_test_branches)), cron=config.test_schedule),
    )
