"""
model.py

Responsibility: Typed, immutable build-matrix model.

`MatrixEntry` describes one build variant (toolchain, command, optional install
step, run/cron flags). `BuildMatrixConfig` aggregates the fixed roles (bench,
clippy, rustfmt), any additional named entries, and the global settings.

Both validate on construction; the renderer treats a constructed config as the
single source of truth and never mutates it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from cigen.errors import InvalidConfig, InvalidEntry

FIXED_ROLES: tuple[str, ...] = ("rustfmt", "bench", "clippy")

_CHANNEL_RE = re.compile(
    r"^(?:(?:stable|beta|nightly)(?:-\d{4}-\d{2}-\d{2})?|\d+\.\d+(?:\.\d+)?)$"
)
_ROLE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")
_CRON_FIELD_RE = re.compile(r"^[0-9A-Za-z*/,\-?LW#]+$")


def is_valid_channel(version: str) -> bool:
    """
    True for channels rustup understands: `stable`, `beta`, `nightly` (optionally
    dated, e.g. `nightly-2019-06-01`) or a release number such as `1.40.0`.
    """
    return bool(_CHANNEL_RE.match(version))


def _single_line(value: str) -> bool:
    return "\n" not in value and "\r" not in value


@dataclass(frozen=True)
class MatrixEntry:
    """One named build variant."""

    run: bool = True
    run_cron: bool = False
    version: str = "stable"
    install_commandline: str | None = None
    commandline: str = ""

    def __post_init__(self) -> None:
        if not is_valid_channel(self.version):
            raise InvalidEntry(f"Unknown toolchain channel: {self.version!r}")
        if self.run and not self.commandline.strip():
            raise InvalidEntry("Entry is enabled (`run: true`) but has an empty `commandline`.")
        if not _single_line(self.commandline):
            raise InvalidEntry(f"`commandline` must be a single line: {self.commandline!r}")
        if self.install_commandline is not None:
            if not self.install_commandline.strip():
                object.__setattr__(self, "install_commandline", None)
            elif not _single_line(self.install_commandline):
                raise InvalidEntry(f"`install_commandline` must be a single line: {self.install_commandline!r}")


_ROLE_DEFAULTS: dict[str, MatrixEntry] = {
    "bench": MatrixEntry(version="nightly", commandline="cargo bench"),
    "clippy": MatrixEntry(
        version="stable",
        install_commandline="rustup component add clippy",
        commandline="cargo clippy -- -D warnings",
    ),
    "rustfmt": MatrixEntry(
        version="stable",
        install_commandline="rustup component add rustfmt",
        commandline="cargo fmt -v -- --check",
    ),
}


def default_entry(role: str) -> MatrixEntry:
    """Return the stock entry for a fixed role."""
    try:
        return _ROLE_DEFAULTS[role]
    except KeyError:
        raise InvalidEntry(f"No default entry for role {role!r}; fixed roles are {sorted(_ROLE_DEFAULTS)}") from None


@dataclass(frozen=True)
class BuildMatrixConfig:
    """The whole build-matrix description consumed by `cigen.renderer.render`."""

    bench: MatrixEntry = field(default_factory=lambda: default_entry("bench"))
    clippy: MatrixEntry = field(default_factory=lambda: default_entry("clippy"))
    rustfmt: MatrixEntry = field(default_factory=lambda: default_entry("rustfmt"))
    additional_matrix_entries: Mapping[str, MatrixEntry] = field(default_factory=dict)
    cache: str | None = "cargo"
    os: str = "linux"
    dist: str = "bionic"
    versions: tuple[str, ...] = ("stable", "beta", "nightly")
    test_commandline: str = "cargo test --verbose --all"
    scheduled_test_branches: frozenset[str] = frozenset({"master"})
    test_schedule: str = "0 0 * * 0"

    def __post_init__(self) -> None:
        # Normalise containers so the frozen instance is actually immutable.
        object.__setattr__(self, "versions", tuple(self.versions))
        object.__setattr__(self, "scheduled_test_branches", frozenset(self.scheduled_test_branches))
        object.__setattr__(
            self,
            "additional_matrix_entries",
            MappingProxyType(dict(self.additional_matrix_entries)),
        )
        if self.cache is not None and self.cache.strip().lower() in ("", "none", "false"):
            object.__setattr__(self, "cache", None)

        if not self.versions:
            raise InvalidConfig("`versions` must list at least one toolchain channel.")
        seen: set[str] = set()
        for version in self.versions:
            if version in seen:
                raise InvalidConfig(f"Duplicate toolchain channel in `versions`: {version!r}")
            if not is_valid_channel(version):
                raise InvalidConfig(f"Unknown toolchain channel in `versions`: {version!r}")
            seen.add(version)

        if not self.test_commandline.strip():
            raise InvalidConfig("`test_commandline` must not be empty.")
        if not _single_line(self.test_commandline):
            raise InvalidConfig(f"`test_commandline` must be a single line: {self.test_commandline!r}")

        for role, entry in self.additional_matrix_entries.items():
            if not isinstance(role, str) or not _ROLE_RE.match(role):
                raise InvalidConfig(f"Invalid role identifier in `additional_matrix_entries`: {role!r}")
            if not isinstance(entry, MatrixEntry):
                raise InvalidConfig(f"Entry {role!r} must be a MatrixEntry, got {type(entry).__name__}")

        for branch in self.scheduled_test_branches:
            if not branch or any(c.isspace() or c in ",()" for c in branch):
                raise InvalidConfig(f"Invalid branch name in `scheduled_test_branches`: {branch!r}")

        if not self.scheduled_test_branches:
            cron_roles = [
                role
                for role, entry in (*self.fixed_entries().items(), *self.additional_matrix_entries.items())
                if entry.run and entry.run_cron
            ]
            if cron_roles:
                raise InvalidConfig(
                    f"Cron-only role(s) {', '.join(cron_roles)} need at least one branch in `scheduled_test_branches`."
                )

        fields = self.test_schedule.split()
        if len(fields) != 5 or not all(_CRON_FIELD_RE.match(f) for f in fields):
            raise InvalidConfig(f"`test_schedule` is not a five-field cron expression: {self.test_schedule!r}")

    @classmethod
    def default(cls) -> BuildMatrixConfig:
        return cls()

    def fixed_entries(self) -> dict[str, MatrixEntry]:
        """Fixed roles in stable role order."""
        return {role: getattr(self, role) for role in FIXED_ROLES}
