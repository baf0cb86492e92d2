"""
errors.py

Responsibility: Error hierarchy shared by the model, renderer and emitter.

Everything raised by the core derives from `CIGenError` so the CLI can report
`<ErrorKind>: <message>` without knowing which stage failed.
"""

from __future__ import annotations


class CIGenError(RuntimeError):
    pass


class RenderError(CIGenError):
    """Translation of a `BuildMatrixConfig` into a descriptor failed."""


class InvalidEntry(RenderError, ValueError):
    """A single matrix entry is malformed."""


class InvalidConfig(RenderError, ValueError):
    """The aggregate build-matrix config is malformed."""


class FlagCollision(RenderError):
    """Two roles derive the same guard flag."""


class ConfigError(InvalidConfig):
    """The source config file could not be turned into a `BuildMatrixConfig`."""


class EmitError(CIGenError):
    """A descriptor is inconsistent and cannot be serialized."""
