"""
cigen package

This package renders a declarative build-matrix description into a Travis CI
pipeline file.

Key responsibilities are split across modules:
- `model.py`: typed, validated build-matrix config (`MatrixEntry`, `BuildMatrixConfig`)
- `renderer.py`: config -> provider-agnostic `Descriptor` (jobs, flag defaults, guard tables)
- `emitter.py`: `Descriptor` -> Travis CI YAML via a Jinja2 template
- `config_loader.py`: YAML config file -> `BuildMatrixConfig`
- `cli.py`: CLI entrypoint and orchestration (load -> render -> emit -> write)
"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
