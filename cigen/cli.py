"""
cli.py

Responsibility: CLI entrypoint for cigen.

High-level flow (`render` command):
1) Load the YAML build-matrix config -> `BuildMatrixConfig`
2) Render it -> `Descriptor`
3) Emit the descriptor -> Travis CI YAML text
4) Write the text to the output file (or compare with it under `--check`)

This module should orchestrate behavior but keep concerns isolated:
- Config loading: `config_loader.py`
- Translation: `renderer.py`
- Serialization: `emitter.py`

Nothing is written unless every earlier step succeeded.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from cigen import __version__
from cigen.config_loader import dump_config, load_config
from cigen.emitter import emit
from cigen.errors import CIGenError
from cigen.model import BuildMatrixConfig
from cigen.renderer import render

log = logging.getLogger(__name__)

DEFAULT_OUTPUT = ".travis.yml"


class CLIError(CIGenError):
    pass


def _write_atomic(path: Path, text: str) -> None:
    """Write via a sibling temp file so a failed write never leaves a partial pipeline."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(text, encoding="utf-8", newline="\n")
    tmp.replace(path)


def render_cmd(args: argparse.Namespace) -> int:
    config = load_config(args.config_path)
    descriptor = render(config)
    text = emit(descriptor)

    if args.stdout:
        sys.stdout.write(text)
        return 0

    output = Path(args.output).resolve()
    if args.check:
        if not output.is_file():
            raise CLIError(f"{output} is not an existing file; run `cigen render` to create it")
        if output.read_text(encoding="utf-8") != text:
            print(f"{output} is out of date; run `cigen render` to regenerate it", file=sys.stderr)
            return 1
        log.info("%s is up to date", output)
        return 0

    if output.is_dir():
        raise CLIError(f"{output} is a directory; pass a file path with --output")
    _write_atomic(output, text)
    log.info("wrote %s (%d jobs)", output, len(descriptor.jobs))
    return 0


def defaults_cmd(args: argparse.Namespace) -> int:
    sys.stdout.write(dump_config(BuildMatrixConfig.default()))
    return 0


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="cigen", description="Render a declarative build matrix into a Travis CI pipeline")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    r = sub.add_parser("render", help="Render a build-matrix config into a pipeline file")
    r.add_argument("config_path", help="Path to the YAML build-matrix config")
    r.add_argument("-o", "--output", default=DEFAULT_OUTPUT, help=f"Output file (default: {DEFAULT_OUTPUT})")
    r.add_argument("--stdout", action="store_true", help="Print the pipeline instead of writing a file")
    r.add_argument(
        "--check",
        action="store_true",
        help="Do not write; exit 1 if the output file differs from what would be rendered",
    )
    r.set_defaults(func=render_cmd)

    d = sub.add_parser("defaults", help="Print the default build-matrix config as YAML")
    d.set_defaults(func=defaults_cmd)
    return p


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except CIGenError as e:
        print(f"{type(e).__name__}: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
