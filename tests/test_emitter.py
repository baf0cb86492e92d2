from __future__ import annotations

import dataclasses

import pytest
import yaml

from cigen.emitter import emit, guard_line, render_text
from cigen.errors import EmitError
from cigen.model import BuildMatrixConfig, MatrixEntry
from cigen.renderer import JobSpec, ScheduleSpec, ScriptGuard, render

DEFAULT_PIPELINE = r"""# Generated by cigen. Do not edit by hand.
# Scheduled test runs (0 0 * * 0) on: master
os:
  - "linux"
dist: "bionic"

language: rust
sudo: required
cache: cargo

rust:
  - stable
  - beta
  - nightly

env:
  global:
    - RUN_TEST=true
    - RUN_RUSTFMT=false
    - RUN_BENCH=false
    - RUN_CLIPPY=false

matrix:
  fast_finish: true
  include:
    - &rustfmt_build
      rust: "stable"
      env:
        - RUN_RUSTFMT=true
        - RUN_TEST=false
    - &bench_build
      rust: "nightly"
      env:
        - RUN_BENCH=true
        - RUN_TEST=false
    - &clippy_build
      rust: "stable"
      env:
        - RUN_CLIPPY=true
        - RUN_TEST=false

before_script:
  - bash -c 'if [[ "$RUN_RUSTFMT" == "true" ]]; then
      rustup component add rustfmt
      ;
    fi'
  - bash -c 'if [[ "$RUN_CLIPPY" == "true" ]]; then
      rustup component add clippy
      ;
    fi'

script:
  - bash -c 'if [[ "$RUN_TEST" == "true" ]]; then
      cargo test --verbose --all
      ;
    fi'
  - bash -c 'if [[ "$RUN_RUSTFMT" == "true" ]]; then
      cargo fmt -v -- --check
      ;
    fi'
  - bash -c 'if [[ "$RUN_BENCH" == "true" ]]; then
      cargo bench
      ;
    fi'
  - bash -c 'if [[ "$RUN_CLIPPY" == "true" ]]; then
      cargo clippy -- -D warnings
      ;
    fi'

branches:
  only:
    # release tags
    - /^v\d+\.\d+\.\d+.*$/
    - master
    - trying
    - staging

notifications:
  email:
    on_success: never
"""


def test_default_pipeline_text() -> None:
    assert render_text(BuildMatrixConfig.default()) == DEFAULT_PIPELINE


def test_emit_is_byte_identical_across_runs() -> None:
    config = BuildMatrixConfig(additional_matrix_entries={"doc": MatrixEntry(commandline="cargo doc")})
    assert emit(render(config)) == emit(render(config))


def test_versions_listed_in_order() -> None:
    config = BuildMatrixConfig(versions=["nightly", "1.40", "stable", "1.36.0"])
    doc = yaml.safe_load(render_text(config))
    assert doc["rust"] == ["nightly", "1.40", "stable", "1.36.0"]


def test_disabled_role_absent_from_output() -> None:
    config = BuildMatrixConfig(clippy=MatrixEntry(run=False, version="stable"))
    text = render_text(config)
    doc = yaml.safe_load(text)
    assert "RUN_CLIPPY=false" in doc["env"]["global"]
    assert "&clippy_build" not in text
    assert "cargo clippy" not in text
    assert "rustup component add clippy" not in text


def test_install_command_guarded_by_role_flag() -> None:
    config = BuildMatrixConfig(
        additional_matrix_entries={
            "miri": MatrixEntry(version="nightly", install_commandline="rustup component add miri", commandline="cargo miri test")
        }
    )
    doc = yaml.safe_load(render_text(config))
    assert guard_line(ScriptGuard("RUN_MIRI", "rustup component add miri")) in doc["before_script"]
    assert doc["before_script"][-1] == (
        'bash -c \'if [[ "$RUN_MIRI" == "true" ]]; then rustup component add miri ; fi\''
    )


def test_no_before_script_block_without_installs() -> None:
    config = BuildMatrixConfig(
        clippy=MatrixEntry(version="stable", commandline="cargo clippy"),
        rustfmt=MatrixEntry(run=False, version="stable"),
    )
    text = render_text(config)
    assert "before_script:" not in text
    assert "script:" in text


def test_cron_only_job_condition() -> None:
    config = BuildMatrixConfig(
        bench=MatrixEntry(run_cron=True, version="nightly", commandline="cargo bench"),
        scheduled_test_branches=["master", "release"],
    )
    doc = yaml.safe_load(render_text(config))
    bench = [job for job in doc["matrix"]["include"] if "RUN_BENCH=true" in job["env"]][0]
    assert bench["if"] == "type = cron AND branch IN (master, release)"
    others = [job for job in doc["matrix"]["include"] if job is not bench]
    assert all("if" not in job for job in others)


def test_cache_disabled() -> None:
    doc = yaml.safe_load(render_text(BuildMatrixConfig(cache=None)))
    assert doc["cache"] is False


def test_single_quotes_in_commands_are_escaped() -> None:
    config = BuildMatrixConfig(test_commandline="cargo test -- --skip 'slow'")
    text = render_text(config)
    assert "cargo test -- --skip '\\''slow'\\''" in text


@pytest.mark.parametrize(
    "command",
    [
        "cargo test # all of them",
        'cargo test --features "a b" -- --skip x: y',
    ],
)
def test_yaml_sensitive_commands_round_trip(command: str) -> None:
    text = render_text(BuildMatrixConfig(test_commandline=command))
    doc = yaml.safe_load(text)
    assert doc["script"][0] == guard_line(ScriptGuard("RUN_TEST", command))
    assert '  - "bash -c ' in text
    # Guards YAML can fold unchanged keep the multi-line layout.
    assert "  - bash -c 'if [[ \"$RUN_RUSTFMT\" == \"true\" ]]; then\n" in text


def test_baseline_job_with_undeclared_channel() -> None:
    d = render(BuildMatrixConfig())
    broken = dataclasses.replace(d, versions=("stable", "nightly"))
    with pytest.raises(EmitError, match="undeclared toolchain channel 'beta'"):
        emit(broken)


def test_job_with_unknown_channel() -> None:
    d = render(BuildMatrixConfig())
    broken = dataclasses.replace(d, jobs=d.jobs + (JobSpec("odd", "latest", {"RUN_BENCH": "true"}),))
    with pytest.raises(EmitError, match="unknown toolchain channel"):
        emit(broken)


def test_undeclared_flags_rejected() -> None:
    d = render(BuildMatrixConfig())
    with pytest.raises(EmitError, match="RUN_DOC"):
        emit(dataclasses.replace(d, jobs=d.jobs + (JobSpec("doc", "stable", {"RUN_DOC": "true"}),)))
    with pytest.raises(EmitError, match="RUN_DOC"):
        emit(dataclasses.replace(d, script=d.script + (ScriptGuard("RUN_DOC", "cargo doc"),)))


def test_cron_only_job_without_branches_rejected() -> None:
    config = BuildMatrixConfig(bench=MatrixEntry(run_cron=True, version="nightly", commandline="cargo bench"))
    d = render(config)
    broken = dataclasses.replace(d, schedule=ScheduleSpec(branches=(), cron=d.schedule.cron))
    with pytest.raises(EmitError, match="no scheduled branches"):
        emit(broken)
