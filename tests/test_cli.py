"""Tests for the matrixci command line."""

import time

import pytest
from click.testing import CliRunner

from matrixci.cli import cli


@pytest.fixture()
def runner():
    return CliRunner()


def _write(path, text):
    path.write_text(text, encoding="utf-8")
    return path


def test_run_reports_jobs_in_order_and_exit_code(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", '- {name: a, runtime: A, script: ["true"]}\n- {name: b, runtime: B, script: ["false"]}\n')
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path)])
    assert result.exit_code == 1
    assert "RUN STARTED" in result.output
    summary = result.output.split("RESULTS", 1)[1]
    assert summary.index("a: SUCCESS") < summary.index("b: FAILED (StepFailure)")


def test_run_success(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['echo hello']\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path), "--verbose"])
    assert result.exit_code == 0
    assert "hello" in result.output
    assert "SUCCESS: 1 success" in result.output


def test_run_failed_step_output_is_shown(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "language: sh\nbefore_script: ['echo boom; exit 1']\nscript: ['true']\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path)])
    assert result.exit_code == 1
    assert "boom" in result.output
    assert "at before_script: echo boom; exit 1" in result.output


def test_run_timeout_option(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['sleep 10']\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path), "--timeout", "1"])
    assert result.exit_code == 1
    assert "FAILED (Timeout)" in result.output


def test_run_only_selects_jobs(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "- {name: a, runtime: A, script: ['true']}\n- {name: b, runtime: B, script: ['false']}\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path), "--only", "a"])
    assert result.exit_code == 0
    assert "JOB STARTED: b" not in result.output


def test_malformed_config_aborts_before_running(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "- {name: a, runtime: A, script: ['touch ran']}\n- {name: b, runtime: B, script: []}\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path)])
    assert result.exit_code == 2
    assert "Invalid matrix" in result.output
    assert not (tmp_path / "ran").exists()


def test_missing_config_file(runner, tmp_path):
    result = runner.invoke(cli, ["run", "--config", str(tmp_path / "missing.yml")])
    assert result.exit_code == 2
    assert "Config file not found" in result.output


def test_discovers_travis_file(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    _write(tmp_path / ".travis.yml", "language: sh\nscript: ['true']\n")
    result = runner.invoke(cli, ["run"])
    assert result.exit_code == 0
    assert "Config: .travis.yml" in result.output


def test_no_config_found(runner, tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(cli, ["run"])
    assert result.exit_code == 2
    assert "No config file found" in result.output


def test_plan_prints_without_running(runner, tmp_path, travis_matrix):
    cfg = _write(tmp_path / ".travis.yml", travis_matrix)
    result = runner.invoke(cli, ["plan", "--config", str(cfg), "--workspace", str(tmp_path)])
    assert result.exit_code == 0
    assert "#1 rust-linux-1" in result.output
    assert "#2 swift-osx-2" in result.output
    assert "xcode_scheme: iOSExample" in result.output
    assert "before_script: cargo install cargo-lipo cbindgen" in result.output


def test_plan_reports_unresolved_variables(runner, tmp_path):
    cfg = _write(tmp_path / "m.yml", "language: sh\nenv: ['A=$MATRIXCI_TEST_UNDEFINED_VAR']\nscript: ['true']\n")
    result = runner.invoke(cli, ["plan", "--config", str(cfg)])
    assert result.exit_code == 1
    assert "MATRIXCI_TEST_UNDEFINED_VAR" in result.output


def test_sigterm_cancels_run(runner, tmp_path):
    # the step signals the runner process itself
    cfg = _write(tmp_path / "m.yml", "- {name: a, runtime: A, script: ['kill -TERM $PPID; sleep 30']}\n")
    started = time.monotonic()
    result = runner.invoke(cli, ["run", "--config", str(cfg), "--workspace", str(tmp_path)])
    assert time.monotonic() - started < 20
    assert result.exit_code == 130
    assert "Received signal" in result.output
    assert "a: CANCELLED" in result.output


def test_unexpected_error_is_reported(runner, tmp_path, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("executor exploded")

    monkeypatch.setattr("matrixci.cli.run_matrix", broken)
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['true']\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg)])
    assert result.exit_code == 1
    assert "Error: RuntimeError: executor exploded" in result.output
    assert "Traceback" not in result.output


def test_debug_flag_prints_traceback(runner, tmp_path, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("executor exploded")

    monkeypatch.setattr("matrixci.cli.run_matrix", broken)
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['true']\n")
    result = runner.invoke(cli, ["--debug", "run", "--config", str(cfg)])
    assert result.exit_code == 1
    assert "Traceback" in result.output


def test_interrupt_exits_130(runner, tmp_path, monkeypatch):
    def interrupted(*args, **kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr("matrixci.cli.run_matrix", interrupted)
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['true']\n")
    result = runner.invoke(cli, ["run", "--config", str(cfg)])
    assert result.exit_code == 130
    assert "Interrupted by user" in result.output


def test_plan_unexpected_error_is_reported(runner, tmp_path, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("resolver exploded")

    monkeypatch.setattr("matrixci.cli.resolve", broken)
    cfg = _write(tmp_path / "m.yml", "language: sh\nscript: ['true']\n")
    result = runner.invoke(cli, ["plan", "--config", str(cfg)])
    assert result.exit_code == 1
    assert "Error: RuntimeError: resolver exploded" in result.output
