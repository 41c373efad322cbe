# cli.py
from __future__ import annotations

import signal
import sys
import traceback
from pathlib import Path

import click

from matrixci import settings
from matrixci.errors import MalformedConfig, UnresolvedVariable
from matrixci.executor import run_matrix
from matrixci.parser import load_matrix, select_jobs
from matrixci.resolver import resolve
from matrixci.runner import CancelToken
from matrixci.ui.console import Console, get_console, set_console

EXIT_CONFIG_ERROR = 2


def discover_config(config_arg: str | None) -> Path:
    """
    Discover the matrix file from argument or default.

    Args:
        config_arg: Optional --config argument from CLI

    Returns:
        Path to the matrix file

    Raises:
        SystemExit: If no matrix file can be found
    """
    console = get_console()

    if config_arg:
        path = Path(config_arg)
        if not path.exists():
            console.print_error(
                "Config file not found",
                f"Could not find matrix file: {config_arg}",
                suggestion="Specify an existing file:\n  matrixci run --config .travis.yml",
            )
            sys.exit(EXIT_CONFIG_ERROR)
        return path

    for name in settings.CONFIG_CANDIDATES:
        path = Path(name)
        if path.exists():
            return path

    console.print_error(
        "No config file found",
        "Could not find a matrix file.",
        details=["Looked for:", *(f"  {n}" for n in settings.CONFIG_CANDIDATES)],
        suggestion="Create one of these files or specify it explicitly:\n  matrixci run --config my_matrix.yml",
    )
    sys.exit(EXIT_CONFIG_ERROR)


def _load(config: str | None, only: tuple[str, ...] = ()):
    console = get_console()
    config_path = discover_config(config)
    try:
        jobs = select_jobs(load_matrix(config_path), only)
    except MalformedConfig as e:
        console.print_error("Invalid matrix", str(e))
        sys.exit(EXIT_CONFIG_ERROR)
    console.print_debug(f"Loaded {len(jobs)} job(s) from {config_path}")
    return config_path, jobs


def _fail(ctx, exc: Exception) -> None:
    get_console().print_exception(exc)
    if ctx.obj.get("debug", False):
        traceback.print_exc()
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug output",
)
@click.pass_context
def cli(ctx, debug):
    """matrixci: run a CI build matrix locally."""
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option(
    "--config",
    default=settings.CONFIG_PATH,
    help="Matrix file (defaults to .matrixci.yml or .travis.yml if present)",
)
@click.option("--workers", default=settings.MAX_WORKERS, type=click.IntRange(min=1), help="Max jobs running at once (default: one per job)")
@click.option("--timeout", default=settings.STEP_TIMEOUT, type=click.FloatRange(min=0, min_open=True), help="Default per-step timeout in seconds")
@click.option("--workspace", default=settings.WORKSPACE, show_default=True, help="Directory steps run in")
@click.option("--only", multiple=True, help="Run only the named job (repeatable)")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Print output of every step")
@click.pass_context
def run(ctx, config, workers, timeout, workspace, only, verbose):
    """Run every job of the matrix and report the results."""
    console = get_console()
    console.verbose = verbose

    try:
        config_path, jobs = _load(config, only)
        console.print_run_started(config=str(config_path), job_count=len(jobs), workers=workers)

        token = CancelToken()

        def _on_sigterm(signum, frame):
            console.print_info(f"\nReceived signal {signum}, cancelling...")
            token.cancel()

        previous = signal.signal(signal.SIGTERM, _on_sigterm)
        try:
            result = run_matrix(
                jobs,
                workspace=workspace,
                max_workers=workers,
                default_timeout=timeout,
                token=token,
                on_job_start=console.print_job_start,
                on_job_done=console.print_job_done,
                on_step=console.print_step,
            )
        finally:
            signal.signal(signal.SIGTERM, previous)

        if token.cancelled:
            console.print_info("\nRun cancelled")
        console.print_results(result)

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)

    sys.exit(result.exit_code)


@cli.command()
@click.option(
    "--config",
    default=settings.CONFIG_PATH,
    help="Matrix file (defaults to .matrixci.yml or .travis.yml if present)",
)
@click.option("--workspace", default=settings.WORKSPACE, show_default=True, help="Directory steps would run in")
@click.option("--only", multiple=True, help="Show only the named job (repeatable)")
@click.pass_context
def plan(ctx, config, workspace, only):
    """Parse and resolve the matrix without running anything."""
    console = get_console()

    unresolved = 0
    try:
        config_path, jobs = _load(config, only)
        console.print_header(f"PLAN: {config_path} ({len(jobs)} job(s))")

        for job in jobs:
            try:
                env = resolve(job, workspace=workspace)
                console.print_plan_job(job, env)
            except UnresolvedVariable as e:
                unresolved += 1
                console.print_plan_job(job, None, error=str(e))

    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        _fail(ctx, e)

    if unresolved:
        sys.exit(1)


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
