"""Console output formatting utilities for matrixci."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from matrixci.model import JobDefinition, JobResult, MatrixResult, ResolvedEnvironment, Status, StepResult

TAIL_LINES = 30


def _tail(text: str, lines: int = TAIL_LINES) -> list[str]:
    return text.rstrip().splitlines()[-lines:] if text.strip() else []


def _status_display(result: JobResult) -> str:
    label = result.status.value.upper()
    if result.status == Status.FAILED and result.reason is not None:
        label = f"{label} ({result.reason.value})"
    return label


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False, verbose: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, print debug lines to stderr
            verbose: If True, print captured output of every step, not only failing ones
        """
        self.debug = debug
        self.verbose = verbose
        # jobs finish on worker threads
        self._lock = threading.Lock()

    def _emit(self, *lines: str, err: bool = False) -> None:
        stream = sys.stderr if err else sys.stdout
        with self._lock:
            for line in lines:
                print(line, file=stream)

    def print_header(self, title: str) -> None:
        """Print a section header."""
        self._emit(f"\n{title}", "-" * len(title))

    def print_run_started(self, config: str, job_count: int, workers: int | None) -> None:
        """Print run start information."""
        self._emit(
            "\nRUN STARTED",
            f"Config: {config}",
            f"Jobs: {job_count}",
            f"Workers: {workers if workers else 'one per job'}",
            "",
        )

    def print_job_start(self, job: JobDefinition) -> None:
        self._emit(f"JOB STARTED: {job.name} ({job.runtime}, {job.os})")

    def print_step(self, job: JobDefinition, result: StepResult) -> None:
        """Print one finished step; output is shown for failures (or always when verbose)."""
        lines = [f"[{job.name}] {result.status.value.upper():<9} {result.step.name} ({result.duration:.1f}s)"]
        show = self.verbose or result.status in (Status.FAILED, Status.TIMEOUT)
        if show:
            limit = None if self.verbose else TAIL_LINES
            for name, text in (("stdout", result.stdout), ("stderr", result.stderr)):
                tail = text.rstrip().splitlines() if limit is None else _tail(text, limit)
                if tail:
                    lines.append(f"[{job.name}]   --- {name} ---")
                    lines.extend(f"[{job.name}]   {line}" for line in tail)
        self._emit(*lines)

    def print_job_done(self, result: JobResult) -> None:
        lines = [f"JOB {_status_display(result)}: {result.name} ({result.duration:.1f}s)"]
        if result.message and not result.ok:
            lines.append(f"  {result.message}")
        self._emit(*lines)

    def print_plan_job(self, job: JobDefinition, env: Optional[ResolvedEnvironment], error: Optional[str] = None) -> None:
        """Print one job of a plan (no execution)."""
        lines = [f"\n#{job.number} {job.name}", f"  runtime: {job.runtime}", f"  os: {job.os}"]
        if error:
            lines.append(f"  unresolved: {error}")
        if env is not None:
            lines.append(f"  shell: {env.shell}")
            lines.append(f"  working directory: {env.working_directory}")
        for name, value in job.env:
            shown = env.variables.get(name, value) if env is not None else value
            lines.append(f"  env: {name}={shown}")
        for step in job.steps:
            timeout = step.timeout or job.timeout
            suffix = f" (timeout {timeout:g}s)" if timeout else ""
            lines.append(f"  {step.phase}: {step.run}{suffix}")
        for key, value in job.extra.items():
            lines.append(f"  {key}: {value}")
        self._emit(*lines)

    def print_results(self, result: MatrixResult) -> None:
        """Print final results summary, in declaration order."""
        lines = ["", "=" * 40, "RESULTS", "=" * 40]
        for job in result.jobs:
            lines.append(f"  {job.name}: {_status_display(job)}")
            failed = job.failed_step
            if failed is not None:
                lines.append(f"      at {failed.step.phase}: {failed.step.run}")
            elif job.message and not job.ok:
                lines.append(f"      {job.message}")
        counts = result.counts()
        summary = ", ".join(f"{counts[s]} {s.value}" for s in Status if s in counts)
        lines.append("")
        lines.append(f"{result.status.value.upper()}: {summary}")
        self._emit(*lines)

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        lines = [f"\nERROR: {title}", message]
        if details:
            lines.extend(f"  {d}" for d in details)
        if suggestion:
            lines.append(f"\n{suggestion}")
        self._emit(*lines, err=True)

    def print_exception(self, exc: BaseException) -> None:
        """Print an unexpected error as a one-line message."""
        self._emit(f"Error: {type(exc).__name__}: {exc}", err=True)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        self._emit(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            self._emit(f"[DEBUG] {message}", err=True)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
