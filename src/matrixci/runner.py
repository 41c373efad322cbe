# runner.py
from __future__ import annotations

import os
import signal
import subprocess
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Set

from .errors import StepFailure
from .model import (
    FailureReason,
    JobDefinition,
    JobResult,
    ResolvedEnvironment,
    Status,
    Step,
    StepResult,
)
from .ui.console import get_console

_POSIX = hasattr(os, "killpg")

StepCallback = Callable[[JobDefinition, StepResult], None]


# ----------------------------------------------------------------------
# Cancellation
# ----------------------------------------------------------------------

class CancelToken:
    """
    Cancellation scope shared by every job of a run.

    Live child processes register themselves; cancel() terminates all of
    them. A process registered after cancel() is terminated immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._procs: Set[subprocess.Popen] = set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            self._event.set()
            procs = list(self._procs)
        for proc in procs:
            _terminate(proc, signal.SIGTERM)

    def register(self, proc: subprocess.Popen) -> None:
        with self._lock:
            if not self._event.is_set():
                self._procs.add(proc)
                return
        _terminate(proc, signal.SIGTERM)

    def unregister(self, proc: subprocess.Popen) -> None:
        with self._lock:
            self._procs.discard(proc)

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)


def _terminate(proc: subprocess.Popen, sig: int = signal.SIGKILL if _POSIX else signal.SIGTERM) -> None:
    """Signal the step's whole process group (the step runs in its own session)."""
    try:
        if _POSIX:
            os.killpg(proc.pid, sig)
        elif proc.poll() is None:
            proc.kill()
    except (ProcessLookupError, PermissionError):
        pass


# ----------------------------------------------------------------------
# Execution primitives
# ----------------------------------------------------------------------

def _read_output(f) -> str:
    f.seek(0)
    return f.read().decode("utf-8", errors="replace")


def run_step(
    step: Step,
    env: ResolvedEnvironment,
    *,
    token: Optional[CancelToken] = None,
    timeout: float | None = None,
) -> StepResult:
    """
    Run one step as `<shell> -c <command>` and capture its output.

    The child gets its own process group and a private TMPDIR; both are torn
    down before this returns, whatever the outcome.
    """
    if token is not None and token.cancelled:
        return StepResult(step=step, status=Status.CANCELLED, reason=FailureReason.CANCELLED)

    started = time.monotonic()
    if not Path(env.working_directory).is_dir():
        return StepResult(
            step=step,
            status=Status.FAILED,
            stderr=f"working directory not found: {env.working_directory}",
            reason=FailureReason.SPAWN_FAILED,
        )

    with tempfile.TemporaryDirectory(prefix="matrixci-", ignore_cleanup_errors=True) as tmp, \
            tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
        child_env = dict(env.variables)
        child_env["TMPDIR"] = tmp

        # the step ends when the shell exits, even if a background child
        # still holds stdout
        try:
            proc = subprocess.Popen(
                [env.shell, "-c", step.run],
                cwd=env.working_directory,
                env=child_env,
                stdout=out,
                stderr=err,
                stdin=subprocess.DEVNULL,
                start_new_session=_POSIX,
            )
        except OSError as e:
            return StepResult(
                step=step,
                status=Status.FAILED,
                stderr=str(e),
                duration=time.monotonic() - started,
                reason=FailureReason.SPAWN_FAILED,
            )

        timed_out = False
        try:
            if token is not None:
                token.register(proc)
            try:
                proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
        finally:
            if token is not None:
                token.unregister(proc)
            # the group outlives the shell if it backgrounded anything
            _terminate(proc)
            if proc.poll() is None:
                proc.kill()
            proc.wait()

        stdout = _read_output(out)
        stderr = _read_output(err)

    duration = time.monotonic() - started
    code = proc.returncode

    if timed_out:
        return StepResult(
            step=step,
            status=Status.TIMEOUT,
            exit_code=code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            reason=FailureReason.TIMEOUT,
        )
    if code == 0:
        return StepResult(step=step, status=Status.SUCCESS, exit_code=0, stdout=stdout, stderr=stderr, duration=duration)
    if token is not None and token.cancelled:
        return StepResult(
            step=step,
            status=Status.CANCELLED,
            exit_code=code,
            stdout=stdout,
            stderr=stderr,
            duration=duration,
            reason=FailureReason.CANCELLED,
        )
    return StepResult(
        step=step,
        status=Status.FAILED,
        exit_code=code,
        stdout=stdout,
        stderr=stderr,
        duration=duration,
        reason=FailureReason.STEP_FAILURE,
    )


def notify(callback: Callable[..., None], *args) -> None:
    """Call a reporting hook; a failing hook is reported but never alters results."""
    try:
        callback(*args)
    except Exception as e:
        get_console().print_error(
            "Reporter error",
            f"{type(e).__name__}: {e}",
        )


def _failure_message(job: JobDefinition, r: StepResult, timeout: float | None) -> str:
    if r.status == Status.TIMEOUT:
        return f"[{job.name}] step '{r.step.name}' timed out after {timeout:g}s"
    if r.status == Status.CANCELLED:
        return f"[{job.name}] cancelled during step '{r.step.name}'"
    if r.reason == FailureReason.SPAWN_FAILED:
        return f"[{job.name}] step '{r.step.name}' could not be started: {r.stderr.strip()}"
    return str(StepFailure(job=job.name, step=r.step.name, cmd=r.step.run, exit_code=r.exit_code))


def run_job(
    job: JobDefinition,
    env: ResolvedEnvironment,
    *,
    token: Optional[CancelToken] = None,
    default_timeout: float | None = None,
    on_step: Optional[StepCallback] = None,
) -> JobResult:
    """
    Run setup steps then script steps, strictly in order, fail-fast.

    The first step that does not succeed ends the job; every later step is
    recorded as skipped.
    """
    started = time.monotonic()
    steps = job.steps
    results: List[StepResult] = []

    for i, step in enumerate(steps):
        timeout = step.timeout or job.timeout or default_timeout
        r = run_step(step, env, token=token, timeout=timeout)
        results.append(r)
        if on_step is not None:
            notify(on_step, job, r)

        if r.ok:
            continue

        results.extend(StepResult.skipped(s) for s in steps[i + 1:])
        if r.status == Status.CANCELLED:
            status = Status.CANCELLED
        else:
            status = Status.FAILED
        return JobResult(
            job=job,
            status=status,
            steps=tuple(results),
            reason=r.reason,
            message=_failure_message(job, r, timeout),
            duration=time.monotonic() - started,
        )

    return JobResult(
        job=job,
        status=Status.SUCCESS,
        steps=tuple(results),
        duration=time.monotonic() - started,
    )
