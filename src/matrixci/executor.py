# executor.py
from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence

from .errors import UnresolvedVariable
from .model import FailureReason, JobDefinition, JobResult, MatrixResult, Status
from .resolver import resolve
from .runner import CancelToken, StepCallback, notify, run_job

JobCallback = Callable[[JobDefinition], None]
ResultCallback = Callable[[JobResult], None]


def _run_one(
    job: JobDefinition,
    *,
    workspace: Path,
    base_env: Optional[Mapping[str, str]],
    token: CancelToken,
    default_timeout: float | None,
    on_job_start: Optional[JobCallback],
    on_step: Optional[StepCallback],
) -> JobResult:
    """Resolve + run one job. Never raises: every error becomes this job's result."""
    if token.cancelled:
        return JobResult.not_run(job, Status.CANCELLED, FailureReason.CANCELLED, "cancelled before start")

    if on_job_start is not None:
        notify(on_job_start, job)
    try:
        env = resolve(job, base_env=base_env, workspace=workspace)
        return run_job(job, env, token=token, default_timeout=default_timeout, on_step=on_step)
    except UnresolvedVariable as e:
        return JobResult.not_run(job, Status.FAILED, FailureReason.UNRESOLVED_VARIABLE, str(e))
    except Exception as e:
        return JobResult.not_run(
            job,
            Status.FAILED,
            FailureReason.INTERNAL_ERROR,
            f"[{job.name}] {type(e).__name__}: {e}",
        )


def run_matrix(
    jobs: Sequence[JobDefinition],
    *,
    workspace: str | Path = ".",
    base_env: Optional[Mapping[str, str]] = None,
    max_workers: int | None = None,
    default_timeout: float | None = None,
    token: Optional[CancelToken] = None,
    on_job_start: Optional[JobCallback] = None,
    on_job_done: Optional[ResultCallback] = None,
    on_step: Optional[StepCallback] = None,
) -> MatrixResult:
    """
    Run every job independently and aggregate the results.

    Jobs run on a thread pool (one worker per job unless `max_workers` caps
    it). A job's failure never stops or alters another job. The result lists
    jobs in declaration order regardless of completion order.

    Ctrl-C while waiting cancels `token`: running steps are terminated and
    jobs that have not started are reported cancelled.
    """
    jobs = list(jobs)
    token = token or CancelToken()
    root = Path(workspace).expanduser().resolve()

    # one slot per job; each worker writes only its own index
    slots: List[Optional[JobResult]] = [None] * len(jobs)
    if not jobs:
        return MatrixResult(jobs=())

    workers = max(1, min(max_workers or len(jobs), len(jobs)))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="matrixci") as pool:
        pending = {
            pool.submit(
                _run_one,
                job,
                workspace=root,
                base_env=base_env,
                token=token,
                default_timeout=default_timeout,
                on_job_start=on_job_start,
                on_step=on_step,
            ): idx
            for idx, job in enumerate(jobs)
        }

        while pending:
            try:
                done, _ = wait(list(pending), return_when=FIRST_COMPLETED)
            except KeyboardInterrupt:
                token.cancel()
                continue

            for fut in done:
                idx = pending.pop(fut)
                slots[idx] = fut.result()
                if on_job_done is not None:
                    notify(on_job_done, slots[idx])

    return MatrixResult(jobs=tuple(slots))
