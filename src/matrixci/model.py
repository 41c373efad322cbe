# model.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class Status(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    SKIPPED = "skipped"


class FailureReason(str, Enum):
    STEP_FAILURE = "StepFailure"
    TIMEOUT = "Timeout"
    UNRESOLVED_VARIABLE = "UnresolvedVariable"
    SPAWN_FAILED = "SpawnFailed"
    CANCELLED = "Cancelled"
    INTERNAL_ERROR = "InternalError"


SETUP_PHASES = ("before_install", "install", "before_script")
SCRIPT_PHASE = "script"


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a matrix job."""
    name: str
    run: str
    phase: str = SCRIPT_PHASE
    timeout: float | None = None


@dataclass(frozen=True)
class JobDefinition:
    """
    One matrix entry: selectors + ordered steps + env assignments.

    `env` keeps the declared assignments in order because later entries may
    reference earlier ones. `extra` holds toolchain metadata (osx_image,
    xcode_scheme, ...) that is passed through and never interpreted.
    """
    name: str
    number: int
    runtime: str
    os: str
    script_steps: Tuple[Step, ...]
    setup_steps: Tuple[Step, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    working_directory: Optional[str] = None
    shell: Optional[str] = None
    timeout: float | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.script_steps:
            raise ValueError(f"Job '{self.name}' has no script steps")
        # own read-only copy per job
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    @property
    def steps(self) -> Tuple[Step, ...]:
        # setup ("before") steps always precede script steps
        return self.setup_steps + self.script_steps


@dataclass(frozen=True)
class ResolvedEnvironment:
    variables: Mapping[str, str]
    working_directory: str
    shell: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))


@dataclass(frozen=True)
class StepResult:
    step: Step
    status: Status
    exit_code: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration: float = 0.0
    reason: FailureReason | None = None

    @classmethod
    def skipped(cls, step: Step) -> StepResult:
        return cls(step=step, status=Status.SKIPPED)

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS


@dataclass(frozen=True)
class JobResult:
    """
    Outcome of one job. `steps` has one entry per declared step; steps that
    never ran after a failure or cancellation are `skipped`.
    """
    job: JobDefinition
    status: Status
    steps: Tuple[StepResult, ...] = ()
    reason: FailureReason | None = None
    message: str = ""
    duration: float = 0.0

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def ok(self) -> bool:
        return self.status == Status.SUCCESS

    @property
    def failed_step(self) -> StepResult | None:
        for r in self.steps:
            if r.status not in (Status.SUCCESS, Status.SKIPPED):
                return r
        return None

    @classmethod
    def not_run(
        cls,
        job: JobDefinition,
        status: Status,
        reason: FailureReason,
        message: str = "",
    ) -> JobResult:
        return cls(
            job=job,
            status=status,
            steps=tuple(StepResult.skipped(s) for s in job.steps),
            reason=reason,
            message=message,
        )


@dataclass(frozen=True)
class MatrixResult:
    """Terminal artifact of a run. Jobs are kept in declaration order."""
    jobs: Tuple[JobResult, ...]

    @property
    def ok(self) -> bool:
        return all(j.ok for j in self.jobs)

    @property
    def status(self) -> Status:
        if self.ok:
            return Status.SUCCESS
        if any(j.status == Status.CANCELLED for j in self.jobs):
            return Status.CANCELLED
        return Status.FAILED

    @property
    def exit_code(self) -> int:
        return {Status.SUCCESS: 0, Status.CANCELLED: 130}.get(self.status, 1)

    def by_name(self) -> Dict[str, JobResult]:
        return {j.name: j for j in self.jobs}

    def counts(self) -> Dict[Status, int]:
        out: Dict[Status, int] = {}
        for j in self.jobs:
            out[j.status] = out.get(j.status, 0) + 1
        return out
