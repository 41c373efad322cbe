from .errors import MalformedConfig, MatrixCIError, StepFailure, UnresolvedVariable
from .executor import run_matrix
from .model import FailureReason, JobDefinition, JobResult, MatrixResult, ResolvedEnvironment, Status, Step, StepResult
from .parser import load_matrix, parse_matrix
from .resolver import resolve
from .runner import CancelToken, run_job, run_step

__all__ = [
    "MalformedConfig",
    "MatrixCIError",
    "StepFailure",
    "UnresolvedVariable",
    "run_matrix",
    "FailureReason",
    "JobDefinition",
    "JobResult",
    "MatrixResult",
    "ResolvedEnvironment",
    "Status",
    "Step",
    "StepResult",
    "load_matrix",
    "parse_matrix",
    "resolve",
    "CancelToken",
    "run_job",
    "run_step",
]
