# errors.py
from __future__ import annotations

from dataclasses import dataclass


class MatrixCIError(Exception):
    """Base class for matrixci errors."""


@dataclass
class MalformedConfig(MatrixCIError):
    """
    The matrix document violates the required shape.

    Raised before any job starts; `entry` names the offending job entry
    (e.g. "jobs[1]") or is None for document-level problems.
    """
    source: str
    entry: str | None
    message: str

    def __str__(self) -> str:
        where = f"{self.source}: {self.entry}" if self.entry else self.source
        return f"malformed config ({where}): {self.message}"


@dataclass
class UnresolvedVariable(MatrixCIError):
    job: str
    name: str

    def __str__(self) -> str:
        return f"[{self.job}] variable '{self.name}' is not defined and has no default"


@dataclass
class StepFailure(MatrixCIError):
    job: str
    step: str
    cmd: str
    exit_code: int

    def __str__(self) -> str:
        return f"[{self.job}] step '{self.step}' failed (exit={self.exit_code}): {self.cmd}"
