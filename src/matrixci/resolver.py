# resolver.py
from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Dict, Mapping, Optional

from .errors import UnresolvedVariable
from .model import JobDefinition, ResolvedEnvironment

DEFAULT_SHELLS = {
    "linux": "bash",
    "osx": "bash",
    "windows": "bash",
    "freebsd": "sh",
}
FALLBACK_SHELL = "sh"

_NAME = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _closing_brace(value: str, start: int) -> int:
    """Index of the `}` closing a `${` opened before `start`, or -1."""
    depth = 1
    i = start
    while i < len(value):
        if value.startswith("${", i):
            depth += 1
            i += 2
            continue
        if value[i] == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return -1


def _substitute(value: str, bindings: Mapping[str, str]) -> str:
    out = []
    i = 0
    while i < len(value):
        if value[i] != "$":
            out.append(value[i])
            i += 1
            continue
        if value.startswith("$$", i):
            out.append("$")
            i += 2
            continue

        braced = value.startswith("${", i)
        m = _NAME.match(value, i + 2 if braced else i + 1)
        if m is None:
            out.append("$")
            i += 1
            continue
        name, end = m.group(), m.end()

        default = None
        if braced:
            if value.startswith(":-", end):
                close = _closing_brace(value, end + 2)
                if close < 0:
                    out.append("$")
                    i += 1
                    continue
                default = value[end + 2:close]
                end = close + 1
            elif value.startswith("}", end):
                end += 1
            else:
                out.append("$")
                i += 1
                continue

        if name in bindings:
            out.append(bindings[name])
        elif default is not None:
            out.append(expand(default, bindings))
        else:
            raise KeyError(name)
        i = end
    return "".join(out)


def expand(value: str, bindings: Mapping[str, str]) -> str:
    """
    Substitute $NAME / ${NAME} / ${NAME:-default} references.

    `$$` is a literal dollar sign. Defaults may nest (`${A:-${B}}`) and are
    only expanded when used. A value wrapped in single quotes is taken
    literally (quotes removed); double quotes are removed before expansion.
    Raises KeyError(name) for a reference with no binding and no default.
    """
    if len(value) >= 2 and value[0] == value[-1] == "'":
        return value[1:-1]
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return _substitute(value, bindings)


def builtin_variables(job: JobDefinition, build_dir: str) -> Dict[str, str]:
    return {
        "CI": "true",
        "MATRIXCI": "true",
        "MATRIXCI_JOB_NAME": job.name,
        "MATRIXCI_JOB_NUMBER": str(job.number),
        "MATRIXCI_OS_NAME": job.os,
        "MATRIXCI_LANGUAGE": job.runtime,
        "MATRIXCI_BUILD_DIR": build_dir,
    }


def resolve(
    job: JobDefinition,
    *,
    base_env: Optional[Mapping[str, str]] = None,
    workspace: str | Path = ".",
) -> ResolvedEnvironment:
    """
    Expand a job's env assignments left to right on top of `base_env` and
    pick its working directory and shell. Executes nothing.

    `base_env` is the external state (defaults to os.environ); the same job
    and the same base_env always resolve to the same environment.
    """
    base = dict(os.environ if base_env is None else base_env)
    root = Path(workspace).expanduser().resolve()

    variables: Dict[str, str] = dict(base)
    variables.update(builtin_variables(job, str(root)))

    for name, raw in job.env:
        try:
            variables[name] = expand(raw, variables)
        except KeyError as e:
            raise UnresolvedVariable(job=job.name, name=e.args[0]) from None

    if job.working_directory:
        try:
            wd = expand(job.working_directory, variables)
        except KeyError as e:
            raise UnresolvedVariable(job=job.name, name=e.args[0]) from None
        cwd = (root / Path(wd).expanduser()).resolve()
    else:
        cwd = root

    shell = job.shell or DEFAULT_SHELLS.get(job.os, FALLBACK_SHELL)
    return ResolvedEnvironment(variables=variables, working_directory=str(cwd), shell=shell)
