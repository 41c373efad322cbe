# parser.py
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, PositiveFloat, ValidationError, field_validator

from .errors import MalformedConfig
from .model import SCRIPT_PHASE, SETUP_PHASES, JobDefinition, Step

# ---------------------------------------------------------------------
# Accepted shapes
# ---------------------------------------------------------------------
#   matrix: {include: [entry, ...]}   (travis style, top-level keys are defaults)
#   jobs:   {include: [entry, ...]}
#   jobs:   [entry, ...]
#   [entry, ...]
#   entry                             (single job, no matrix)
# ---------------------------------------------------------------------

KNOWN_OS = ("linux", "osx", "windows", "freebsd")
DEFAULT_OS = "linux"

JOB_KEYS = (
    "language",
    "runtime",
    "os",
    "env",
    *SETUP_PHASES,
    SCRIPT_PHASE,
    "timeout",
    "shell",
    "working_directory",
)

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class CommandModel(BaseModel):
    model_config = ConfigDict(extra="forbid")

    run: str
    name: Optional[str] = None
    timeout: Optional[PositiveFloat] = None

    @field_validator("run")
    @classmethod
    def _non_empty(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must be a non-empty string")
        return value


def _coerce_commands(value: object) -> list:
    if value is None:
        return []
    if isinstance(value, (str, dict)):
        value = [value]
    if not isinstance(value, list):
        raise ValueError("must be a command or a list of commands")
    out = []
    for item in value:
        if isinstance(item, str):
            out.append({"run": item})
        elif isinstance(item, dict):
            out.append(item)
        else:
            raise ValueError(f"commands must be strings, got {type(item).__name__}")
    return out


class EntryModel(BaseModel):
    """
    Typed core of one matrix entry. Unknown keys are allowed and end up in
    JobDefinition.extra untouched.
    """
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    language: Optional[str] = None
    runtime: Optional[str] = None
    os: Any = None
    env: Any = None
    before_install: List[CommandModel] = []
    install: List[CommandModel] = []
    before_script: List[CommandModel] = []
    script: List[CommandModel] = []
    timeout: Optional[PositiveFloat] = None
    shell: Optional[str] = None
    working_directory: Optional[str] = None

    @field_validator("before_install", "install", "before_script", "script", mode="before")
    @classmethod
    def _commands(cls, value: object) -> list:
        return _coerce_commands(value)


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        msg = err.get("msg", "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "; ".join(parts)


# ---------------------------------------------------------------------
# env normalization
# ---------------------------------------------------------------------

def _env_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    return str(value)


# one word: unquoted run, '...' or "..." pieces, no unquoted whitespace
_ENV_WORD = re.compile(r"""(?:[^\s'"]+|'[^']*'|"[^"]*")+""")


def _split_assignments(text: str) -> List[Tuple[str, str]]:
    """
    Split a travis-style line ("FOO=1 BAR='a b'") into assignments.

    Words are separated by unquoted whitespace; quotes stay on the value so
    the resolver can tell literal from expanded values.
    """
    text = text.strip()
    words: List[str] = []
    pos = 0
    while pos < len(text):
        m = _ENV_WORD.match(text, pos)
        if m is None:
            raise ValueError(f"unbalanced quotes in env assignment {text!r}")
        words.append(m.group())
        pos = m.end()
        while pos < len(text) and text[pos].isspace():
            pos += 1
    if not words:
        raise ValueError("empty env assignment (expected NAME=value)")

    out = []
    for word in words:
        name, sep, value = word.partition("=")
        if not sep or not _ENV_NAME.match(name):
            raise ValueError(f"invalid env assignment {word!r} in {text!r} (expected NAME=value)")
        out.append((name, value))
    return out


def normalize_env(raw: Any) -> Tuple[Tuple[str, str], ...]:
    """
    Accepts a NAME=value string, a list of them, a mapping, or the travis
    {global: [...], jobs: [...]} form (global first). Order is preserved.
    """
    if raw is None:
        return ()
    if isinstance(raw, str):
        return tuple(_split_assignments(raw))
    if isinstance(raw, dict):
        if set(raw) and set(raw) <= {"global", "jobs", "matrix"}:
            out: List[Tuple[str, str]] = []
            for key in ("global", "jobs", "matrix"):
                out.extend(normalize_env(raw.get(key)))
            return tuple(out)
        out = []
        for name, value in raw.items():
            if not isinstance(name, str) or not _ENV_NAME.match(name):
                raise ValueError(f"invalid env variable name {name!r}")
            if isinstance(value, (list, dict)):
                raise ValueError(f"env variable {name!r} must have a scalar value")
            out.append((name, _env_value(value)))
        return tuple(out)
    if isinstance(raw, list):
        out = []
        for item in raw:
            if isinstance(item, str):
                out.extend(_split_assignments(item))
            elif isinstance(item, dict):
                out.extend(normalize_env(item))
            else:
                raise ValueError(f"invalid env entry {item!r}")
        return tuple(out)
    raise ValueError(f"env must be a list or mapping, got {type(raw).__name__}")


# ---------------------------------------------------------------------
# Document -> entries
# ---------------------------------------------------------------------

def _entries(data: Any, source: str) -> List[Tuple[str, Dict[str, Any]]]:
    """Return (label, raw entry) pairs in declaration order."""
    if isinstance(data, list):
        return [(f"jobs[{i}]", e) for i, e in enumerate(data)]

    if not isinstance(data, dict):
        raise MalformedConfig(source, None, "document must be a mapping or a list of jobs")

    for key in ("matrix", "jobs"):
        block = data.get(key)
        if block is None:
            continue
        defaults = {k: v for k, v in data.items() if k in JOB_KEYS}
        if isinstance(block, list):
            include = block
        elif isinstance(block, dict) and "include" in block:
            include = block["include"]
        else:
            raise MalformedConfig(source, key, f"'{key}' must be a list or contain 'include'")
        if not isinstance(include, list):
            raise MalformedConfig(source, f"{key}.include", "must be a list of jobs")
        out = []
        for i, entry in enumerate(include):
            label = f"{key}.include[{i}]" if isinstance(block, dict) else f"{key}[{i}]"
            if isinstance(entry, dict):
                entry = {**defaults, **entry}
            out.append((label, entry))
        return out

    return [("<root>", data)]


def _steps(commands: Iterable[CommandModel], phase: str) -> Tuple[Step, ...]:
    return tuple(
        Step(name=c.name or c.run, run=c.run, phase=phase, timeout=c.timeout)
        for c in commands
    )


def _os_values(raw: Any) -> List[str]:
    if raw is None:
        return [DEFAULT_OS]
    values = raw if isinstance(raw, list) else [raw]
    if not values:
        raise ValueError("os list must not be empty")
    for v in values:
        if v not in KNOWN_OS:
            raise ValueError(f"unknown os {v!r} (expected one of {', '.join(KNOWN_OS)})")
    return list(values)


def _build_jobs(label: str, raw: Any, source: str, start: int) -> List[JobDefinition]:
    if not isinstance(raw, dict):
        raise MalformedConfig(source, label, "job entry must be a mapping")

    try:
        entry = EntryModel.model_validate(raw)
    except ValidationError as e:
        raise MalformedConfig(source, label, _format_validation_error(e)) from e

    if entry.language and entry.runtime and entry.language != entry.runtime:
        raise MalformedConfig(source, label, "'language' and 'runtime' disagree")
    runtime = entry.language or entry.runtime
    if not runtime:
        raise MalformedConfig(source, label, "missing required selector 'language' (or 'runtime')")
    if not entry.script:
        raise MalformedConfig(source, label, "'script' must be a non-empty list of commands")

    try:
        os_names = _os_values(entry.os)
        env = normalize_env(entry.env)
    except ValueError as e:
        raise MalformedConfig(source, label, str(e)) from e

    setup: Tuple[Step, ...] = ()
    for phase in SETUP_PHASES:
        setup += _steps(getattr(entry, phase), phase)
    script = _steps(entry.script, SCRIPT_PHASE)
    extra = dict(entry.model_extra or {})

    jobs = []
    for offset, os_name in enumerate(os_names):
        number = start + offset
        name = entry.name or f"{runtime}-{os_name}-{number}"
        if entry.name and len(os_names) > 1:
            name = f"{entry.name}-{os_name}"
        jobs.append(
            JobDefinition(
                name=name,
                number=number,
                runtime=runtime,
                os=os_name,
                script_steps=script,
                setup_steps=setup,
                env=env,
                working_directory=entry.working_directory,
                shell=entry.shell,
                timeout=entry.timeout,
                extra=extra,
            )
        )
    return jobs


# ---------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------

def parse_document(data: Any, *, source: str = "<document>") -> List[JobDefinition]:
    jobs: List[JobDefinition] = []
    for label, raw in _entries(data, source):
        jobs.extend(_build_jobs(label, raw, source, start=len(jobs) + 1))

    if not jobs:
        raise MalformedConfig(source, None, "no jobs declared")

    seen: Dict[str, int] = {}
    for j in jobs:
        if j.name in seen:
            raise MalformedConfig(source, f"job '{j.name}'", "duplicate job name")
        seen[j.name] = j.number
    return jobs


def parse_matrix(text: str, *, source: str = "<string>") -> List[JobDefinition]:
    """Parse matrix YAML text into job definitions, in declaration order."""
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedConfig(source, None, f"invalid YAML: {e}") from e
    if data is None:
        raise MalformedConfig(source, None, "document is empty")
    return parse_document(data, source=source)


def load_matrix(path: str | Path) -> List[JobDefinition]:
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise MalformedConfig(str(p), None, f"cannot read config file: {e}") from e
    return parse_matrix(text, source=str(p))


def select_jobs(jobs: List[JobDefinition], only: Optional[Iterable[str]] = None) -> List[JobDefinition]:
    """Keep only the named jobs, preserving declaration order."""
    if not only:
        return list(jobs)
    only_set = set(only)
    known = {j.name for j in jobs}
    missing = sorted(only_set - known)
    if missing:
        raise MalformedConfig(
            "<selection>",
            None,
            f"unknown job(s) requested: {', '.join(missing)} (known: {', '.join(sorted(known))})",
        )
    return [j for j in jobs if j.name in only_set]
