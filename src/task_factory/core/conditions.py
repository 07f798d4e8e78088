"""Completion conditions: parsing stored expressions and evaluating them.

A condition is stored as ``name("arg", ...)`` or one of the bare tokens
``always`` / ``never``. Parsing produces one of the frozen dataclasses below;
evaluation is a pure function of the condition and a root directory (plus the
factory instruction document for the section checks).
"""

import ast
import logging
import os
import re
import signal
import subprocess
from dataclasses import dataclass
from pathlib import Path

from task_factory.store.models import ConditionResult

logger = logging.getLogger(__name__)

DATE_PLACEHOLDER = "YYYY-MM-DD"
DATE_GLOB = "[0-9][0-9][0-9][0-9]-[0-9][0-9]-[0-9][0-9]"
RECURRING_TOKENS = ("always", "never")

_CALL_RE = re.compile(r"^(\w+)\((.*)\)$", re.DOTALL)
_DETAIL_LIMIT = 2000


class ConditionParseError(ValueError):
    """Raised for an expression outside the condition grammar."""


@dataclass(frozen=True)
class FileExists:
    path: str


@dataclass(frozen=True)
class FileAbsent:
    path: str


@dataclass(frozen=True)
class FileContains:
    path: str
    text: str


@dataclass(frozen=True)
class FileMissingText:
    path: str
    text: str


@dataclass(frozen=True)
class Command:
    expr: str


@dataclass(frozen=True)
class SectionExists:
    text: str


@dataclass(frozen=True)
class NoSection:
    text: str


@dataclass(frozen=True)
class Recurring:
    """Never passes; marks an item that is not meant to finish."""

    token: str = "always"


Condition = (
    FileExists | FileAbsent | FileContains | FileMissingText
    | Command | SectionExists | NoSection | Recurring
)

_SIGNATURES = {
    "file_exists": FileExists,
    "file_absent": FileAbsent,
    "file_contains": FileContains,
    "file_missing_text": FileMissingText,
    "command": Command,
    "section_exists": SectionExists,
    "no_section": NoSection,
}

_ARITY = {
    FileExists: 1,
    FileAbsent: 1,
    FileContains: 2,
    FileMissingText: 2,
    Command: 1,
    SectionExists: 1,
    NoSection: 1,
}


def _parse_args(raw: str) -> list[str]:
    if not raw.strip():
        return []
    try:
        node = ast.parse(f"[{raw}]", mode="eval").body
    except SyntaxError as e:
        raise ConditionParseError(f"bad arguments: {raw}") from e
    if not isinstance(node, ast.List):
        raise ConditionParseError(f"bad arguments: {raw}")
    args = []
    for elt in node.elts:
        if not (isinstance(elt, ast.Constant) and isinstance(elt.value, str)):
            raise ConditionParseError(f"arguments must be string literals: {raw}")
        args.append(elt.value)
    return args


def parse_condition(expr: str) -> Condition:
    """Parse a stored expression. Raises ConditionParseError if unrecognized."""
    text = expr.strip()
    if text in RECURRING_TOKENS:
        return Recurring(text)
    m = _CALL_RE.match(text)
    if not m:
        raise ConditionParseError(f"unrecognized condition: {expr}")
    name, raw = m.group(1), m.group(2)
    cls = _SIGNATURES.get(name)
    if cls is None:
        raise ConditionParseError(f"unknown check: {name}")
    args = _parse_args(raw)
    if len(args) != _ARITY[cls]:
        raise ConditionParseError(
            f"{name} takes {_ARITY[cls]} argument(s), got {len(args)}: {expr}"
        )
    return cls(*args)


def expand_pattern(pattern: str) -> str:
    return pattern.replace(DATE_PLACEHOLDER, DATE_GLOB)


def _path_matches(root: Path, pattern: str) -> bool:
    pattern = expand_pattern(pattern)
    if any(ch in pattern for ch in "*?[]"):
        return any(root.glob(pattern))
    return (root / pattern).exists()


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return None


def _run_command(expr: str, root: Path, timeout: float | None = None) -> tuple[bool, str]:
    proc = subprocess.Popen(
        expr,
        shell=True,
        cwd=root,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        text=True,
        start_new_session=True,
    )
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        # kill the whole group so a backgrounded child cannot keep the pipe open
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        proc.communicate()
        logger.warning("command timed out after %gs: %s", timeout, expr)
        return False, f"timed out after {timeout:g}s"
    output = output.strip()
    detail = f"exit {proc.returncode}"
    if output:
        detail += f": {output[-_DETAIL_LIMIT:]}"
    return proc.returncode == 0, detail


def evaluate(
    condition: Condition,
    root: Path,
    instructions: Path | None = None,
    expression: str | None = None,
    timeout: float | None = None,
) -> ConditionResult:
    """Evaluate one parsed condition against root.

    timeout bounds how long a command check may run; an overrun fails the check.
    """
    root = Path(root)
    expression = expression if expression is not None else str(condition)
    detail = ""

    if isinstance(condition, FileExists):
        passed = _path_matches(root, condition.path)
    elif isinstance(condition, FileAbsent):
        passed = not _path_matches(root, condition.path)
    elif isinstance(condition, FileContains):
        content = _read_text(root / condition.path)
        passed = content is not None and condition.text in content
    elif isinstance(condition, FileMissingText):
        content = _read_text(root / condition.path)
        passed = content is None or condition.text not in content
    elif isinstance(condition, Command):
        passed, detail = _run_command(condition.expr, root, timeout)
    elif isinstance(condition, (SectionExists, NoSection)):
        content = _read_text(instructions) if instructions else None
        found = content is not None and condition.text in content
        passed = found if isinstance(condition, SectionExists) else not found
    elif isinstance(condition, Recurring):
        passed = False
        detail = "recurring"
    else:
        raise TypeError(f"not a condition: {condition!r}")

    return ConditionResult(expression=expression, passed=passed, detail=detail)


def check_one(
    expr: str, root: Path, instructions: Path | None = None, timeout: float | None = None
) -> ConditionResult:
    """Parse and evaluate; unparseable expressions fail closed with one warning."""
    try:
        condition = parse_condition(expr)
    except ConditionParseError as e:
        logger.warning("%s", e)
        return ConditionResult(expression=expr, passed=False, detail=str(e))
    return evaluate(condition, root, instructions, expression=expr, timeout=timeout)


def check(
    expr: str, root: Path, instructions: Path | None = None, timeout: float | None = None
) -> bool:
    return check_one(expr, root, instructions, timeout).passed


def check_done(
    done: list[str], root: Path, instructions: Path | None = None, timeout: float | None = None
) -> bool:
    """All conditions must pass. An empty list never passes."""
    if not done:
        return False
    return all(check(expr, root, instructions, timeout) for expr in done)


def check_done_details(
    done: list[str], root: Path, instructions: Path | None = None, timeout: float | None = None
) -> tuple[bool, list[ConditionResult]]:
    """Like check_done, but evaluates every condition and returns each result."""
    results = [check_one(expr, root, instructions, timeout) for expr in done]
    return bool(results) and all(r.passed for r in results), results


def done_kind(done: list[str]) -> str:
    """Classify a Done list as "unspecified", "recurring" or "conditions"."""
    if not done:
        return "unspecified"
    if any(expr.strip() in RECURRING_TOKENS for expr in done):
        return "recurring"
    return "conditions"
