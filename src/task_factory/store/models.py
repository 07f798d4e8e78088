"""Data models for the task factory."""

import re
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_TOOLS = "Read,Write,Edit,Bash,Glob,Grep"

BACKLOG = "backlog"
ACTIVE = "active"
SUSPENDED = "suspended"
COMPLETED = "completed"
STOPPED = "stopped"

STATUSES = (BACKLOG, ACTIVE, SUSPENDED, COMPLETED, STOPPED)
TERMINAL_STATUSES = (COMPLETED, STOPPED)
# Statuses the scheduler may pick up; "" means the header has no status yet.
SCHEDULABLE_STATUSES = ("", BACKLOG)

TRANSITIONS = {
    "": {ACTIVE},
    BACKLOG: {ACTIVE},
    ACTIVE: {COMPLETED, SUSPENDED, STOPPED},
}

_NAME_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2}|\d+)-")


def strip_name_prefix(stem: str) -> str:
    """Drop a leading date or counter prefix: 2025-01-01-add-readme -> add-readme."""
    return _NAME_PREFIX.sub("", stem)


@dataclass
class Task:
    name: str
    path: Path
    meta: dict[str, str] = field(default_factory=dict)
    prompt: str = ""
    sections: dict[str, str] = field(default_factory=dict)
    done: list[str] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        return strip_name_prefix(self.name).replace("-", " ")

    @property
    def status(self) -> str:
        return self.meta.get("status", "")

    @property
    def stop_reason(self) -> str:
        return self.meta.get("stop_reason", "")

    @property
    def parent(self) -> str:
        return self.meta.get("parent", "")

    @property
    def previous(self) -> str:
        return self.meta.get("previous", "")

    @property
    def agent(self) -> str:
        return self.meta.get("agent") or self.meta.get("handler", "")

    @property
    def tools(self) -> str:
        return self.meta.get("tools") or DEFAULT_TOOLS

    @property
    def pid(self) -> int | None:
        try:
            return int(self.meta.get("pid", ""))
        except ValueError:
            return None

    @property
    def session(self) -> str:
        return self.meta.get("session", "")

    @property
    def branch(self) -> str:
        return self.meta.get("branch", "")

    @property
    def commit(self) -> str:
        return self.meta.get("commit", "")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_project_task(self) -> bool:
        return self.parent.startswith("projects/")


@dataclass
class Persona:
    name: str
    prompt: str = ""
    tools: str | None = None


@dataclass
class ConditionResult:
    expression: str
    passed: bool
    detail: str = ""


@dataclass
class AgentResult:
    ok: bool
    session_id: str | None = None
    exit_code: int | None = None
    timed_out: bool = False
    interrupted: bool = False
    model: str | None = None
    result: dict | None = None
    stderr: list[str] = field(default_factory=list)
    garbage: list[str] = field(default_factory=list)
