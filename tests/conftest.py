"""Shared fixtures: a source repo with a factory repo nested inside it."""

import os
import subprocess
from pathlib import Path

import pytest

from task_factory.config import Config
from task_factory.core.agents import AgentProvider
from task_factory.core.context import OrchestratorContext


GIT_ENV = {
    "GIT_AUTHOR_NAME": "Test",
    "GIT_AUTHOR_EMAIL": "test@test.com",
    "GIT_COMMITTER_NAME": "Test",
    "GIT_COMMITTER_EMAIL": "test@test.com",
    "GIT_CONFIG_GLOBAL": os.devnull,
    "GIT_CONFIG_NOSYSTEM": "1",
}


def git(cwd, *args) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True, check=True)
    return result.stdout.strip()


def make_script(directory: Path, body: str, name: str = "agent") -> Path:
    """Write an executable shell script standing in for an agent CLI."""
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


class ScriptProvider(AgentProvider):
    """Runs a shell script as the agent: argv is (model, tools), the prompt is ignored."""

    name = "script"
    retryable_patterns = ("model_not_found",)

    def __init__(self, script: Path, **kwargs):
        super().__init__(str(script), **kwargs)
        self.commands: list[list[str]] = []
        self.events: list[dict] = []

    def build_command(self, prompt, allowed_tools, model):
        cmd = [self.cli_path, model or "-", allowed_tools]
        self.commands.append(cmd)
        return cmd

    def handle_event(self, event, state):
        self.events.append(event)
        if event.get("session_id"):
            state.session_id = event["session_id"]
        if event.get("type") == "result":
            state.result = event


def write_task_file(root: Path, name: str, header: dict | None = None, body: str = "") -> Path:
    """Write tasks/<name>.md with the given header fields and body."""
    lines = [f"{k}: {v}" for k, v in (header or {}).items()]
    path = root / "tasks" / f"{name}.md"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("---\n" + "\n".join(lines) + ("\n" if lines else "") + "---\n\n" + body)
    return path


@pytest.fixture(autouse=True)
def git_identity(monkeypatch):
    for key, value in GIT_ENV.items():
        monkeypatch.setenv(key, value)


@pytest.fixture
def source_repo(tmp_path):
    """A git repo on main with one commit."""
    repo = tmp_path / "source"
    repo.mkdir()
    git(repo, "init")
    git(repo, "checkout", "-b", "main")
    (repo / "app.py").write_text("print('hello')\n")
    git(repo, "add", ".")
    git(repo, "commit", "-m", "init")
    return repo


@pytest.fixture
def factory_root(source_repo):
    """A standalone factory repo at source/.factory, ignored by the source repo."""
    root = source_repo / ".factory"
    for d in ("tasks", "agents", "projects", "state"):
        (root / d).mkdir(parents=True)
    (root / ".gitignore").write_text("state/\nworktrees/\n")
    (root / "CLAUDE.md").write_text("# Factory\n\n## Agent rules\n\nDo the task.\n")
    with open(source_repo / ".git" / "info" / "exclude", "a") as f:
        f.write("\n/.factory/\n")
    git(root, "init")
    git(root, "checkout", "-b", "main")
    git(root, "add", "-A")
    git(root, "commit", "-m", "Bootstrap factory")
    return root


@pytest.fixture
def ctx(factory_root):
    config = Config(
        root=factory_root,
        heartbeat_seconds=60,
        poll_interval=0,
        poll_attempts=1,
        write_fix_tasks=False,
    )
    return OrchestratorContext.from_config(config)
