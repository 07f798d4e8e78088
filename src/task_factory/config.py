"""Configuration loading from config.json and environment variables."""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    root: Path = field(default_factory=lambda: Path.cwd())
    source_repo: Path | None = None
    default_branch: str | None = None
    worktrees_dir: Path | None = None
    provider: str | None = None
    timeout_seconds: float | None = None
    heartbeat_seconds: float = 15.0
    kill_grace_seconds: float = 5.0
    claude_model: str = "claude-haiku-4-5-20251001"
    claude_fallback_models: list[str] = field(default_factory=list)
    codex_model: str = "gpt-5.2-codex"
    codex_fallback_models: list[str] = field(default_factory=lambda: ["gpt-5-codex", "o3"])
    poll_interval: float = 2.0
    poll_attempts: int = 3
    write_fix_tasks: bool = True

    @classmethod
    def from_file(cls, root: Path) -> "Config":
        """Defaults plus whatever the installer wrote to root/config.json."""
        config = cls(root=root)
        path = root / "config.json"
        if not path.exists():
            return config
        data = json.loads(path.read_text())

        if branch := data.get("default_branch"):
            config.default_branch = branch

        if worktrees := data.get("project_worktrees"):
            config.worktrees_dir = Path(worktrees)

        if provider := data.get("provider"):
            config.provider = provider

        if source := data.get("source_repo"):
            config.source_repo = Path(source)

        return config

    @classmethod
    def from_env(cls, root: str | Path | None = None) -> "Config":
        if root is None:
            root = os.environ.get("FACTORY_ROOT") or Path.cwd()
        config = cls.from_file(Path(root).resolve())

        if source := os.environ.get("FACTORY_SOURCE_REPO"):
            config.source_repo = Path(source)

        if branch := os.environ.get("FACTORY_DEFAULT_BRANCH"):
            config.default_branch = branch

        if worktrees := os.environ.get("FACTORY_WORKTREES"):
            config.worktrees_dir = Path(worktrees)

        if provider := os.environ.get("FACTORY_PROVIDER"):
            config.provider = provider

        if timeout := os.environ.get("FACTORY_TIMEOUT_SEC"):
            config.timeout_seconds = float(timeout) or None

        if heartbeat := os.environ.get("FACTORY_HEARTBEAT_SEC"):
            config.heartbeat_seconds = float(heartbeat)

        if grace := os.environ.get("FACTORY_KILL_GRACE_SEC"):
            config.kill_grace_seconds = float(grace)

        if model := os.environ.get("FACTORY_CLAUDE_MODEL", "").strip():
            config.claude_model = model

        if "FACTORY_CLAUDE_MODEL_FALLBACKS" in os.environ:
            config.claude_fallback_models = _split_list(os.environ["FACTORY_CLAUDE_MODEL_FALLBACKS"])

        if model := os.environ.get("FACTORY_CODEX_MODEL", "").strip():
            config.codex_model = model

        if "FACTORY_CODEX_MODEL_FALLBACKS" in os.environ:
            config.codex_fallback_models = _split_list(os.environ["FACTORY_CODEX_MODEL_FALLBACKS"])

        if interval := os.environ.get("FACTORY_POLL_INTERVAL_SEC"):
            config.poll_interval = float(interval)

        if attempts := os.environ.get("FACTORY_POLL_ATTEMPTS"):
            config.poll_attempts = int(attempts)

        if fix := os.environ.get("FACTORY_FIX_TASKS"):
            config.write_fix_tasks = _is_truthy(fix)

        return config


def get_config(root: str | Path | None = None) -> Config:
    return Config.from_env(root)
