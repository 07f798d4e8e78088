"""Explicit orchestrator state handed to every component."""

from dataclasses import dataclass, field
from pathlib import Path

from task_factory.config import Config
from task_factory.core.lock import RunLock
from task_factory.integrations.git import detect_default_branch


@dataclass
class OrchestratorContext:
    root: Path
    source_repo: Path
    default_branch: str
    worktrees_dir: Path
    config: Config = field(default_factory=Config)
    lock: RunLock | None = None

    @classmethod
    def from_config(cls, config: Config) -> "OrchestratorContext":
        root = Path(config.root).resolve()
        source_repo = Path(config.source_repo or root.parent).resolve()
        return cls(
            root=root,
            source_repo=source_repo,
            default_branch=config.default_branch or detect_default_branch(source_repo),
            worktrees_dir=Path(config.worktrees_dir or root / "worktrees"),
            config=config,
            lock=RunLock(root / "state" / "factory.pid"),
        )

    @property
    def tasks_dir(self) -> Path:
        return self.root / "tasks"

    @property
    def agents_dir(self) -> Path:
        return self.root / "agents"

    @property
    def state_dir(self) -> Path:
        return self.root / "state"

    @property
    def run_log_path(self) -> Path:
        return self.state_dir / "last_run.jsonl"

    @property
    def instructions_path(self) -> Path:
        return self.root / "CLAUDE.md"

    @property
    def epilogue_path(self) -> Path:
        return self.root / "EPILOGUE.md"
