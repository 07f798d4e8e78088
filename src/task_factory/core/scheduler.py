"""Main loop: pick the next runnable task, run it, record the outcome."""

import logging
import os
import time
from pathlib import Path

from task_factory.core.agents import AgentProvider, format_result, open_run_log
from task_factory.core.conditions import check_done, check_done_details, done_kind
from task_factory.core.context import OrchestratorContext
from task_factory.core.lock import is_pid_alive
from task_factory.core.personas import load_persona, persona_name
from task_factory.core.planner import PLANNER_AGENT, plan
from task_factory.core.tasks import load_tasks, task_ref, transition_task, write_task
from task_factory.core.worktrees import (
    ABSORB,
    DISCARD,
    ensure_workspace,
    reconcile_workspace,
    workspace_dir,
)
from task_factory.integrations.git import (
    GitError,
    add,
    commit,
    get_current_branch,
    log_subjects,
    rev_parse_head,
)
from task_factory.store.models import (
    ACTIVE,
    COMPLETED,
    SCHEDULABLE_STATUSES,
    STOPPED,
    SUSPENDED,
    ConditionResult,
    Task,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_SUSPENDED = 2

FIXER_AGENT = "fixer"
FIXER_TOOLS = "Read,Write,Edit,Glob,Grep,Bash"
RUN_LOG_TAIL = 50


def build_prompt(ctx: OrchestratorContext, task: Task, workdir: Path) -> str:
    """Instruction text plus Context and Verify; Done becomes an acceptance checklist."""
    parts = [task.prompt]
    for section in ("context", "verify"):
        if section in task.sections:
            parts.append(f"## {section.title()}\n\n{task.sections[section]}")
    prompt = "\n\n".join(p for p in parts if p)

    if done_kind(task.done) == "conditions":
        checklist = "\n".join(f"- `{c}`" for c in task.done)
        prompt += (
            "\n\n## Acceptance Criteria\n\n"
            "Your work is verified by these exact conditions; file paths and names "
            f"must match precisely:\n\n{checklist}"
        )

    if task.is_project_task and ctx.epilogue_path.exists():
        epilogue = ctx.epilogue_path.read_text(encoding="utf-8")
        prompt += "\n\n" + epilogue.replace("{project_dir}", str(workdir))
    return prompt


def format_details(details: list[ConditionResult]) -> list[str]:
    return [f"{'✓' if r.passed else '✗'} {r.expression}" for r in details]


class Scheduler:
    """Runs tasks one at a time under the context's run lock."""

    def __init__(self, ctx: OrchestratorContext, provider: AgentProvider, sleep=time.sleep):
        self.ctx = ctx
        self.provider = provider
        self.sleep = sleep

    # ── selection ───────────────────────────────────────────────────────────

    def done_root(self, task: Task) -> Path | None:
        """Directory a task's Done conditions are checked in, None if it doesn't exist yet."""
        if task.is_project_task:
            wt_dir = workspace_dir(self.ctx, task.parent)
            return wt_dir if wt_dir.exists() else None
        return self.ctx.root

    def is_done(self, task: Task) -> bool:
        root = self.done_root(task)
        if root is None:
            return False
        return check_done(
            task.done, root, self.ctx.instructions_path, timeout=self.ctx.config.timeout_seconds
        )

    def next_runnable(self) -> Task | None:
        """First task, in file order, whose Done is false and whose previous is done.

        Each task's Done is evaluated at most once per call.
        """
        tasks = load_tasks(self.ctx.tasks_dir)
        by_name = {t.name: t for t in tasks}
        done_cache: dict[str, bool] = {}

        def done(t: Task) -> bool:
            if t.name not in done_cache:
                done_cache[t.name] = self.is_done(t)
            return done_cache[t.name]

        for task in tasks:
            if task.status not in SCHEDULABLE_STATUSES:
                continue
            if done(task):
                continue
            prev = task_ref(task.previous)
            if prev:
                dep = by_name.get(prev)
                if dep is None:
                    logger.warning("%s: previous task %s not found", task.name, prev)
                    continue
                if not done(dep):
                    continue
            return task
        return None

    def _await_runnable(self) -> Task | None:
        for _ in range(self.ctx.config.poll_attempts):
            self.sleep(self.ctx.config.poll_interval)
            task = self.next_runnable()
            if task is not None:
                return task
        return None

    def report_orphans(self) -> list[Task]:
        """Active tasks whose recorded runner is no longer alive."""
        orphans = [
            t for t in load_tasks(self.ctx.tasks_dir)
            if t.status == ACTIVE and not is_pid_alive(t.pid)
        ]
        for t in orphans:
            logger.warning(
                "%s is active but its runner (pid %s) is gone; leaving it for review",
                t.name, t.pid,
            )
        return orphans

    # ── main loop ───────────────────────────────────────────────────────────

    def run(self, max_tasks: int | None = None) -> int:
        """Process tasks until the queue drains or a task does not complete."""
        lock = self.ctx.lock
        if lock is not None:
            if not lock.acquire():
                return EXIT_OK
            lock.install_signal_handlers()
        try:
            return self._loop(max_tasks)
        except GitError as e:
            logger.error("%s", e)
            return EXIT_FAILED
        finally:
            if lock is not None:
                lock.release()

    def _loop(self, max_tasks: int | None) -> int:
        self.report_orphans()
        ran = 0
        just_planned = False
        while max_tasks is None or ran < max_tasks:
            task = self.next_runnable()
            if task is None:
                if just_planned:
                    task = self._await_runnable()
                    if task is None:
                        logger.info("stopping: no tasks after planning")
                        return EXIT_OK
                else:
                    outcome = plan(self.ctx, self.provider)
                    if not outcome.ok:
                        logger.error("stopping: planner failed")
                        return EXIT_FAILED
                    just_planned = True
                    continue
            just_planned = False
            status = self.run_task(task)
            ran += 1
            if status == STOPPED:
                return EXIT_FAILED
            if status == SUSPENDED:
                return EXIT_SUSPENDED
        return EXIT_OK

    # ── one task ────────────────────────────────────────────────────────────

    def _commit_task(self, task: Task, message: str, stage_all: bool = False) -> None:
        """Commit the task file (and optionally everything else) in the factory repo."""
        self._commit_paths(message, task.path, stage_all=stage_all)

    def _commit_paths(self, message: str, *paths: Path, stage_all: bool = False) -> None:
        if stage_all:
            add(self.ctx.root)
        add(self.ctx.root, *(p.relative_to(self.ctx.root) for p in paths))
        commit(self.ctx.root, message)

    def run_task(self, task: Task) -> str:
        """Run one task end to end and return its final status."""
        name = task.name
        is_project = task.is_project_task
        workdir = ensure_workspace(self.ctx, task.parent) if is_project else self.ctx.root

        logger.info("task started: %s", name)
        kind = done_kind(task.done)
        if kind != "conditions":
            logger.info("  %s has %s Done conditions; it cannot complete on its own", name, kind)

        transition_task(task, ACTIVE, pid=os.getpid(), branch=get_current_branch(workdir))
        self._commit_task(task, f"Start Task: {name}")

        prompt = build_prompt(self.ctx, task, workdir)
        persona = None
        if task.agent:
            persona = load_persona(self.ctx.agents_dir, task.agent)
            if persona:
                logger.info("using agent: %s", persona.name)

        head_before = rev_parse_head(workdir)
        try:
            with open_run_log(self.ctx.run_log_path, name) as run_log:
                result = self.provider.invoke(
                    prompt, task.tools, persona, cwd=workdir, run_log=run_log
                )
        except SystemExit:
            reconcile_workspace(workdir, DISCARD)
            transition_task(task, STOPPED, stop_reason="failed")
            self._commit_task(task, f"Failed Task: {name}")
            logger.error("  ✗ runner exiting, task stopped")
            raise
        extra = {"session": result.session_id} if result.session_id else {}
        info = format_result(result.result)

        if not result.ok:
            reconcile_workspace(workdir, DISCARD)
            transition_task(task, STOPPED, stop_reason="failed", **extra)
            self._commit_task(task, f"Failed Task: {name}")
            logger.error("  ✗ task crashed %s", info)
            logger.info("  → log: %s", self.ctx.run_log_path)
            return STOPPED

        head_after = rev_parse_head(workdir)
        summary = log_subjects(workdir, head_before, head_after) if head_after != head_before else []
        if not summary:
            logger.info("  agent made no commits")

        passed, details = check_done_details(
            task.done, workdir, self.ctx.instructions_path, timeout=self.ctx.config.timeout_seconds
        )
        if is_project:
            reconcile_workspace(workdir, ABSORB, message=f"Task work: {name}")

        if passed:
            transition_task(task, COMPLETED, commit=rev_parse_head(workdir), **extra)
            self._commit_task(task, f"Complete Task: {name}", stage_all=not is_project)
            logger.info("  ✓ conditions: passed %s", info)
        else:
            transition_task(task, SUSPENDED, **extra)
            self._commit_task(task, f"Incomplete Task: {name}", stage_all=not is_project)
            logger.warning("  ✗ conditions: failed %s", info)
            for line in format_details(details):
                logger.warning("    %s", line)
            logger.info("  → log: %s", self.ctx.run_log_path)
            logger.info("  → task: %s", task.path.relative_to(self.ctx.root))

        for line in summary:
            logger.info("    %s", line)

        if not passed and self.ctx.config.write_fix_tasks:
            if persona_name(task.agent) not in (PLANNER_AGENT, FIXER_AGENT):
                self.write_fix_task(task, details)
        return COMPLETED if passed else SUSPENDED

    def write_fix_task(self, task: Task, details: list[ConditionResult]) -> Path:
        """Queue a fixer task describing why task fell short.

        Quoted material is indented rather than fenced so its own ``##`` headings
        are not read as sections of the fix task.
        """
        rel = task.path.relative_to(self.ctx.root)
        report_path = f"fixes/{task.name}.md"
        quoted = _indent(task.path.read_text(encoding="utf-8"))
        report = "\n".join(f"    {line}" for line in format_details(details)) or "    (no conditions)"
        body = (
            f"Diagnose why {rel} fell short and write your diagnosis to `{report_path}`.\n\n"
            f"## Context\n\nFailed task ({rel}):\n\n{quoted}\n\n"
            f"Condition results:\n\n{report}\n"
        )
        if self.ctx.run_log_path.exists():
            lines = self.ctx.run_log_path.read_text(encoding="utf-8").splitlines()
            tail = _indent("\n".join(lines[-RUN_LOG_TAIL:]))
            body += f"\nRun log (last {RUN_LOG_TAIL} lines):\n\n{tail}\n"
        body += f'\n## Done\n\n- `file_exists("{report_path}")`\n'
        path = write_task(
            self.ctx.tasks_dir,
            f"fix-{task.name}",
            body,
            agent=FIXER_AGENT,
            tools=FIXER_TOOLS,
            author="runner",
        )
        self._commit_paths(f"New Task: {path.stem}", path)
        logger.info("  → fix task: %s", path.stem)
        return path


def _indent(text: str) -> str:
    return "\n".join(f"    {line}" if line else "" for line in text.splitlines())
