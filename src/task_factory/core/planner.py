"""Planner invocation: asking the agent for one new task when the queue is empty."""

import logging
from dataclasses import dataclass, field
from pathlib import Path

from task_factory.core.agents import AgentProvider, open_run_log
from task_factory.core.context import OrchestratorContext
from task_factory.core.personas import load_persona
from task_factory.core.tasks import task_files
from task_factory.core.worktrees import ABSORB, reconcile_workspace

logger = logging.getLogger(__name__)

PLANNER_AGENT = "planner"
PLANNER_TOOLS = "Read,Write,Edit,Glob,Grep,Bash"

DEFAULT_PLANNER_PROMPT = """\
No task in tasks/ is ready to run.

Create exactly one new task file in tasks/ for the next piece of work. Name it
YYYY-MM-DD-slug.md using today's date, give it a header with `status: backlog`
and end it with a `## Done` section of checkable conditions. Do not commit; the
runner commits your work."""


@dataclass
class PlanOutcome:
    ok: bool
    created: str | None = None
    rejected: list[str] = field(default_factory=list)


def plan(ctx: OrchestratorContext, provider: AgentProvider) -> PlanOutcome:
    """Run the planner once and keep at most one newly created task.

    New tasks are found by diffing tasks/ before and after the invocation.
    Extra files beyond the first (in name order) are deleted.
    """
    before = task_files(ctx.tasks_dir)
    persona = None
    if (ctx.agents_dir / f"{PLANNER_AGENT}.md").exists():
        persona = load_persona(ctx.agents_dir, PLANNER_AGENT)

    logger.info("planning: no runnable task")
    with open_run_log(ctx.run_log_path, PLANNER_AGENT) as run_log:
        result = provider.invoke(
            DEFAULT_PLANNER_PROMPT,
            PLANNER_TOOLS,
            persona,
            cwd=ctx.root,
            run_log=run_log,
        )

    new = sorted(task_files(ctx.tasks_dir) - before)
    rejected = new[1:]
    for name in rejected:
        (ctx.tasks_dir / name).unlink()
        logger.warning("planner created more than one task; removed %s", name)

    if not result.ok:
        logger.error("planner failed")
        return PlanOutcome(ok=False, rejected=rejected)

    created = Path(new[0]).stem if new else None
    message = f"New Task: {created}" if created else "Plan"
    reconcile_workspace(ctx.root, ABSORB, message=message)
    if created:
        logger.info("planner created %s", created)
    else:
        logger.info("planner created no task")
    return PlanOutcome(ok=True, created=created, rejected=rejected)
