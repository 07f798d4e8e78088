"""CLI entry point for the task factory."""

import logging
import sys

import click

from task_factory.config import get_config
from task_factory.core import conditions as conditions_mod
from task_factory.core import providers as providers_mod
from task_factory.core import tasks as tasks_mod
from task_factory.core import worktrees as worktrees_mod
from task_factory.core.context import OrchestratorContext
from task_factory.core.scheduler import EXIT_FAILED, Scheduler
from task_factory.integrations.git import GitError

STATUS_ICONS = {
    "": "○",
    "backlog": "○",
    "active": "●",
    "suspended": "◐",
    "completed": "✓",
    "stopped": "✗",
}


def _get_context(ctx: click.Context, **overrides) -> OrchestratorContext:
    config = get_config(ctx.obj["root"])
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    try:
        return OrchestratorContext.from_config(config)
    except GitError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(EXIT_FAILED)


@click.group()
@click.option("--root", default=None, help="Factory directory (default: $FACTORY_ROOT or cwd)")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def main(ctx, root, verbose):
    """factory - run coding-agent tasks from a git-tracked queue"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="factory: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["root"] = root


# ── Run ───────────────────────────────────────────────────────────────────────


@main.command("run")
@click.option("--once", is_flag=True, help="Stop after one task")
@click.option("--timeout", type=float, default=None, help="Agent timeout in seconds")
@click.option("--provider", default=None, help="Agent CLI to use (claude, claude-code, codex)")
@click.pass_context
def run(ctx, once, timeout, provider):
    """Run tasks until the queue drains or one does not complete."""
    octx = _get_context(ctx, timeout_seconds=timeout, provider=provider)
    agent = providers_mod.get_provider(octx)
    if agent is None:
        sys.exit(EXIT_FAILED)
    code = Scheduler(octx, agent).run(max_tasks=1 if once else None)
    sys.exit(code)


# ── Task Commands ─────────────────────────────────────────────────────────────


@main.command("status")
@click.option("--all", "show_all", is_flag=True, help="Include completed and stopped tasks")
@click.pass_context
def status(ctx, show_all):
    """List tasks."""
    octx = _get_context(ctx)
    tasks = tasks_mod.load_tasks(octx.tasks_dir)
    if not show_all:
        tasks = [t for t in tasks if not t.is_terminal]

    if not tasks:
        click.echo("No tasks found.")
        return

    for task in tasks:
        icon = STATUS_ICONS.get(task.status, "?")
        label = task.status or "new"
        if task.stop_reason:
            label += f": {task.stop_reason}"
        prev = f" [after: {tasks_mod.task_ref(task.previous)}]" if task.previous else ""
        parent = f" [{task.parent}]" if task.parent else ""
        click.echo(f"  {icon} {task.name} ({label}){parent}{prev}")


@main.command("next")
@click.pass_context
def next_task(ctx):
    """Show the task the runner would pick next."""
    octx = _get_context(ctx)
    task = Scheduler(octx, provider=None).next_runnable()
    if task is None:
        click.echo("No runnable task.")
        return
    click.echo(task.name)


@main.command("check")
@click.argument("name")
@click.pass_context
def check(ctx, name):
    """Evaluate a task's Done conditions."""
    octx = _get_context(ctx)
    task = tasks_mod.get_task(octx.tasks_dir, name)
    if not task:
        click.echo(f"Task not found: {name}", err=True)
        sys.exit(1)

    root = Scheduler(octx, provider=None).done_root(task)
    if root is None:
        click.echo(f"Workspace for {task.parent} does not exist yet.")
        sys.exit(1)

    passed, details = conditions_mod.check_done_details(
        task.done, root, octx.instructions_path, timeout=octx.config.timeout_seconds
    )
    kind = conditions_mod.done_kind(task.done)
    if kind != "conditions":
        click.echo(f"{task.name}: {kind} Done conditions")
    for result in details:
        mark = "✓" if result.passed else "✗"
        click.echo(f"  {mark} {result.expression}")
        if result.detail and not result.passed:
            click.echo(f"      {result.detail}")
    click.echo("passed" if passed else "not done")
    sys.exit(0 if passed else 1)


# ── Workspace Commands ────────────────────────────────────────────────────────


@main.group("workspace")
def workspace_group():
    """Manage project worktrees."""
    pass


@workspace_group.command("ensure")
@click.argument("record")
@click.pass_context
def workspace_ensure(ctx, record):
    """Create or resume the worktree for a project record."""
    octx = _get_context(ctx)
    try:
        path = worktrees_mod.ensure_workspace(octx, record)
    except GitError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    click.echo(f"Branch: {worktrees_mod.project_branch_name(record)}")
    click.echo(f"Worktree: {path}")
