"""Git worktree lifecycle for project records: one branch-bound workspace each."""

import logging
import shutil
from pathlib import Path

from task_factory.core.context import OrchestratorContext
from task_factory.integrations.git import (
    add,
    branch_exists,
    commit,
    create_branch,
    discard_changes,
    get_status,
    has_staged_changes,
    worktree_add,
    worktree_list,
    worktree_prune,
)
from task_factory.store.models import strip_name_prefix

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "factory/"

DISCARD = "discard"
ABSORB = "absorb"


def project_slug(record: str) -> str:
    """projects/0001-auth-hardening.md -> auth-hardening."""
    return strip_name_prefix(Path(record).stem)


def project_branch_name(record: str) -> str:
    return f"{BRANCH_PREFIX}{project_slug(record)}"


def workspace_dir(ctx: OrchestratorContext, record: str) -> Path:
    return ctx.worktrees_dir / project_slug(record)


def _is_attached(ctx: OrchestratorContext, wt_dir: Path) -> bool:
    target = wt_dir.resolve()
    for wt in worktree_list(ctx.source_repo):
        if wt.prunable:
            continue
        if Path(wt.path).resolve() == target:
            return True
    return False


def ensure_workspace(ctx: OrchestratorContext, record: str) -> Path:
    """Create the project branch (off the default branch) and worktree if needed.

    A workspace git still lists as attached is reused untouched; a directory git
    no longer knows about is removed and re-created.
    """
    slug = project_slug(record)
    branch = project_branch_name(record)
    wt_dir = workspace_dir(ctx, record)

    if not branch_exists(ctx.source_repo, branch):
        create_branch(ctx.source_repo, branch, ctx.default_branch)
        logger.info("created branch %s off %s", branch, ctx.default_branch)

    if wt_dir.exists() and _is_attached(ctx, wt_dir):
        return wt_dir

    if wt_dir.exists():
        shutil.rmtree(wt_dir)
        worktree_prune(ctx.source_repo)
        worktree_add(ctx.source_repo, wt_dir, branch)
        logger.info("re-created stale worktree %s", slug)
        return wt_dir

    worktree_prune(ctx.source_repo)
    wt_dir.parent.mkdir(parents=True, exist_ok=True)
    worktree_add(ctx.source_repo, wt_dir, branch)
    logger.info("created worktree %s at %s", slug, wt_dir)
    return wt_dir


def reconcile_workspace(workdir: Path, mode: str, message: str | None = None) -> bool:
    """Deal with whatever the agent left uncommitted in workdir.

    discard: revert tracked changes and delete untracked files.
    absorb: stage everything; commit too when a message is given.
    Returns True if there was anything to act on.
    """
    if mode not in (DISCARD, ABSORB):
        raise ValueError(f"unknown reconcile mode: {mode}")
    if not get_status(workdir):
        return False
    if mode == DISCARD:
        discard_changes(workdir)
        logger.info("discarded uncommitted changes in %s", workdir)
        return True
    add(workdir)
    if message and has_staged_changes(workdir):
        commit(workdir, message)
    return True
