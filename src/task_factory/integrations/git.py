"""Git subprocess wrappers for worktree, branch and commit operations."""

import subprocess
from dataclasses import dataclass
from pathlib import Path


class GitError(Exception):
    """Raised when a git command fails."""


@dataclass
class WorktreeInfo:
    path: str
    branch: str
    head: str
    is_bare: bool = False
    prunable: bool = False


def run_git(args: list[str], cwd: str | Path | None = None) -> str:
    """Run a git command and return stdout. Raises GitError on failure."""
    cmd = ["git"] + args
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
        return result.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise GitError(f"git {' '.join(args)} failed: {e.stderr.strip()}") from e


def worktree_add(repo_path: str | Path, worktree_path: str | Path, branch: str) -> str:
    """Attach a new worktree to an existing branch."""
    return run_git(["worktree", "add", str(worktree_path), branch], cwd=repo_path)


def worktree_list(repo_path: str | Path) -> list[WorktreeInfo]:
    """List all worktrees in porcelain format."""
    output = run_git(["worktree", "list", "--porcelain"], cwd=repo_path)
    worktrees = []
    current: dict = {}

    def _flush():
        worktrees.append(
            WorktreeInfo(
                path=current.get("worktree", ""),
                branch=current.get("branch", "").replace("refs/heads/", ""),
                head=current.get("HEAD", ""),
                is_bare=current.get("bare", False),
                prunable=current.get("prunable", False),
            )
        )

    for line in output.split("\n"):
        if not line:
            if current:
                _flush()
                current = {}
            continue

        if line.startswith("worktree "):
            current["worktree"] = line[len("worktree "):]
        elif line.startswith("HEAD "):
            current["HEAD"] = line[len("HEAD "):]
        elif line.startswith("branch "):
            current["branch"] = line[len("branch "):]
        elif line == "bare":
            current["bare"] = True
        elif line == "prunable" or line.startswith("prunable "):
            current["prunable"] = True

    if current:
        _flush()

    return worktrees


def worktree_prune(repo_path: str | Path) -> str:
    """Drop administrative data for worktrees whose directories are gone."""
    return run_git(["worktree", "prune"], cwd=repo_path)


def branch_exists(repo_path: str | Path, branch: str) -> bool:
    """Check if a branch exists."""
    try:
        run_git(["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"], cwd=repo_path)
        return True
    except GitError:
        return False


def create_branch(repo_path: str | Path, branch: str, start_point: str) -> str:
    """Create a branch at start_point without checking it out."""
    return run_git(["branch", branch, start_point], cwd=repo_path)


def detect_default_branch(repo_path: str | Path) -> str:
    """Pick main, master or the remote HEAD branch, else the current branch."""
    remote_head = ""
    try:
        ref = run_git(["symbolic-ref", "refs/remotes/origin/HEAD"], cwd=repo_path)
        remote_head = ref.removeprefix("refs/remotes/origin/")
    except GitError:
        pass
    for candidate in ("main", "master", remote_head):
        if candidate and branch_exists(repo_path, candidate):
            return candidate
    return run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=repo_path)


def get_status(cwd: str | Path) -> str:
    """Get git status of a working directory."""
    return run_git(["status", "--porcelain"], cwd=cwd)


def get_current_branch(cwd: str | Path) -> str:
    """Get the current branch name."""
    return run_git(["branch", "--show-current"], cwd=cwd)


def rev_parse_head(cwd: str | Path) -> str:
    """Get the commit hash HEAD points at."""
    return run_git(["rev-parse", "HEAD"], cwd=cwd)


def add(cwd: str | Path, *paths: str | Path) -> str:
    """Stage the given paths, or everything when none are given."""
    args = ["add"] + ([str(p) for p in paths] if paths else ["-A"])
    return run_git(args, cwd=cwd)


def has_staged_changes(cwd: str | Path) -> bool:
    try:
        run_git(["diff", "--cached", "--quiet"], cwd=cwd)
        return False
    except GitError:
        return True


def commit(cwd: str | Path, message: str) -> str:
    return run_git(["commit", "-m", message], cwd=cwd)


def discard_changes(cwd: str | Path) -> None:
    """Revert tracked modifications and delete untracked files."""
    run_git(["checkout", "--", "."], cwd=cwd)
    run_git(["clean", "-fd"], cwd=cwd)


def log_subjects(cwd: str | Path, since: str, until: str = "HEAD") -> list[str]:
    """Commit subjects in since..until, newest first."""
    output = run_git(["log", "--format=%s", f"{since}..{until}"], cwd=cwd)
    return output.splitlines() if output else []
