"""Task store: work-item records kept as markdown files in tasks/."""

import logging
import re
from datetime import date
from pathlib import Path

from task_factory.store.frontmatter import (
    parse_frontmatter,
    render_frontmatter,
    split_sections,
    update_frontmatter,
    write_atomic,
)
from task_factory.store.models import (
    BACKLOG,
    DEFAULT_TOOLS,
    STATUSES,
    STOPPED,
    TRANSITIONS,
    Task,
)

logger = logging.getLogger(__name__)

_CONDITION_LINE = re.compile(r"^\w+\(")


class StatusTransitionError(ValueError):
    """Raised when a status change would move a task backwards or out of a terminal state."""


def slugify(title: str) -> str:
    """Convert a title to a filename-friendly slug."""
    slug = title.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_]+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")[:60]


def task_ref(ref: str) -> str:
    """Normalize tasks/x.md, x.md or x to the task name x."""
    return Path(ref.strip()).stem if ref.strip() else ""


def parse_done(section: str) -> list[str]:
    """Extract condition expressions from a Done section.

    Only bullet or backtick-wrapped lines count; prose is ignored.
    """
    done = []
    for raw in section.splitlines():
        line = raw.strip()
        is_bullet = line.startswith(("- ", "* "))
        if is_bullet:
            line = line[2:].strip()
        is_code = len(line) >= 2 and line.startswith("`") and line.endswith("`")
        if is_code:
            line = line[1:-1].strip()
        if line and (is_bullet or is_code or _CONDITION_LINE.match(line)):
            done.append(line)
    return done


def parse_task(path: Path) -> Task | None:
    """Parse one task file.

    Returns None (with a warning) if the file is unreadable or its header is malformed.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        logger.warning("skipping %s: %s", path.name, e)
        return None
    parsed = parse_frontmatter(text)
    if not parsed:
        logger.warning("skipping %s: no/malformed header", path.name)
        return None
    meta, body = parsed
    prompt, sections = split_sections(body)
    return Task(
        name=path.stem,
        path=path,
        meta=meta,
        prompt=prompt,
        sections=sections,
        done=parse_done(sections.get("done", "")),
    )


def load_tasks(tasks_dir: Path) -> list[Task]:
    """Load every parseable task, sorted by filename."""
    tasks = []
    if tasks_dir.exists():
        for f in sorted(tasks_dir.glob("*.md")):
            t = parse_task(f)
            if t:
                tasks.append(t)
    return tasks


def get_task(tasks_dir: Path, ref: str) -> Task | None:
    name = task_ref(ref)
    if not name:
        return None
    path = tasks_dir / f"{name}.md"
    if not path.exists():
        return None
    return parse_task(path)


def task_files(tasks_dir: Path) -> set[str]:
    if not tasks_dir.exists():
        return set()
    return {f.name for f in tasks_dir.glob("*.md")}


def update_task_meta(task: Task, **fields) -> Task:
    """Write header fields back to the task file and mirror them on task.meta."""
    values = {key: "" if value is None else str(value) for key, value in fields.items()}
    text = task.path.read_text(encoding="utf-8")
    write_atomic(task.path, update_frontmatter(text, **values))
    task.meta.update(values)
    return task


def transition_task(task: Task, status: str, **fields) -> Task:
    """Move a task to a new status, enforcing forward-only transitions."""
    if status not in STATUSES:
        raise StatusTransitionError(f"{task.name}: unknown status {status!r}")
    allowed = TRANSITIONS.get(task.status, set())
    if status not in allowed:
        raise StatusTransitionError(
            f"{task.name}: cannot move from {task.status or 'new'} to {status}"
        )
    if status == STOPPED and not fields.get("stop_reason"):
        raise StatusTransitionError(f"{task.name}: stopped requires a stop_reason")
    if status != STOPPED and "stop_reason" in fields:
        raise StatusTransitionError(f"{task.name}: stop_reason is only valid when stopped")
    return update_task_meta(task, status=status, **fields)


def new_task_name(tasks_dir: Path, slug: str, today: date | None = None) -> str:
    """Date-prefixed unique name, appending a number if needed."""
    base = f"{(today or date.today()).isoformat()}-{slugify(slug) or 'task'}"
    if not (tasks_dir / f"{base}.md").exists():
        return base

    i = 2
    while True:
        candidate = f"{base}-{i}"
        if not (tasks_dir / f"{candidate}.md").exists():
            return candidate
        i += 1


def write_task(
    tasks_dir: Path,
    slug: str,
    body: str,
    agent: str | None = None,
    tools: str | None = None,
    author: str = "factory",
    today: date | None = None,
) -> Path:
    """Create a new backlog task file and return its path."""
    tasks_dir.mkdir(parents=True, exist_ok=True)
    name = new_task_name(tasks_dir, slug, today)
    meta = {"author": author, "tools": tools or DEFAULT_TOOLS}
    if agent:
        meta["agent"] = agent
    meta["status"] = BACKLOG
    path = tasks_dir / f"{name}.md"
    write_atomic(path, render_frontmatter(meta, "\n" + body))
    return path
