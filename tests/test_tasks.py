"""Tests for the markdown task store."""

import logging
from datetime import date

import pytest

from task_factory.core import tasks as tasks_mod
from task_factory.store.frontmatter import (
    parse_frontmatter,
    render_frontmatter,
    split_sections,
    update_frontmatter,
    write_atomic,
)
from task_factory.store.models import ACTIVE, BACKLOG, COMPLETED, STOPPED, SUSPENDED

SAMPLE = """\
---
author: alice
status: backlog
tools: Read,Write
---

Add a README describing usage.

## Context

The project has no docs.

## Done

Prose lines are ignored.
- `file_exists("README.md")`
- file_contains("README.md", "Usage")
`command("test -s README.md")`
"""


@pytest.fixture
def tasks_dir(tmp_path):
    d = tmp_path / "tasks"
    d.mkdir()
    return d


@pytest.fixture
def sample(tasks_dir):
    path = tasks_dir / "2025-01-01-add-readme.md"
    path.write_text(SAMPLE)
    return tasks_mod.parse_task(path)


class TestFrontmatter:
    def test_parse(self):
        meta, body = parse_frontmatter(SAMPLE)
        assert meta == {"author": "alice", "status": "backlog", "tools": "Read,Write"}
        assert body.startswith("\nAdd a README")

    def test_value_keeps_everything_after_first_colon(self):
        meta, _ = parse_frontmatter("---\nprevious: tasks/a.md\nnote: a: b\n---\n")
        assert meta["note"] == "a: b"

    def test_missing_or_unterminated_header(self):
        assert parse_frontmatter("no header here\n") is None
        assert parse_frontmatter("---\nstatus: backlog\nbody without end\n") is None

    def test_update_preserves_order_and_body(self):
        updated = update_frontmatter(SAMPLE, status="active", pid="42")
        meta, body = parse_frontmatter(updated)
        assert list(meta) == ["author", "status", "tools", "pid"]
        assert meta["status"] == "active"
        assert body == parse_frontmatter(SAMPLE)[1]

    def test_update_without_header(self):
        with pytest.raises(ValueError):
            update_frontmatter("plain text", status="active")

    def test_render(self):
        text = render_frontmatter({"status": "backlog"}, "\nbody\n")
        assert text == "---\nstatus: backlog\n---\n\nbody\n"

    def test_split_sections_lowercases_names(self):
        prompt, sections = split_sections("Do it.\n\n## Verify\n\nrun tests\n\n## DONE\n- x\n")
        assert prompt == "Do it."
        assert sections == {"verify": "run tests", "done": "- x"}

    def test_write_atomic_leaves_no_temp_files(self, tmp_path):
        path = tmp_path / "record.md"
        path.write_text("old")
        write_atomic(path, "new")
        assert path.read_text() == "new"
        assert [p.name for p in tmp_path.iterdir()] == ["record.md"]


class TestParseTask:
    def test_fields(self, sample):
        assert sample.name == "2025-01-01-add-readme"
        assert sample.status == BACKLOG
        assert sample.tools == "Read,Write"
        assert sample.prompt == "Add a README describing usage."
        assert sample.sections["context"] == "The project has no docs."
        assert sample.display_name == "add readme"

    def test_done_conditions(self, sample):
        assert sample.done == [
            'file_exists("README.md")',
            'file_contains("README.md", "Usage")',
            'command("test -s README.md")',
        ]

    def test_defaults(self, tasks_dir):
        path = tasks_dir / "plain.md"
        path.write_text("---\nhandler: reviewer\n---\nJust do it.\n")
        task = tasks_mod.parse_task(path)
        assert task.status == ""
        assert task.agent == "reviewer"
        assert task.tools == "Read,Write,Edit,Bash,Glob,Grep"
        assert task.done == []
        assert task.pid is None
        assert not task.is_project_task

    def test_project_task(self, tasks_dir):
        path = tasks_dir / "p.md"
        path.write_text("---\nparent: projects/0001-docs.md\n---\n")
        assert tasks_mod.parse_task(path).is_project_task

    def test_malformed_header_is_skipped(self, tasks_dir, sample, caplog):
        (tasks_dir / "0000-broken.md").write_text("status: backlog\nno markers\n")
        with caplog.at_level(logging.WARNING):
            tasks = tasks_mod.load_tasks(tasks_dir)
        assert [t.name for t in tasks] == ["2025-01-01-add-readme"]
        assert "0000-broken.md" in caplog.text

    def test_undecodable_file_is_skipped(self, tasks_dir, sample, caplog):
        (tasks_dir / "0000-binary.md").write_bytes(b"---\nstatus: backlog\n---\n\xff\xfe\n")
        with caplog.at_level(logging.WARNING):
            tasks = tasks_mod.load_tasks(tasks_dir)
        assert [t.name for t in tasks] == ["2025-01-01-add-readme"]
        assert "0000-binary.md" in caplog.text
        assert tasks_mod.get_task(tasks_dir, "0000-binary") is None

    def test_load_sorted_by_filename(self, tasks_dir):
        for name in ("b", "a", "c"):
            (tasks_dir / f"{name}.md").write_text("---\n---\n")
        assert [t.name for t in tasks_mod.load_tasks(tasks_dir)] == ["a", "b", "c"]

    def test_get_task_accepts_refs(self, tasks_dir, sample):
        for ref in ("2025-01-01-add-readme", "2025-01-01-add-readme.md", "tasks/2025-01-01-add-readme.md"):
            assert tasks_mod.get_task(tasks_dir, ref).name == sample.name
        assert tasks_mod.get_task(tasks_dir, "missing") is None
        assert tasks_mod.get_task(tasks_dir, "") is None


class TestTransitions:
    def test_forward_path(self, sample):
        tasks_mod.transition_task(sample, ACTIVE, pid=123)
        tasks_mod.transition_task(sample, COMPLETED, commit="abc")
        reread = tasks_mod.parse_task(sample.path)
        assert reread.status == COMPLETED
        assert reread.commit == "abc"
        assert reread.pid == 123
        assert reread.done == sample.done

    def test_stopped_requires_reason(self, sample):
        tasks_mod.transition_task(sample, ACTIVE)
        with pytest.raises(tasks_mod.StatusTransitionError):
            tasks_mod.transition_task(sample, STOPPED)
        tasks_mod.transition_task(sample, STOPPED, stop_reason="failed")
        assert tasks_mod.parse_task(sample.path).stop_reason == "failed"

    def test_reason_only_when_stopped(self, sample):
        tasks_mod.transition_task(sample, ACTIVE)
        with pytest.raises(tasks_mod.StatusTransitionError):
            tasks_mod.transition_task(sample, SUSPENDED, stop_reason="failed")

    @pytest.mark.parametrize("target", [COMPLETED, SUSPENDED, STOPPED, BACKLOG])
    def test_backlog_must_go_through_active(self, sample, target):
        with pytest.raises(tasks_mod.StatusTransitionError):
            tasks_mod.transition_task(sample, target, stop_reason="failed")

    @pytest.mark.parametrize("terminal", [COMPLETED, SUSPENDED])
    def test_no_way_back(self, sample, terminal):
        tasks_mod.transition_task(sample, ACTIVE)
        tasks_mod.transition_task(sample, terminal)
        for target in (ACTIVE, BACKLOG):
            with pytest.raises(tasks_mod.StatusTransitionError):
                tasks_mod.transition_task(sample, target)

    def test_unknown_status(self, sample):
        with pytest.raises(tasks_mod.StatusTransitionError):
            tasks_mod.transition_task(sample, "paused")

    def test_rejected_transition_leaves_file_alone(self, sample):
        before = sample.path.read_text()
        with pytest.raises(tasks_mod.StatusTransitionError):
            tasks_mod.transition_task(sample, COMPLETED)
        assert sample.path.read_text() == before


class TestWriteTask:
    def test_slugify(self):
        assert tasks_mod.slugify("Fix: the Login bug!") == "fix-the-login-bug"
        assert tasks_mod.slugify("a  b__c") == "a-b-c"

    def test_names_are_date_prefixed_and_unique(self, tasks_dir):
        today = date(2025, 2, 3)
        first = tasks_mod.write_task(tasks_dir, "Add docs", "Write docs.\n", today=today)
        second = tasks_mod.write_task(tasks_dir, "Add docs", "Again.\n", today=today)
        assert first.stem == "2025-02-03-add-docs"
        assert second.stem == "2025-02-03-add-docs-2"

    def test_written_task_is_backlog(self, tasks_dir):
        path = tasks_mod.write_task(
            tasks_dir,
            "review",
            "Review it.\n\n## Done\n\n- `file_exists(\"review.md\")`\n",
            agent="reviewer",
            tools="Read",
            author="runner",
        )
        task = tasks_mod.parse_task(path)
        assert task.status == BACKLOG
        assert task.agent == "reviewer"
        assert task.tools == "Read"
        assert task.meta["author"] == "runner"
        assert task.done == ['file_exists("review.md")']
