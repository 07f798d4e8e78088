"""Tests for completion condition parsing and evaluation."""

import logging
import time

import pytest

from task_factory.core.conditions import (
    Command,
    ConditionParseError,
    FileAbsent,
    FileContains,
    FileExists,
    FileMissingText,
    NoSection,
    Recurring,
    SectionExists,
    check,
    check_done,
    check_done_details,
    check_one,
    done_kind,
    evaluate,
    expand_pattern,
    parse_condition,
)


@pytest.fixture
def root(tmp_path):
    (tmp_path / "docs").mkdir()
    (tmp_path / "README.md").write_text("# Project\n\nUsage notes\n")
    (tmp_path / "docs" / "2025-03-04-report.md").write_text("report\n")
    return tmp_path


@pytest.fixture
def instructions(tmp_path):
    path = tmp_path / "CLAUDE.md"
    path.write_text("# Factory\n\n## Agent rules\n")
    return path


class TestParse:
    def test_each_check(self):
        assert parse_condition('file_exists("a.md")') == FileExists("a.md")
        assert parse_condition('file_absent("a.md")') == FileAbsent("a.md")
        assert parse_condition('file_contains("a.md", "x")') == FileContains("a.md", "x")
        assert parse_condition('file_missing_text("a.md", "x")') == FileMissingText("a.md", "x")
        assert parse_condition('command("make test")') == Command("make test")
        assert parse_condition('section_exists("## Rules")') == SectionExists("## Rules")
        assert parse_condition('no_section("## Old")') == NoSection("## Old")

    def test_recurring_tokens(self):
        assert parse_condition("always") == Recurring("always")
        assert parse_condition("  never ") == Recurring("never")

    def test_single_quotes_and_escapes(self):
        assert parse_condition("file_contains('a.md', 'say \"hi\"')") == FileContains(
            "a.md", 'say "hi"'
        )

    def test_comma_inside_argument(self):
        assert parse_condition('command("echo a, b")') == Command("echo a, b")

    @pytest.mark.parametrize(
        "expr",
        [
            "file_exists(a.md)",
            'file_exists("a.md", "b.md")',
            "file_contains(\"a.md\")",
            'rm_rf("/")',
            "just some prose",
            'file_exists("a.md") + 1',
            "file_exists(1)",
            "file_exists()",
            'file_exists("a.md"',
        ],
    )
    def test_rejects(self, expr):
        with pytest.raises(ConditionParseError):
            parse_condition(expr)


class TestEvaluate:
    def test_file_exists_and_absent_are_complements(self, root):
        for path in ("README.md", "missing.md", "docs/YYYY-MM-DD-report.md", "docs/*.txt"):
            exists = check(f'file_exists("{path}")', root)
            absent = check(f'file_absent("{path}")', root)
            assert exists != absent

    def test_date_placeholder_matches_any_date(self, root):
        assert check('file_exists("docs/YYYY-MM-DD-report.md")', root)
        assert not check('file_exists("docs/YYYY-MM-DD-summary.md")', root)

    def test_expand_pattern(self):
        assert expand_pattern("YYYY-MM-DD-x.md").startswith("[0-9][0-9][0-9][0-9]-")
        assert expand_pattern("plain.md") == "plain.md"

    def test_glob(self, root):
        assert check('file_exists("docs/*.md")', root)
        assert check('file_absent("docs/*.txt")', root)

    def test_contains_and_missing_text_are_complements(self, root):
        assert check('file_contains("README.md", "Usage")', root)
        assert not check('file_missing_text("README.md", "Usage")', root)
        assert not check('file_contains("README.md", "Install")', root)
        assert check('file_missing_text("README.md", "Install")', root)

    def test_text_checks_on_missing_file(self, root):
        assert not check('file_contains("nope.md", "x")', root)
        assert check('file_missing_text("nope.md", "x")', root)

    def test_command_runs_in_root(self, root):
        assert check('command("test -f README.md")', root)
        result = check_one('command("echo broken >&2; exit 3")', root)
        assert not result.passed
        assert result.detail.startswith("exit 3")
        assert "broken" in result.detail

    def test_command_timeout_fails_the_check(self, root):
        start = time.monotonic()
        result = check_one('command("sleep 30 & sleep 30")', root, timeout=1)
        assert time.monotonic() - start < 15
        assert not result.passed
        assert result.detail == "timed out after 1s"
        assert not check_done(['command("sleep 30")'], root, timeout=1)

    def test_sections_use_instructions(self, root, instructions):
        assert check('section_exists("## Agent rules")', root, instructions)
        assert not check('no_section("## Agent rules")', root, instructions)
        assert check('no_section("## Legacy")', root, instructions)

    def test_sections_without_instructions(self, root):
        assert not check('section_exists("## Agent rules")', root)
        assert check('no_section("## Agent rules")', root)

    def test_recurring_never_passes(self, root):
        result = evaluate(Recurring("always"), root)
        assert not result.passed
        assert result.detail == "recurring"

    def test_unknown_check_fails_with_one_warning(self, root, caplog):
        with caplog.at_level(logging.WARNING):
            result = check_one('delete_everything("/")', root)
        assert not result.passed
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "delete_everything" in warnings[0].getMessage()


class TestDoneList:
    def test_all_must_pass(self, root):
        assert check_done(['file_exists("README.md")', 'file_exists("docs")'], root)
        assert not check_done(['file_exists("README.md")', 'file_exists("nope")'], root)

    def test_empty_list_is_not_done(self, root):
        assert not check_done([], root)
        passed, details = check_done_details([], root)
        assert not passed
        assert details == []

    def test_recurring_blocks_completion(self, root):
        assert not check_done(['file_exists("README.md")', "always"], root)

    def test_details_evaluate_every_condition(self, root):
        passed, details = check_done_details(['file_exists("nope")', 'file_exists("README.md")'], root)
        assert not passed
        assert [r.passed for r in details] == [False, True]
        assert details[0].expression == 'file_exists("nope")'

    def test_done_kind(self):
        assert done_kind([]) == "unspecified"
        assert done_kind(["never"]) == "recurring"
        assert done_kind(['file_exists("a")', "always"]) == "recurring"
        assert done_kind(['file_exists("a")']) == "conditions"
