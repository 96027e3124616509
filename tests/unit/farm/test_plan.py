"""Tests for ocx_cli.farm.plan.compute_symlink_plan."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from ocx_cli.errors import AbsolutePathError, FileLimitExceededError
from ocx_cli.farm.gitignore import load_ignore_stack
from ocx_cli.farm.patterns import Partial, PathMatcher
from ocx_cli.farm.plan import SymlinkPlan, TraversalState, compute_symlink_plan


def _plan(source: Path, include=(), exclude=(), max_files: int = 10_000, stack=None) -> SymlinkPlan:
    return compute_symlink_plan(source, source, PathMatcher(include, exclude), stack, None, max_files)


class TestNoPatterns:
    def test_top_level_entries_are_linked_whole(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["src/index.ts", "README.md", "docs/guide/intro.md"])
        plan = _plan(plain_dir)
        assert plan.whole_dirs == ["docs", "src"]
        assert plan.files == ["README.md"]
        assert plan.partial_dirs == {}

    def test_git_directory_is_skipped(self, project: Path, make_tree) -> None:
        make_tree(project, ["package.json"])
        plan = _plan(project, stack=load_ignore_stack(project))
        assert ".git" not in plan.whole_dirs
        assert plan.files == ["package.json"]

    def test_empty_source(self, plain_dir: Path) -> None:
        assert _plan(plain_dir).is_empty()


class TestDispositions:
    def test_excluded_entries_are_dropped(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["AGENTS.md", "src/index.ts"])
        plan = _plan(plain_dir, exclude=["**/AGENTS.md"])
        assert "AGENTS.md" not in plan.files
        # "**/" reaches into every directory, so src is expanded
        assert plan.partial_dirs["src"].files == ["index.ts"]

    def test_partial_expansion_three_levels(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["a/b/c/file.txt", "a/other.txt"])
        plan = _plan(plain_dir, include=["a/b/c/**"])
        assert list(plan.partial_dirs) == ["a"]
        level_a = plan.partial_dirs["a"]
        assert level_a.files == []
        assert list(level_a.partial_dirs) == ["b"]
        level_b = level_a.partial_dirs["b"]
        assert level_b.whole_dirs == [] and level_b.files == []
        assert level_b.partial_dirs["c"].files == ["file.txt"]

    def test_partial_disposition_on_file_links_it(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["notes.txt", "other.txt"])
        matcher = PathMatcher(["notes.txt"], ["**/x"])
        assert matcher.disposition("other.txt") == Partial(("notes.txt",))
        plan = compute_symlink_plan(plain_dir, plain_dir, matcher)
        assert plan.files == ["notes.txt", "other.txt"]

    def test_empty_partial_directory_is_dropped(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, [".opencode/command/x.md", "src/index.ts"])
        plan = _plan(plain_dir, exclude=["**/.opencode/**"])
        assert ".opencode" not in plan.partial_dirs
        assert ".opencode" not in plan.whole_dirs

    def test_to_dict(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["src/index.ts"])
        assert _plan(plain_dir).to_dict() == {"whole_dirs": ["src"], "files": [], "partial_dirs": {}}

    def test_expansion_logs_the_patterns_that_caused_it(
        self, plain_dir: Path, make_tree, caplog: pytest.LogCaptureFixture
    ) -> None:
        make_tree(plain_dir, [".opencode/skill/a/SKILL.md"])
        with caplog.at_level("DEBUG", logger="ocx_cli.farm.plan"):
            _plan(plain_dir, include=[".opencode/skill/a/**"])
        assert "Expanding .opencode for: .opencode/skill/a/**" in caplog.text


class TestGitignore:
    def test_ignored_file_is_absent(self, project: Path, make_tree) -> None:
        make_tree(project, ["debug.log", "index.ts"])
        (project / ".gitignore").write_text("*.log\n", encoding="utf-8")
        plan = _plan(project, stack=load_ignore_stack(project))
        assert "debug.log" not in plan.files
        assert "index.ts" in plan.files

    def test_negated_file_is_present(self, project: Path, make_tree) -> None:
        make_tree(project, ["debug.log", "important.log"])
        (project / ".gitignore").write_text("*.log\n!important.log\n", encoding="utf-8")
        plan = _plan(project, stack=load_ignore_stack(project))
        assert plan.files == [".gitignore", "important.log"]

    def test_ignored_directory_is_one_opaque_entry(self, project: Path, make_tree) -> None:
        make_tree(project, [f"node_modules/pkg{i}.js" for i in range(50)] + ["index.ts"])
        (project / ".gitignore").write_text("node_modules/\n", encoding="utf-8")
        plan = _plan(project, max_files=10, stack=load_ignore_stack(project))
        assert "node_modules" in plan.whole_dirs

    def test_ignored_directory_wins_over_patterns(self, project: Path, make_tree) -> None:
        make_tree(project, ["dist/bundle.js"])
        (project / ".gitignore").write_text("dist/\n", encoding="utf-8")
        plan = _plan(project, include=["dist/bundle.js"], stack=load_ignore_stack(project))
        assert plan.whole_dirs == ["dist"]
        assert "dist" not in plan.partial_dirs

    def test_nested_gitignore_applies_on_partial_traversal(self, project: Path, make_tree) -> None:
        make_tree(project, ["root.log", "root.txt", "src/nested.tmp", "src/nested.ts"])
        (project / ".gitignore").write_text("*.log\n", encoding="utf-8")
        (project / "src" / ".gitignore").write_text("*.tmp\n", encoding="utf-8")
        plan = _plan(project, exclude=["**/AGENTS.md"], stack=load_ignore_stack(project))
        assert "root.log" not in plan.files
        assert "root.txt" in plan.files
        assert plan.partial_dirs["src"].files == [".gitignore", "nested.ts"]

    def test_nested_rules_do_not_leak_to_siblings(self, project: Path, make_tree) -> None:
        make_tree(project, ["src/a.tmp", "lib/b.tmp"])
        (project / "src" / ".gitignore").write_text("*.tmp\n", encoding="utf-8")
        plan = _plan(project, exclude=["**/AGENTS.md"], stack=load_ignore_stack(project))
        assert plan.partial_dirs["lib"].files == ["b.tmp"]
        assert plan.partial_dirs["src"].files == [".gitignore"]


class TestFileLimit:
    def test_limit_exceeded(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, [f"file{i}.txt" for i in range(5)])
        with pytest.raises(FileLimitExceededError) as exc_info:
            _plan(plain_dir, max_files=3)
        assert exc_info.value.count == 4
        assert exc_info.value.limit == 3
        assert "File limit exceeded" in str(exc_info.value)
        assert "maxFiles" in str(exc_info.value)

    def test_exactly_at_limit_succeeds(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, [f"file{i}.txt" for i in range(3)])
        assert len(_plan(plain_dir, max_files=3).files) == 3

    def test_directories_count(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["f0", "f1", "f2", "d0/", "d1/", "d2/"])
        with pytest.raises(FileLimitExceededError):
            _plan(plain_dir, max_files=5)

    def test_zero_disables_limit(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, [f"file{i}.txt" for i in range(100)])
        assert len(_plan(plain_dir, max_files=0).files) == 100

    def test_counter_is_shared_across_levels(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["a/1", "a/2", "b/1", "b/2"])
        state = TraversalState()
        compute_symlink_plan(plain_dir, plain_dir, PathMatcher(exclude_patterns=["**/x"]), None, state, 0)
        # a, a/1, a/2, b, b/1, b/2
        assert state.count == 6


class TestPreconditions:
    def test_relative_source_rejected(self, plain_dir: Path) -> None:
        with pytest.raises(AbsolutePathError, match="sourceDir"):
            compute_symlink_plan(Path("relative"), plain_dir, PathMatcher())

    def test_relative_project_root_rejected(self, plain_dir: Path) -> None:
        with pytest.raises(AbsolutePathError, match="projectRoot"):
            compute_symlink_plan(plain_dir, Path("relative"), PathMatcher())


class TestSymlinkedDirectories:
    def test_outside_target_is_not_expanded(self, tmp_path: Path, plain_dir: Path, make_tree) -> None:
        outside = tmp_path / "outside"
        make_tree(outside, ["external.txt"])
        make_tree(plain_dir, ["src/index.ts"])
        os.symlink(outside, plain_dir / "external-link", target_is_directory=True)

        plan = _plan(plain_dir, exclude=["**/AGENTS.md"])
        assert "external-link" not in plan.partial_dirs
        assert "src" in plan.partial_dirs

    def test_outside_target_linked_whole_when_included(self, tmp_path: Path, plain_dir: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        os.symlink(outside, plain_dir / "external-link", target_is_directory=True)
        assert _plan(plain_dir).whole_dirs == ["external-link"]

    def test_link_back_to_ancestor_is_linked_whole(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["src/index.ts"])
        os.symlink(plain_dir, plain_dir / "src" / "loop", target_is_directory=True)

        state = TraversalState()
        plan = compute_symlink_plan(plain_dir, plain_dir, PathMatcher((), ["**/AGENTS.md"]), None, state, 0)

        assert plan.partial_dirs["src"].whole_dirs == ["loop"]
        assert plan.partial_dirs["src"].files == ["index.ts"]
        assert state.active == set()

    def test_link_to_sibling_is_still_expanded(self, plain_dir: Path, make_tree) -> None:
        make_tree(plain_dir, ["lib/util.ts", "lib/AGENTS.md"])
        os.symlink(plain_dir / "lib", plain_dir / "alias", target_is_directory=True)

        plan = _plan(plain_dir, exclude=["**/AGENTS.md"])
        assert plan.partial_dirs["alias"].files == ["util.ts"]

    def test_self_referencing_link_is_kept_as_file(self, plain_dir: Path) -> None:
        os.symlink("self", plain_dir / "self")
        assert _plan(plain_dir, exclude=["**/AGENTS.md"]).files == ["self"]
