"""Symlink plan: decide what the farm will contain before touching disk.

:func:`compute_symlink_plan` walks the source tree once and returns a
:class:`SymlinkPlan`, a recursive value holding only names relative to the
directory being processed. The executor turns it into symlinks later; the
split keeps all filtering decisions testable without any writes.

The plan is a snapshot. Changes to the source tree between planning and
execution are not detected.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import assert_never

from ocx_cli.errors import AbsolutePathError, FileLimitExceededError
from ocx_cli.farm.gitignore import IgnoreStack
from ocx_cli.farm.patterns import Excluded, Included, Partial, PathMatcher, normalize_for_matching

__all__ = [
    "DEFAULT_MAX_FILES",
    "GIT_DIR_NAME",
    "SymlinkPlan",
    "TraversalState",
    "compute_symlink_plan",
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILES = 10_000
GIT_DIR_NAME = ".git"


@dataclass
class SymlinkPlan:
    """What to link inside one directory.

    A name appears in at most one bucket. ``partial_dirs`` maps a directory
    name to the plan for its own contents.
    """

    whole_dirs: list[str] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    partial_dirs: dict[str, "SymlinkPlan"] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.whole_dirs or self.files or self.partial_dirs)

    def to_dict(self) -> dict[str, object]:
        return {
            "whole_dirs": list(self.whole_dirs),
            "files": list(self.files),
            "partial_dirs": {name: nested.to_dict() for name, nested in self.partial_dirs.items()},
        }


@dataclass
class TraversalState:
    """Entry counter shared by every level of one walk.

    ``active`` holds the resolved directories on the current recursion path,
    so a symlink pointing back at one of them is not walked again.
    """

    count: int = 0
    active: set[Path] = field(default_factory=set)

    def record(self, max_files: int) -> None:
        self.count += 1
        if max_files > 0 and self.count > max_files:
            raise FileLimitExceededError(self.count, max_files)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True


def _escapes_project(entry: os.DirEntry[str], project_root: Path) -> bool:
    """True for a symlinked directory whose target lies outside the project."""
    if not entry.is_symlink():
        return False
    try:
        target = Path(entry.path).resolve(strict=True)
    except (OSError, RuntimeError):
        return True
    return not _is_within(target, project_root.resolve())


def compute_symlink_plan(
    source_dir: Path,
    project_root: Path,
    matcher: PathMatcher,
    ignore_stack: IgnoreStack | None = None,
    state: TraversalState | None = None,
    max_files: int = DEFAULT_MAX_FILES,
) -> SymlinkPlan:
    """Walk *source_dir* and build its symlink plan.

    Args:
        source_dir: Directory being processed (absolute).
        project_root: Root that patterns and gitignore rules are relative to.
        matcher: Pre-compiled include/exclude patterns.
        ignore_stack: Gitignore rules, or ``None`` outside a repository.
        state: Shared counter; created for the top-level call.
        max_files: Entry ceiling, ``0`` disables it.

    Raises:
        AbsolutePathError: *source_dir* or *project_root* is relative.
        FileLimitExceededError: More than *max_files* entries were recorded.
    """
    source_dir = Path(source_dir)
    project_root = Path(project_root)
    if not source_dir.is_absolute():
        raise AbsolutePathError("sourceDir", source_dir)
    if not project_root.is_absolute():
        raise AbsolutePathError("projectRoot", project_root)
    if state is None:
        state = TraversalState()

    plan = SymlinkPlan()

    if ignore_stack is not None:
        ignore_stack.load_nested(source_dir, normalize_for_matching(source_dir, project_root))

    with os.scandir(source_dir) as it:
        entries = sorted(it, key=lambda e: e.name)

    real_source = source_dir.resolve()
    state.active.add(real_source)
    try:
        for entry in entries:
            if entry.name == GIT_DIR_NAME:
                continue
            _plan_entry(entry, plan, project_root, matcher, ignore_stack, state, max_files)
    finally:
        state.active.discard(real_source)

    return plan


def _plan_entry(
    entry: os.DirEntry[str],
    plan: SymlinkPlan,
    project_root: Path,
    matcher: PathMatcher,
    ignore_stack: IgnoreStack | None,
    state: TraversalState,
    max_files: int,
) -> None:
    try:
        is_dir = entry.is_dir()
    except OSError as exc:
        # Self-referencing or unreadable link: mirror it as a plain entry
        logger.debug("Cannot stat %s (%s), treating as file", entry.path, exc)
        is_dir = False
    relative_path = normalize_for_matching(entry.path, project_root)

    if ignore_stack is not None and ignore_stack.is_ignored(relative_path, is_dir=is_dir):
        if is_dir:
            # Ignored directories stay opaque: one link, never walked
            plan.whole_dirs.append(entry.name)
            state.record(max_files)
        return

    disposition = matcher.disposition(relative_path)

    if isinstance(disposition, Excluded):
        logger.debug("Excluded: %s", relative_path)
    elif isinstance(disposition, Included):
        (plan.whole_dirs if is_dir else plan.files).append(entry.name)
        state.record(max_files)
    elif isinstance(disposition, Partial):
        if not is_dir:
            # A file has no inside to expand
            plan.files.append(entry.name)
            state.record(max_files)
            return
        if _escapes_project(entry, project_root):
            logger.debug("Skipping symlinked directory outside project: %s", relative_path)
            return
        state.record(max_files)
        if entry.is_symlink() and Path(entry.path).resolve() in state.active:
            # Points back at a directory being walked; link it instead of looping
            logger.debug("Symlink loop at %s, linking whole", relative_path)
            plan.whole_dirs.append(entry.name)
            return
        logger.debug("Expanding %s for: %s", relative_path, ", ".join(disposition.patterns))
        nested = compute_symlink_plan(
            Path(entry.path),
            project_root,
            matcher,
            ignore_stack,
            state,
            max_files,
        )
        if nested.is_empty():
            # Nothing survived filtering; leave the name free for injected files
            logger.debug("Dropping empty partial directory: %s", relative_path)
            return
        plan.partial_dirs[entry.name] = nested
    else:
        assert_never(disposition)
