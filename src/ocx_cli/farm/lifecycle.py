"""Symlink farm lifecycle: create, populate, remove, sweep.

A farm is a temporary directory named ``ocx-ghost-<hex>`` that mirrors a
project through symlinks. Removal renames the directory to
``<name>-removing`` before deleting it, so a process killed mid-delete leaves
an unambiguous leftover instead of a half-deleted farm that still looks
live. :func:`cleanup_orphaned_ghost_dirs` finishes those leftovers, and farms
abandoned by crashed sessions, on a later run.
"""

from __future__ import annotations

import json
import logging
import os
import secrets
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

from ocx_cli.errors import AbsolutePathError, FarmError, PathContainmentError
from ocx_cli.farm.executor import execute_symlink_plan
from ocx_cli.farm.gitignore import IgnoreStack, load_ignore_stack
from ocx_cli.farm.patterns import create_path_matcher, normalize_for_matching
from ocx_cli.farm.plan import DEFAULT_MAX_FILES, TraversalState, compute_symlink_plan

__all__ = [
    "GHOST_DIR_PREFIX",
    "GHOST_MARKER_FILE",
    "REMOVING_SUFFIX",
    "REMOVING_THRESHOLD_SECONDS",
    "STALE_SESSION_THRESHOLD_SECONDS",
    "SymlinkFarm",
    "cleanup_orphaned_ghost_dirs",
    "cleanup_symlink_farm",
    "create_symlink_farm",
    "inject_ghost_files",
    "is_within_symlink_root",
]

logger = logging.getLogger(__name__)

# These three names are recognised across process restarts; never change them.
GHOST_DIR_PREFIX = "ocx-ghost-"
REMOVING_SUFFIX = "-removing"
GHOST_MARKER_FILE = ".ocx-ghost-marker"

# Interrupted deletions: nobody is using them, finish quickly.
REMOVING_THRESHOLD_SECONDS = 60 * 60
# Live-looking farms may belong to a long-running session.
STALE_SESSION_THRESHOLD_SECONDS = 24 * 60 * 60


@dataclass
class SymlinkFarm:
    """Handle for a created farm."""

    temp_dir: Path
    symlink_roots: set[str] = field(default_factory=set)


def _require_absolute(name: str, path: Path) -> Path:
    path = Path(path)
    if not path.is_absolute():
        raise AbsolutePathError(name, path)
    return path


def _load_ancestor_gitignores(stack: IgnoreStack, source_dir: Path, project_root: Path) -> None:
    """Load ``.gitignore`` files between *project_root* and *source_dir*."""
    relative = normalize_for_matching(source_dir, project_root)
    if not relative or relative == ".." or relative.startswith("../"):
        return
    parts = relative.split("/")
    for depth in range(1, len(parts)):
        subdir = "/".join(parts[:depth])
        stack.load_nested(project_root / subdir, subdir)


def create_symlink_farm(
    source_dir: Path,
    *,
    project_dir: Path | None = None,
    include_patterns: Iterable[str] = (),
    exclude_patterns: Iterable[str] = (),
    max_files: int = DEFAULT_MAX_FILES,
    temp_base: Path | None = None,
) -> SymlinkFarm:
    """Create a farm mirroring *source_dir*.

    Args:
        source_dir: Directory to mirror (absolute).
        project_dir: Root used for pattern and gitignore paths; defaults to
            *source_dir*. Differs when *source_dir* sits inside a repository.
        include_patterns: Globs carving paths into the farm.
        exclude_patterns: Globs hiding paths from the farm.
        max_files: Entry ceiling for the walk, ``0`` disables it.
        temp_base: Where to create the farm; defaults to the system temp dir.

    Returns:
        The farm handle with the set of farm-relative symlink paths.

    On any failure the half-built farm is removed before the error
    propagates.
    """
    source_dir = _require_absolute("sourceDir", source_dir)
    project_root = _require_absolute("projectDir", project_dir) if project_dir is not None else source_dir
    base = Path(temp_base) if temp_base is not None else Path(tempfile.gettempdir())

    temp_dir = base / f"{GHOST_DIR_PREFIX}{secrets.token_hex(4)}"
    temp_dir.mkdir(parents=True)

    try:
        (temp_dir / GHOST_MARKER_FILE).write_text("", encoding="utf-8")

        matcher = create_path_matcher(include_patterns, exclude_patterns)
        ignore_stack = load_ignore_stack(project_root)
        if ignore_stack is not None and source_dir != project_root:
            _load_ancestor_gitignores(ignore_stack, source_dir, project_root)

        state = TraversalState()
        plan = compute_symlink_plan(source_dir, project_root, matcher, ignore_stack, state, max_files)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Symlink plan for %s: %s", source_dir, json.dumps(plan.to_dict(), sort_keys=True))

        created: set[str] = set()
        execute_symlink_plan(plan, source_dir, temp_dir, "", created)
    except OSError as exc:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise FarmError(f"Failed to build symlink farm for {source_dir}: {exc}") from exc
    except BaseException:
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    logger.debug("Created farm %s (%d entries, %d links)", temp_dir, state.count, len(created))
    return SymlinkFarm(temp_dir=temp_dir, symlink_roots=created)


def inject_ghost_files(temp_dir: Path, source_dir: Path, inject_paths: Iterable[Path]) -> set[str]:
    """Symlink each of *inject_paths* into the farm at its *source_dir*-relative location.

    Existing entries are left alone. Returns the farm-relative paths handled.

    Raises:
        PathContainmentError: A path does not lie beneath *source_dir*.
        FarmError: A symlink could not be created.
    """
    temp_dir = _require_absolute("tempDir", temp_dir)
    source_dir = _require_absolute("sourceDir", source_dir)

    injected: set[str] = set()
    for inject_path in inject_paths:
        inject_path = Path(inject_path)
        relative = os.path.relpath(inject_path, source_dir)
        if relative in (".", "..") or relative.startswith(f"..{os.sep}") or os.path.isabs(relative):
            raise PathContainmentError(inject_path, source_dir)

        target = temp_dir / relative
        if target.parent != temp_dir:
            target.parent.mkdir(parents=True, exist_ok=True)

        try:
            os.symlink(inject_path, target, target_is_directory=inject_path.is_dir())
        except FileExistsError:
            logger.debug("Already present in farm: %s", relative)
        except OSError as exc:
            raise FarmError(f"Failed to inject {inject_path} -> {target}: {exc}") from exc
        injected.add(relative.replace(os.sep, "/"))

    return injected


def cleanup_symlink_farm(temp_dir: Path) -> None:
    """Remove a farm. Safe to call twice."""
    temp_dir = Path(temp_dir)
    removing = Path(f"{temp_dir}{REMOVING_SUFFIX}")

    try:
        os.rename(temp_dir, removing)
    except OSError:
        # Already gone or renamed by someone else
        return

    shutil.rmtree(removing)


def _finish_removal(path: Path) -> None:
    shutil.rmtree(path)


def cleanup_orphaned_ghost_dirs(
    temp_base: Path | None = None,
    *,
    removing_threshold: float = REMOVING_THRESHOLD_SECONDS,
    stale_threshold: float = STALE_SESSION_THRESHOLD_SECONDS,
) -> int:
    """Delete farms and interrupted deletions left by earlier processes.

    ``ocx-ghost-*-removing`` directories older than *removing_threshold* are
    deleted. Live-looking farms (prefix plus marker file) older than
    *stale_threshold* are renamed to ``-removing`` and then deleted. Anything
    younger is left alone; it may belong to a running session.

    Returns:
        Number of directories removed.
    """
    base = _require_absolute("tempBase", temp_base) if temp_base is not None else Path(tempfile.gettempdir())

    try:
        names = os.listdir(base)
    except OSError as exc:
        logger.debug("Cannot scan %s for orphaned farms: %s", base, exc)
        return 0

    now = time.time()
    cleaned = 0
    for name in names:
        if not name.startswith(GHOST_DIR_PREFIX):
            continue
        path = base / name
        is_removing = name.endswith(REMOVING_SUFFIX)

        try:
            stats = path.stat()
        except OSError:
            continue
        if not path.is_dir():
            continue
        if not is_removing and not (path / GHOST_MARKER_FILE).exists():
            continue

        threshold = removing_threshold if is_removing else stale_threshold
        if now - stats.st_mtime <= threshold:
            continue

        try:
            if is_removing:
                _finish_removal(path)
            else:
                removing = Path(f"{path}{REMOVING_SUFFIX}")
                os.rename(path, removing)
                _finish_removal(removing)
        except OSError as exc:
            logger.debug("Could not remove orphaned farm %s: %s", path, exc)
            continue
        cleaned += 1
        logger.debug("Removed orphaned farm %s", path)

    return cleaned


def is_within_symlink_root(relative_path: str, symlink_roots: Iterable[str]) -> bool:
    """True when *relative_path* is a symlink root or lies beneath one."""
    for root in symlink_roots:
        if relative_path == root or relative_path.startswith(f"{root}/"):
            return True
    return False
