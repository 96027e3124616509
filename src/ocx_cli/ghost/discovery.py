"""Locate the project-level files OpenCode reads on startup.

OpenCode walks up from its working directory looking for these names, so
the search here does the same: from *start* towards the filesystem root,
stopping after *stop*.
"""

from __future__ import annotations

from pathlib import Path

__all__ = ["CONFIG_DIRS", "CONFIG_FILES", "PROJECT_FILE_NAMES", "RULE_FILES", "discover_project_files"]

CONFIG_FILES = ("opencode.jsonc", "opencode.json")
RULE_FILES = ("AGENTS.md", "CLAUDE.md", "CONTEXT.md")
CONFIG_DIRS = (".opencode",)

PROJECT_FILE_NAMES = (*CONFIG_FILES, *RULE_FILES, *CONFIG_DIRS)


def _walk_up(start: Path, stop: Path | None):
    current = start
    while True:
        yield current
        if stop is not None and current == stop:
            return
        parent = current.parent
        if parent == current:
            return
        current = parent


def discover_project_files(start: Path, stop: Path | None = None) -> set[Path]:
    """Return every OpenCode project file between *start* and *stop* inclusive."""
    start = Path(start)
    stop = Path(stop) if stop is not None else None

    found: set[Path] = set()
    for directory in _walk_up(start, stop):
        for name in PROJECT_FILE_NAMES:
            candidate = directory / name
            if candidate.exists():
                found.add(candidate)
    return found
