"""Layered gitignore rules for symlink farm traversal.

An :class:`IgnoreStack` collects rules from every gitignore source git
itself would consult, lowest precedence first:

1. the global excludes file (``core.excludesFile`` or ``~/.config/git/ignore``)
2. ``<gitdir>/info/exclude``
3. the root ``.gitignore``
4. nested ``.gitignore`` files, loaded lazily as the walk enters directories

Nested rules are rewritten at load time so they are relative to the project
root and only reach below the directory that declared them. Matching is
delegated to :class:`pathspec.GitIgnoreSpec`, which applies the usual
"last matching rule wins" and ``!negation`` semantics.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import pathspec

from ocx_cli.git_context import get_config_value, get_git_dir

__all__ = [
    "IgnoreStack",
    "add_scoped_rules",
    "find_global_gitignore",
    "load_ignore_stack",
    "load_project_gitignore",
    "scope_rule",
]

logger = logging.getLogger(__name__)

GITIGNORE_FILE = ".gitignore"


def _iter_rules(content: str):
    for line in content.splitlines():
        rule = line.rstrip()
        if not rule or rule.lstrip().startswith("#"):
            continue
        yield rule


def scope_rule(rule: str, subdir: str) -> str:
    """Rewrite one gitignore rule declared in *subdir* to be root-relative.

    ``*.log`` in ``src`` becomes ``src/**/*.log``; ``/build`` becomes
    ``src/build``; ``!keep`` becomes ``!src/**/keep``. Rules from the root
    (empty *subdir*) are returned unchanged.
    """
    if not subdir:
        return rule

    negated = rule.startswith("!")
    body = rule[1:] if negated else rule
    dir_only = body.endswith("/")
    core = body.rstrip("/")

    if core.startswith("/"):
        scoped = f"{subdir}/{core.lstrip('/')}"
    elif "/" in core:
        scoped = f"{subdir}/{core}"
    else:
        scoped = f"{subdir}/**/{core}"

    if dir_only:
        scoped += "/"
    return f"!{scoped}" if negated else scoped


class IgnoreStack:
    """Ordered, scoped gitignore rules compiled into one predicate."""

    def __init__(self) -> None:
        self._rules: list[str] = []
        self._loaded_scopes: set[str] = set()
        self._spec: pathspec.GitIgnoreSpec | None = None

    @property
    def rules(self) -> tuple[str, ...]:
        return tuple(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def add(self, content: str, subdir: str = "") -> int:
        """Append the rules in *content*, scoped to *subdir*. Returns the rule count."""
        subdir = subdir.strip("/")
        added = [scope_rule(rule, subdir) for rule in _iter_rules(content)]
        if added:
            self._rules.extend(added)
            self._spec = None
        return len(added)

    def load_file(self, path: Path, subdir: str = "") -> bool:
        """Add the rules of a gitignore-format file. Missing or unreadable files are skipped."""
        try:
            content = Path(path).read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.debug("Skipping unreadable ignore file %s: %s", path, exc)
            return False
        self.add(content, subdir)
        return True

    def load_nested(self, directory: Path, subdir: str) -> bool:
        """Load ``directory/.gitignore`` once, scoped to *subdir*."""
        subdir = subdir.strip("/")
        if subdir in self._loaded_scopes:
            return False
        self._loaded_scopes.add(subdir)
        return self.load_file(Path(directory) / GITIGNORE_FILE, subdir)

    def ignores(self, relative_path: str) -> bool:
        """Match a root-relative path; directories should carry a trailing ``/``."""
        if not relative_path or not self._rules:
            return False
        if self._spec is None:
            self._spec = pathspec.GitIgnoreSpec.from_lines(self._rules)
        return self._spec.match_file(relative_path)

    def is_ignored(self, relative_path: str, *, is_dir: bool) -> bool:
        return self.ignores(f"{relative_path}/" if is_dir else relative_path)

    def __repr__(self) -> str:
        return f"IgnoreStack(rules={len(self._rules)}, scopes={sorted(self._loaded_scopes)!r})"


def add_scoped_rules(stack: IgnoreStack, content: str, subdir: str) -> None:
    stack.add(content, subdir)


def find_global_gitignore(cwd: Path) -> Path | None:
    """Locate the user's global excludes file."""
    configured = get_config_value(cwd, "core.excludesFile")
    if configured:
        candidate = Path(os.path.expanduser(configured))
        if not candidate.is_absolute():
            candidate = Path(cwd) / candidate
        return candidate

    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "git" / "ignore"


def load_ignore_stack(project_dir: Path) -> IgnoreStack | None:
    """Build the ignore stack for a repository root.

    Returns ``None`` when *project_dir* is not a git repository; gitignore
    semantics do not apply there.
    """
    project_dir = Path(project_dir)
    git_dir = get_git_dir(project_dir)
    if git_dir is None:
        return None

    stack = IgnoreStack()
    global_ignore = find_global_gitignore(project_dir)
    if global_ignore is not None:
        stack.load_file(global_ignore)
    stack.load_file(git_dir / "info" / "exclude")
    stack.load_nested(project_dir, "")
    logger.debug("Loaded %d ignore rules for %s", len(stack), project_dir)
    return stack


def load_project_gitignore(project_dir: Path) -> IgnoreStack:
    """Just the project's root ``.gitignore``, whether or not it is a repository."""
    stack = IgnoreStack()
    gitignore = Path(project_dir) / GITIGNORE_FILE
    try:
        content = gitignore.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        return stack
    except OSError as exc:
        logger.warning("Could not read %s: %s", gitignore, exc)
        return stack
    stack.add(content)
    return stack
