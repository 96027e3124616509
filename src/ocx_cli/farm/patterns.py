"""Include/exclude glob filtering for the ghost symlink farm.

Patterns are compiled once into a :class:`PathMatcher`, which answers one
question per path: is it fully included, fully excluded, or a directory that
has to be expanded because some pattern points beneath it?

Glob dialect (paths are project-relative, forward slashes):

- ``*``, ``?`` and ``[...]`` match within a single path segment
- a ``**`` segment matches zero or more whole segments, except in last
  position where it needs at least one: ``dir/**`` matches what is inside
  ``dir`` but not ``dir`` itself
- ``{a,b}`` expands to alternatives
- wildcards match dot-files; matching is case-sensitive
"""

from __future__ import annotations

import fnmatch
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Union

__all__ = [
    "Disposition",
    "EXCLUDED",
    "Excluded",
    "GlobPattern",
    "INCLUDED",
    "Included",
    "Partial",
    "PathMatcher",
    "create_path_matcher",
    "normalize_for_matching",
    "normalize_path",
]


# ---------------------------------------------------------------------------
# Disposition
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Excluded:
    """Path is hidden from the farm."""


@dataclass(frozen=True)
class Included:
    """Path is linked into the farm as a whole."""


@dataclass(frozen=True)
class Partial:
    """Directory must be expanded; ``patterns`` are re-evaluated below it."""

    patterns: tuple[str, ...] = ()


Disposition = Union[Excluded, Included, Partial]

EXCLUDED = Excluded()
INCLUDED = Included()


# ---------------------------------------------------------------------------
# Glob compilation
# ---------------------------------------------------------------------------

_BRACE_RE = re.compile(r"\{([^{}]*)\}")
_GLOBSTAR = None


def _expand_braces(pattern: str) -> list[str]:
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]
    head, tail = pattern[: match.start()], pattern[match.end():]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(_expand_braces(f"{head}{option}{tail}"))
    return expanded


def _compile_segments(pattern: str) -> tuple[re.Pattern[str] | None, ...]:
    if pattern.startswith("./"):
        pattern = pattern[2:]
    segments: list[re.Pattern[str] | None] = []
    for segment in pattern.split("/"):
        if not segment:
            continue
        if segment == "**":
            # Collapse runs of ** so matching stays linear in practice
            if segments and segments[-1] is _GLOBSTAR:
                continue
            segments.append(_GLOBSTAR)
        else:
            segments.append(re.compile(fnmatch.translate(segment)))
    return tuple(segments)


def _match_segments(segments: tuple[re.Pattern[str] | None, ...], parts: tuple[str, ...]) -> bool:
    if not segments:
        return not parts
    head = segments[0]
    if head is _GLOBSTAR:
        rest = segments[1:]
        if not rest:
            # Trailing ** needs something to match: "dir/**" is the contents, not "dir"
            return bool(parts)
        return any(_match_segments(rest, parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return head.match(parts[0]) is not None and _match_segments(segments[1:], parts[1:])


class GlobPattern:
    """A glob pattern compiled once for repeated matching."""

    __slots__ = ("pattern", "_alternatives")

    def __init__(self, pattern: str):
        self.pattern = pattern
        self._alternatives = tuple(_compile_segments(p) for p in _expand_braces(pattern))

    def match(self, relative_path: str) -> bool:
        parts = tuple(part for part in relative_path.split("/") if part)
        return any(_match_segments(segments, parts) for segments in self._alternatives)

    def __repr__(self) -> str:
        return f"GlobPattern({self.pattern!r})"


def _matches_any(relative_path: str, globs: Iterable[GlobPattern]) -> bool:
    return any(glob.match(relative_path) for glob in globs)


def _references_beneath(patterns: Iterable[str], relative_path: str) -> bool:
    """Literal-prefix check: could any pattern select something inside this directory?

    Deliberately conservative. Mid-path wildcards such as ``a/*/c`` are not
    recognised; a leading ``**/`` is assumed to reach everywhere.
    """
    prefix = f"{relative_path}/"
    return any(p.startswith(prefix) or p.startswith("**/") for p in patterns)


# ---------------------------------------------------------------------------
# Path normalization
# ---------------------------------------------------------------------------


def normalize_path(path: str) -> str:
    """Forward slashes, no trailing slash."""
    normalized = path.replace("\\", "/")
    while len(normalized) > 1 and normalized.endswith("/"):
        normalized = normalized[:-1]
    return normalized


def normalize_for_matching(absolute_path: str | Path, project_root: str | Path) -> str:
    """Return *absolute_path* relative to *project_root* in matcher form.

    >>> normalize_for_matching("/home/u/project/.opencode/config.json", "/home/u/project")
    '.opencode/config.json'
    """
    relative = os.path.relpath(os.fspath(absolute_path), os.fspath(project_root))
    relative = normalize_path(relative.replace(os.sep, "/"))
    if relative == ".":
        return ""
    if relative.startswith("./"):
        relative = relative[2:]
    return relative


# ---------------------------------------------------------------------------
# Matcher
# ---------------------------------------------------------------------------


class PathMatcher:
    """Pre-compiled include/exclude matcher.

    Three modes, chosen by which lists are non-empty:

    1. include + exclude: include carves paths back out of the excluded set,
       so an include match wins over an exclude match. Unmatched paths are
       included by default.
    2. include only: allow-list. Unmatched paths are excluded.
    3. exclude only (or nothing): unmatched paths are included.
    """

    def __init__(self, include_patterns: Iterable[str] = (), exclude_patterns: Iterable[str] = ()):
        self._include_patterns = tuple(include_patterns)
        self._exclude_patterns = tuple(exclude_patterns)
        self._include_globs = tuple(GlobPattern(p) for p in self._include_patterns)
        self._exclude_globs = tuple(GlobPattern(p) for p in self._exclude_patterns)

    @property
    def include_patterns(self) -> tuple[str, ...]:
        return self._include_patterns

    @property
    def exclude_patterns(self) -> tuple[str, ...]:
        return self._exclude_patterns

    def disposition(self, relative_path: str) -> Disposition:
        """Classify *relative_path* (forward slashes, no trailing slash)."""
        matches_include = _matches_any(relative_path, self._include_globs)
        matches_exclude = _matches_any(relative_path, self._exclude_globs)

        if self._include_patterns and self._exclude_patterns:
            if matches_include:
                return INCLUDED
            if matches_exclude:
                return EXCLUDED
            if _references_beneath(self._include_patterns, relative_path) or _references_beneath(
                self._exclude_patterns, relative_path
            ):
                return Partial(self._include_patterns)
            return INCLUDED

        if self._include_patterns:
            if matches_include:
                return INCLUDED
            if _references_beneath(self._include_patterns, relative_path):
                return Partial(self._include_patterns)
            return EXCLUDED

        if matches_exclude:
            return EXCLUDED
        if _references_beneath(self._exclude_patterns, relative_path):
            # Exclude recursion is decided entry by entry during the walk
            return Partial(())
        return INCLUDED

    def __repr__(self) -> str:
        return f"PathMatcher(include={list(self._include_patterns)!r}, exclude={list(self._exclude_patterns)!r})"


def create_path_matcher(
    include_patterns: Iterable[str] | None = None,
    exclude_patterns: Iterable[str] | None = None,
) -> PathMatcher:
    return PathMatcher(include_patterns or (), exclude_patterns or ())

