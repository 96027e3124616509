"""Git repository context detection.

Git is queried with ``GIT_DIR``/``GIT_WORK_TREE`` stripped from the
environment so that variables inherited from a parent ghost session never
leak into detection.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path

__all__ = ["GitContext", "detect_git_repo", "get_config_value", "get_git_dir"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GitContext:
    """Resolved git paths for a working directory."""

    git_dir: Path
    work_tree: Path


@dataclass
class _GitCommandResult:
    returncode: int
    stdout: str
    stderr: str


def _clean_env() -> dict[str, str]:
    env = dict(os.environ)
    env.pop("GIT_DIR", None)
    env.pop("GIT_WORK_TREE", None)
    return env


def _run_git(cwd: Path, args: list[str], timeout: int = 15) -> _GitCommandResult:
    """Run git and normalize the failure shape."""
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            env=_clean_env(),
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            check=False,
            timeout=timeout,
        )
        return _GitCommandResult(
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
    except FileNotFoundError:
        return _GitCommandResult(returncode=127, stdout="", stderr="git executable not found on PATH")
    except subprocess.TimeoutExpired:
        return _GitCommandResult(returncode=124, stdout="", stderr=f"git command timed out: git {' '.join(args)}")


def detect_git_repo(cwd: Path) -> GitContext | None:
    """Return the git context of *cwd*, or ``None`` outside a repository.

    Bare repositories, a missing git executable and empty output all count
    as "not a repository".
    """
    cwd = Path(cwd)

    git_dir = _run_git(cwd, ["rev-parse", "--git-dir"])
    if git_dir.returncode != 0:
        logger.debug("Not a git repository: %s (%s)", cwd, git_dir.stderr.strip())
        return None
    git_dir_raw = git_dir.stdout.strip()
    if not git_dir_raw:
        return None

    work_tree = _run_git(cwd, ["rev-parse", "--show-toplevel"])
    if work_tree.returncode != 0:
        return None
    work_tree_raw = work_tree.stdout.strip()
    if not work_tree_raw:
        return None

    # --git-dir is relative to cwd unless git decided to print it absolute
    return GitContext(
        git_dir=(cwd / git_dir_raw).resolve(),
        work_tree=Path(work_tree_raw).resolve(),
    )


def get_config_value(cwd: Path, key: str) -> str | None:
    """Return ``git config --get <key>`` as seen from *cwd*, or ``None``."""
    result = _run_git(Path(cwd), ["config", "--get", key])
    if result.returncode != 0:
        return None
    return result.stdout.strip() or None


def get_git_dir(project_dir: Path) -> Path | None:
    """Locate the git directory for *project_dir* without running git.

    Handles the ``.git`` file written by worktrees and submodules
    (``gitdir: <path>``); relative targets resolve against *project_dir*.
    """
    dot_git = Path(project_dir) / ".git"
    if dot_git.is_dir():
        return dot_git
    if not dot_git.is_file():
        return None

    try:
        content = dot_git.read_text(encoding="utf-8").strip()
    except OSError as exc:
        logger.debug("Cannot read %s: %s", dot_git, exc)
        return None

    if not content.startswith("gitdir:"):
        return None
    target = Path(content[len("gitdir:"):].strip())
    if not target.is_absolute():
        target = Path(project_dir) / target
    return Path(os.path.normpath(target))
