from __future__ import annotations

import os
import shutil
import subprocess
from pathlib import Path
from typing import Iterable

import pytest


def write_tree(root: Path, files: Iterable[str], content: str = "x") -> Path:
    """Create *files* (relative paths) under *root*; a trailing ``/`` makes a directory."""
    for relative in files:
        path = root / relative
        if relative.endswith("/"):
            path.mkdir(parents=True, exist_ok=True)
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def farm_files(temp_dir: Path) -> set[str]:
    """Every file visible through the farm, following its symlinks."""
    visible: set[str] = set()
    for dirpath, _dirnames, filenames in os.walk(temp_dir, followlinks=True):
        for filename in filenames:
            if filename == ".ocx-ghost-marker":
                continue
            path = Path(dirpath) / filename
            if path.is_file():
                visible.add(path.relative_to(temp_dir).as_posix())
    return visible


def run(cmd: list[str], cwd: Path) -> subprocess.CompletedProcess:
    return subprocess.run(cmd, cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep the user's git config, global gitignore and profiles out of every test."""
    home = tmp_path_factory.mktemp("home")
    gitconfig = home / ".gitconfig"
    gitconfig.write_text("", encoding="utf-8")

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(gitconfig))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("OCX_PROFILES_DIR", str(home / "profiles"))
    for var in ("GIT_DIR", "GIT_WORK_TREE", "OCX_PROFILE"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture()
def project(tmp_path: Path) -> Path:
    """An empty project directory with a bare-minimum ``.git`` directory."""
    project_dir = tmp_path / "project"
    (project_dir / ".git" / "info").mkdir(parents=True)
    return project_dir


@pytest.fixture()
def plain_dir(tmp_path: Path) -> Path:
    """A project directory that is not a git repository."""
    directory = tmp_path / "plain"
    directory.mkdir()
    return directory


@pytest.fixture()
def temp_base(tmp_path: Path) -> Path:
    base = tmp_path / "tmp"
    base.mkdir()
    return base


@pytest.fixture()
def git_repo(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    repo_dir = tmp_path / "repo"
    repo_dir.mkdir()
    run(["git", "init"], cwd=repo_dir)
    run(["git", "config", "user.name", "ocx"], cwd=repo_dir)
    run(["git", "config", "user.email", "ocx@example.com"], cwd=repo_dir)
    return repo_dir


@pytest.fixture()
def make_tree():
    return write_tree


@pytest.fixture()
def visible_files():
    return farm_files
