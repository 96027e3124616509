"""Tests for GhostSession: farm preparation, profile overlay and running OpenCode."""

from __future__ import annotations

import os
import signal
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ocx_cli.errors import FarmError, NotFoundError, OCXError
from ocx_cli.farm.sync import SyncFailure
from ocx_cli.ghost.config import GhostConfig
from ocx_cli.ghost.profiles import Profile
from ocx_cli.ghost.session import GhostSession
from ocx_cli.git_context import GitContext


@pytest.fixture()
def profile(tmp_path: Path, make_tree) -> Profile:
    directory = tmp_path / "profiles" / "work"
    make_tree(
        directory,
        ["ghost.yaml", ".opencode/skill/review/SKILL.md"],
    )
    (directory / "opencode.jsonc").write_text('{"model": "profile"}', encoding="utf-8")
    (directory / "AGENTS.md").write_text("# profile rules", encoding="utf-8")
    return Profile(name="work", directory=directory)


@pytest.fixture()
def workspace(plain_dir: Path, make_tree) -> Path:
    make_tree(plain_dir, ["src/index.ts", ".opencode/command/deploy.md"])
    (plain_dir / "AGENTS.md").write_text("# project rules", encoding="utf-8")
    (plain_dir / "opencode.jsonc").write_text('{"model": "project"}', encoding="utf-8")
    return plain_dir


@pytest.fixture()
def no_git():
    with patch("ocx_cli.ghost.session.detect_git_repo", return_value=None) as mocked:
        yield mocked


def _fake_process(returncode: int = 0) -> MagicMock:
    proc = MagicMock()
    proc.wait.return_value = returncode
    proc.poll.return_value = returncode
    return proc


class TestPrepare:
    def test_profile_files_replace_project_files(
        self, workspace: Path, profile: Profile, temp_base: Path, no_git, visible_files
    ) -> None:
        session = GhostSession(workspace, profile, temp_base=temp_base)
        farm = session.prepare()
        try:
            temp_dir = farm.temp_dir
            assert (temp_dir / "AGENTS.md").read_text(encoding="utf-8") == "# profile rules"
            assert not (temp_dir / "AGENTS.md").is_symlink()
            assert os.readlink(temp_dir / "opencode.jsonc") == str(profile.directory / "opencode.jsonc")
            assert (temp_dir / ".opencode").is_symlink()

            visible = visible_files(temp_dir)
            assert "src/index.ts" in visible
            assert ".opencode/skill/review/SKILL.md" in visible
            assert ".opencode/command/deploy.md" not in visible
            assert "ghost.yaml" not in visible
            assert session.overlay_files == {"AGENTS.md", "opencode.jsonc", ".opencode"}
        finally:
            session.cleanup()

        assert not farm.temp_dir.exists()
        assert (workspace / "AGENTS.md").read_text(encoding="utf-8") == "# project rules"

    def test_included_project_file_is_not_shadowed(
        self, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        profile.ghost = GhostConfig(include=["AGENTS.md"], exclude=["**/opencode.jsonc"])
        session = GhostSession(workspace, profile, temp_base=temp_base)
        session.prepare()
        try:
            assert (session.temp_dir / "AGENTS.md").is_symlink()
            assert (session.temp_dir / "AGENTS.md").read_text(encoding="utf-8") == "# project rules"
            assert session.skipped_files == ["AGENTS.md"]
            assert "AGENTS.md" not in session.overlay_files
        finally:
            session.cleanup()

    def test_subdirectory_of_repository_uses_work_tree_rules(
        self, tmp_path: Path, profile: Profile, temp_base: Path, make_tree, visible_files
    ) -> None:
        repo = tmp_path / "repo"
        make_tree(repo, [".git/info/", "pkg/main.ts", "pkg/debug.log"])
        (repo / ".gitignore").write_text("*.log\n", encoding="utf-8")
        context = GitContext(git_dir=repo / ".git", work_tree=repo)

        with patch("ocx_cli.ghost.session.detect_git_repo", return_value=context):
            session = GhostSession(repo / "pkg", profile, temp_base=temp_base)
            session.prepare()
        try:
            visible = visible_files(session.temp_dir)
            assert "main.ts" in visible
            assert "debug.log" not in visible
        finally:
            session.cleanup()

    def test_overlay_failure_removes_farm(self, workspace: Path, profile: Profile, temp_base: Path, no_git) -> None:
        session = GhostSession(workspace, profile, temp_base=temp_base)
        with patch("ocx_cli.ghost.session.inject_ghost_files", side_effect=FarmError("boom")):
            with pytest.raises(FarmError):
                session.prepare()
        assert list(temp_base.iterdir()) == []

    def test_temp_dir_before_prepare(self, workspace: Path, profile: Profile) -> None:
        with pytest.raises(OCXError, match="not been prepared"):
            GhostSession(workspace, profile).temp_dir


class TestEnvironment:
    def test_profile_variables(self, workspace: Path, profile: Profile) -> None:
        env = GhostSession(workspace, profile).environment({"PATH": "/bin", "GIT_DIR": "/stale"})
        assert env["PATH"] == "/bin"
        assert env["OPENCODE_CONFIG_DIR"] == str(profile.directory)
        assert env["OCX_PROFILE"] == "work"
        assert env["OPENCODE_CONFIG"] == str(profile.directory / "opencode.jsonc")
        assert "GIT_DIR" not in env

    def test_no_opencode_config(self, workspace: Path, profile: Profile) -> None:
        (profile.directory / "opencode.jsonc").unlink()
        env = GhostSession(workspace, profile).environment({})
        assert "OPENCODE_CONFIG" not in env

    def test_git_variables(self, workspace: Path, profile: Profile) -> None:
        session = GhostSession(workspace, profile)
        session.git_context = GitContext(git_dir=workspace / ".git", work_tree=workspace)
        env = session.environment({})
        assert env["GIT_DIR"] == str(workspace / ".git")
        assert env["GIT_WORK_TREE"] == str(workspace)


@patch("ocx_cli.ghost.session.start_file_sync")
@patch("ocx_cli.ghost.session.subprocess.Popen")
class TestRun:
    def test_runs_opencode_in_farm(
        self, mock_popen, mock_sync, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        mock_popen.return_value = _fake_process(3)
        mock_sync.return_value.failures.return_value = []
        session = GhostSession(workspace, profile, temp_base=temp_base)

        assert session.run(["--model", "x"]) == 3

        args, kwargs = mock_popen.call_args
        assert args[0] == ["opencode", "--model", "x"]
        assert kwargs["cwd"].name.startswith("ocx-ghost-")
        assert kwargs["env"]["OCX_PROFILE"] == "work"
        mock_sync.return_value.close.assert_called_once()
        assert list(temp_base.iterdir()) == []

    def test_signal_handlers_are_restored(
        self, mock_popen, mock_sync, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        mock_popen.return_value = _fake_process(0)
        mock_sync.return_value.failures.return_value = []
        before = signal.getsignal(signal.SIGINT)

        GhostSession(workspace, profile, temp_base=temp_base).run()

        assert signal.getsignal(signal.SIGINT) is before

    def test_killed_by_signal(
        self, mock_popen, mock_sync, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        mock_popen.return_value = _fake_process(-signal.SIGTERM)
        mock_sync.return_value.failures.return_value = []
        assert GhostSession(workspace, profile, temp_base=temp_base).run() == 128 + signal.SIGTERM

    def test_missing_opencode(
        self, mock_popen, mock_sync, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        mock_popen.side_effect = FileNotFoundError("opencode")
        mock_sync.return_value.failures.return_value = []

        with pytest.raises(NotFoundError, match="not found on PATH"):
            GhostSession(workspace, profile, temp_base=temp_base).run()
        assert list(temp_base.iterdir()) == []

    def test_sync_failures_are_logged(
        self,
        mock_popen,
        mock_sync,
        workspace: Path,
        profile: Profile,
        temp_base: Path,
        no_git,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_popen.return_value = _fake_process(0)
        mock_sync.return_value.failures.return_value = [SyncFailure("a.txt", "copy", "denied")]

        with caplog.at_level("WARNING", logger="ocx_cli.ghost.session"):
            GhostSession(workspace, profile, temp_base=temp_base).run()
        assert "copy a.txt: denied" in caplog.text

    def test_synced_paths_are_reported_on_cleanup(
        self,
        mock_popen,
        mock_sync,
        workspace: Path,
        profile: Profile,
        temp_base: Path,
        no_git,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        mock_popen.return_value = _fake_process(0)
        mock_sync.return_value.failures.return_value = []
        mock_sync.return_value.synced_paths.return_value = {"notes/b.md", "a.txt"}

        with caplog.at_level("DEBUG", logger="ocx_cli.ghost.session"):
            GhostSession(workspace, profile, temp_base=temp_base).run()
        assert "a.txt, notes/b.md" in caplog.text

    def test_cleanup_is_idempotent(
        self, mock_popen, mock_sync, workspace: Path, profile: Profile, temp_base: Path, no_git
    ) -> None:
        mock_popen.return_value = _fake_process(0)
        mock_sync.return_value.failures.return_value = []
        session = GhostSession(workspace, profile, temp_base=temp_base)
        session.run()
        session.cleanup()
        mock_sync.return_value.close.assert_called_once()
