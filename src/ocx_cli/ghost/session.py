"""Run OpenCode inside a symlink farm configured by a ghost profile.

The session builds a farm of the current project that hides the project's
own OpenCode files, drops the profile's files in their place, starts the
sync watcher and launches ``opencode`` with the farm as its working
directory. The farm is removed however the session ends; a hard kill leaves
it for the next session's orphan sweep.
"""

from __future__ import annotations

import atexit
import logging
import os
import shutil
import signal
import subprocess
import threading
from pathlib import Path
from typing import Sequence

from ocx_cli.errors import NotFoundError, OCXError
from ocx_cli.farm.lifecycle import (
    SymlinkFarm,
    cleanup_orphaned_ghost_dirs,
    cleanup_symlink_farm,
    create_symlink_farm,
    inject_ghost_files,
    is_within_symlink_root,
)
from ocx_cli.farm.sync import FileSync, start_file_sync
from ocx_cli.ghost.discovery import discover_project_files
from ocx_cli.ghost.paths import AGENTS_FILE, GHOST_CONFIG_FILE
from ocx_cli.ghost.profiles import PROFILE_ENV, Profile
from ocx_cli.git_context import GitContext, detect_git_repo

__all__ = ["GhostSession", "OPENCODE_COMMAND"]

logger = logging.getLogger(__name__)

OPENCODE_COMMAND = "opencode"
_FORWARDED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GhostSession:
    """One ghost run of OpenCode over *project_dir*."""

    def __init__(
        self,
        project_dir: Path,
        profile: Profile,
        *,
        temp_base: Path | None = None,
        command: str = OPENCODE_COMMAND,
    ):
        self.project_dir = Path(project_dir).resolve()
        self.profile = profile
        self.temp_base = temp_base
        self.command = command

        self.git_context: GitContext | None = None
        self.farm: SymlinkFarm | None = None
        self.overlay_files: set[str] = set()
        self.skipped_files: list[str] = []
        self._sync: FileSync | None = None
        self._cleaned = False

    @property
    def temp_dir(self) -> Path:
        if self.farm is None:
            raise OCXError("Ghost session has not been prepared")
        return self.farm.temp_dir

    def _project_root(self) -> Path:
        """Root used for patterns: the work tree when the project is inside one."""
        if self.git_context is None:
            return self.project_dir
        work_tree = self.git_context.work_tree
        try:
            self.project_dir.relative_to(work_tree)
        except ValueError:
            return self.project_dir
        return work_tree

    def prepare(self) -> SymlinkFarm:
        """Sweep leftovers, build the farm and overlay the profile files."""
        swept = cleanup_orphaned_ghost_dirs(self.temp_base)
        if swept:
            logger.debug("Swept %d orphaned farm(s)", swept)

        self.git_context = detect_git_repo(self.project_dir)
        ghost = self.profile.ghost
        self.farm = create_symlink_farm(
            self.project_dir,
            project_dir=self._project_root(),
            include_patterns=ghost.include,
            exclude_patterns=ghost.exclude,
            max_files=ghost.max_files,
            temp_base=self.temp_base,
        )

        try:
            self._overlay_profile_files()
        except BaseException:
            self.cleanup()
            raise
        return self.farm

    def _overlay_profile_files(self) -> None:
        assert self.farm is not None
        profile_dir = self.profile.directory

        to_inject: list[Path] = []
        for path in sorted(discover_project_files(profile_dir, profile_dir)):
            if path.name in (AGENTS_FILE, GHOST_CONFIG_FILE):
                continue
            relative = path.name
            if is_within_symlink_root(relative, self.farm.symlink_roots):
                # Writing here would go through the symlink into the project
                logger.warning("Not injecting %s: the project's own copy is included in the farm", relative)
                self.skipped_files.append(relative)
                continue
            to_inject.append(path)

        self.overlay_files |= inject_ghost_files(self.farm.temp_dir, profile_dir, to_inject)

        if self.profile.has_agents:
            if is_within_symlink_root(AGENTS_FILE, self.farm.symlink_roots):
                logger.warning("Not copying profile %s: the project's own copy is included", AGENTS_FILE)
                self.skipped_files.append(AGENTS_FILE)
            else:
                shutil.copyfile(self.profile.agents_file, self.farm.temp_dir / AGENTS_FILE)
                self.overlay_files.add(AGENTS_FILE)

    def environment(self, base: dict[str, str] | None = None) -> dict[str, str]:
        """Child process environment for OpenCode."""
        env = dict(os.environ if base is None else base)
        env["OPENCODE_CONFIG_DIR"] = str(self.profile.directory)
        env[PROFILE_ENV] = self.profile.name
        if self.profile.has_opencode_config:
            env["OPENCODE_CONFIG"] = str(self.profile.opencode_config)

        if self.git_context is not None:
            env["GIT_DIR"] = str(self.git_context.git_dir)
            env["GIT_WORK_TREE"] = str(self.git_context.work_tree)
        else:
            env.pop("GIT_DIR", None)
            env.pop("GIT_WORK_TREE", None)
        return env

    def start_sync(self) -> FileSync:
        self._sync = start_file_sync(self.temp_dir, self.project_dir, self.overlay_files)
        return self._sync

    def cleanup(self) -> None:
        """Stop the watcher and remove the farm. Safe to call repeatedly."""
        if self._cleaned:
            return
        self._cleaned = True
        atexit.unregister(self.cleanup)

        if self._sync is not None:
            self._sync.close()
            for failure in self._sync.failures():
                logger.warning("Sync failure: %s", failure)
            synced = sorted(self._sync.synced_paths())
            if synced:
                logger.debug("Synced into %s: %s", self.project_dir, ", ".join(synced))

        if self.farm is not None:
            try:
                cleanup_symlink_farm(self.farm.temp_dir)
            except OSError as exc:
                # The next session's sweep finishes the job
                logger.warning("Could not remove %s: %s", self.farm.temp_dir, exc)

    def run(self, args: Sequence[str] = ()) -> int:
        """Prepare, run ``opencode`` to completion, clean up. Returns its exit code."""
        self.prepare()
        atexit.register(self.cleanup)

        try:
            self.start_sync()
            return self._spawn(list(args))
        finally:
            self.cleanup()

    def _spawn(self, args: list[str]) -> int:
        try:
            proc = subprocess.Popen([self.command, *args], cwd=self.temp_dir, env=self.environment())
        except FileNotFoundError as exc:
            raise NotFoundError(f"'{self.command}' not found on PATH. Install OpenCode first.") from exc

        forward = threading.current_thread() is threading.main_thread()
        original_handlers = {}

        def signal_handler(sig, frame):
            if proc.poll() is None:
                proc.send_signal(sig)

        if forward:
            for sig in _FORWARDED_SIGNALS:
                original_handlers[sig] = signal.getsignal(sig)
                signal.signal(sig, signal_handler)

        try:
            returncode = proc.wait()
        finally:
            for sig, handler in original_handlers.items():
                signal.signal(sig, handler)

        # Killed by a signal: report it the way a shell would
        if returncode < 0:
            return 128 - returncode
        return returncode
