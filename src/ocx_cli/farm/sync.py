"""Copy files an agent writes into the farm back into the real project.

Only real files and directories created inside the farm are propagated;
symlinks already point at project content. The watcher remembers every
path it copied and will only ever delete those, so content that existed in
the project before the session started cannot be removed through the farm.

Failures of individual operations are collected on the handle instead of
raised; the watcher keeps running.
"""

from __future__ import annotations

import errno
import logging
import os
import shutil
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from watchfiles import Change, DefaultFilter, watch

from ocx_cli.farm.gitignore import IgnoreStack, load_project_gitignore
from ocx_cli.farm.lifecycle import GHOST_MARKER_FILE, is_within_symlink_root
from ocx_cli.farm.patterns import normalize_for_matching

__all__ = ["FileSync", "OS_JUNK_FILES", "SyncFailure", "start_file_sync"]

logger = logging.getLogger(__name__)

OS_JUNK_FILES = frozenset({".DS_Store", "Thumbs.db"})

# Quiet period before a batch of writes is considered settled
WRITE_SETTLE_MS = 200
# How often the watcher wakes up with no changes; the first wake-up marks it ready
_IDLE_TIMEOUT_MS = 500
_READY_TIMEOUT_SECONDS = 5.0
_CLOSE_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class SyncFailure:
    """One sync operation that did not succeed."""

    path: str
    operation: str
    error: str

    def __str__(self) -> str:
        where = self.path or "<watcher>"
        return f"{self.operation} {where}: {self.error}"


class _FarmFilter(DefaultFilter):
    """watchfiles filter that also drops the farm marker and OS metadata files."""

    ignore_dirs = (".git", "__pycache__")

    def __call__(self, change: Change, path: str) -> bool:
        name = os.path.basename(path)
        if name == GHOST_MARKER_FILE or name in OS_JUNK_FILES:
            return False
        return super().__call__(change, path)


def _default_force_polling() -> bool | None:
    # inotify is unreliable on some CI containers
    return True if os.environ.get("CI") == "true" else None


class FileSync:
    """Background watcher propagating farm writes to the project.

    Use :func:`start_file_sync` to create one. ``close()`` stops the watcher
    thread and may be called any number of times.
    """

    def __init__(
        self,
        temp_dir: Path,
        project_dir: Path,
        overlay_files: Iterable[str] = (),
        *,
        ignore_stack: IgnoreStack | None = None,
        force_polling: bool | None = None,
    ):
        self.temp_dir = Path(temp_dir)
        self.project_dir = Path(project_dir)
        self._overlay = frozenset(overlay_files)
        self._ignore = ignore_stack if ignore_stack is not None else load_project_gitignore(self.project_dir)
        self._force_polling = force_polling if force_polling is not None else _default_force_polling()

        self._lock = threading.Lock()
        self._synced: set[str] = set()
        self._dirs: set[str] = self._scan_real_dirs()
        self._failures: list[SyncFailure] = []

        self._stop = threading.Event()
        self._ready = threading.Event()
        self._closed = False
        self._thread = threading.Thread(target=self._run, name="ocx-file-sync", daemon=True)

    # -- public API ---------------------------------------------------------

    def start(self) -> "FileSync":
        self._thread.start()
        if not self._ready.wait(_READY_TIMEOUT_SECONDS):
            logger.debug("Watcher for %s not ready after %.1fs", self.temp_dir, _READY_TIMEOUT_SECONDS)
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop.set()
        if self._thread.is_alive():
            self._thread.join(_CLOSE_TIMEOUT_SECONDS)
            if self._thread.is_alive():
                logger.warning(
                    "File watcher for %s did not stop within %.1fs", self.temp_dir, _CLOSE_TIMEOUT_SECONDS
                )

    def failures(self) -> list[SyncFailure]:
        with self._lock:
            return list(self._failures)

    def sync_count(self) -> int:
        """Number of distinct project files this session currently owns."""
        with self._lock:
            return len(self._synced)

    def synced_paths(self) -> set[str]:
        with self._lock:
            return set(self._synced)

    def __enter__(self) -> "FileSync":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # -- watcher thread -----------------------------------------------------

    def _run(self) -> None:
        try:
            for changes in watch(
                self.temp_dir,
                watch_filter=_FarmFilter(),
                step=WRITE_SETTLE_MS,
                rust_timeout=_IDLE_TIMEOUT_MS,
                yield_on_timeout=True,
                stop_event=self._stop,
                raise_interrupt=False,
                force_polling=self._force_polling,
            ):
                self._ready.set()
                if changes:
                    self.handle_changes(changes)
        except Exception as exc:
            logger.warning("File watcher for %s stopped: %s", self.temp_dir, exc)
            self._record("", "watch", exc)
        finally:
            self._ready.set()

    def handle_changes(self, changes: Iterable[tuple[Change, str]]) -> None:
        """Apply one batch of watcher events.

        Batches are unordered, so only the set of touched paths matters: each
        path's current state on disk decides between add/change and unlink.
        Existing paths are handled parents first, vanished paths children
        first.
        """
        paths = {path for _change, path in changes}
        present = sorted(p for p in paths if os.path.lexists(p))
        vanished = sorted((p for p in paths if not os.path.lexists(p)), reverse=True)
        for path in present:
            self._handle_present(path)
        for path in vanished:
            self._handle_vanished(path)

    # -- event handling -----------------------------------------------------

    def _relative(self, path: str) -> str | None:
        relative = normalize_for_matching(path, self.temp_dir)
        if not relative or relative == ".." or relative.startswith("../"):
            return None
        return relative

    def _beneath_symlink(self, relative: str) -> bool:
        """True when *relative* or any of its farm ancestors is a symlink."""
        current = self.temp_dir
        for part in relative.split("/"):
            current = current / part
            if current.is_symlink():
                return True
        return False

    def _skipped(self, relative: str, *, is_dir: bool) -> bool:
        name = relative.rsplit("/", 1)[-1]
        if name in OS_JUNK_FILES or relative == GHOST_MARKER_FILE:
            return True
        if is_within_symlink_root(relative, self._overlay):
            return True
        return self._ignore.is_ignored(relative, is_dir=is_dir)

    def _handle_present(self, path: str) -> None:
        relative = self._relative(path)
        if relative is None or self._beneath_symlink(relative):
            return
        is_dir = os.path.isdir(path)
        if self._skipped(relative, is_dir=is_dir):
            return
        if is_dir:
            self._add_dir(relative)
        else:
            self._copy_file(relative)

    def _handle_vanished(self, path: str) -> None:
        relative = self._relative(path)
        if relative is None:
            return
        with self._lock:
            was_dir = relative in self._dirs
            owned = relative in self._synced
        if was_dir:
            self._remove_dir(relative)
        elif owned:
            self._delete_file(relative)

    def _add_dir(self, relative: str) -> None:
        with self._lock:
            self._dirs.add(relative)
        try:
            (self.project_dir / relative).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            self._record(relative, "mkdir", exc)
            return

        # Content moved in as a whole directory produces no per-file events
        try:
            with os.scandir(self.temp_dir / relative) as it:
                children = sorted(entry.path for entry in it)
        except FileNotFoundError:
            return
        for child in children:
            self._handle_present(child)

    def _copy_file(self, relative: str) -> None:
        source = self.temp_dir / relative
        destination = self.project_dir / relative
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
        except FileNotFoundError:
            # Gone again before we got to it; the unlink event follows
            return
        except OSError as exc:
            self._record(relative, "copy", exc)
            return
        with self._lock:
            self._synced.add(relative)
        logger.debug("Synced %s", relative)

    def _delete_file(self, relative: str) -> None:
        try:
            (self.project_dir / relative).unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            self._record(relative, "delete", exc)
            return
        with self._lock:
            self._synced.discard(relative)
        logger.debug("Removed %s", relative)

    def _remove_dir(self, relative: str) -> None:
        with self._lock:
            self._dirs.discard(relative)
        try:
            os.rmdir(self.project_dir / relative)
        except FileNotFoundError:
            return
        except OSError as exc:
            if exc.errno in (errno.ENOTEMPTY, errno.EEXIST):
                return
            self._record(relative, "rmdir", exc)

    def _record(self, relative: str, operation: str, exc: BaseException) -> None:
        logger.debug("Sync %s failed for %s: %s", operation, relative or "<watcher>", exc)
        with self._lock:
            self._failures.append(SyncFailure(path=relative, operation=operation, error=str(exc)))

    def _scan_real_dirs(self) -> set[str]:
        """Real (non-symlink) directories already in the farm."""
        found: set[str] = set()
        for root, dirnames, _filenames in os.walk(self.temp_dir):
            real = [d for d in dirnames if not os.path.islink(os.path.join(root, d))]
            dirnames[:] = real
            for name in real:
                found.add(normalize_for_matching(os.path.join(root, name), self.temp_dir))
        return found


def start_file_sync(
    temp_dir: Path,
    project_dir: Path,
    overlay_files: Iterable[str] | None = None,
    *,
    force_polling: bool | None = None,
) -> FileSync:
    """Start propagating writes under *temp_dir* into *project_dir*.

    Args:
        temp_dir: The farm being watched.
        project_dir: Where synced files land.
        overlay_files: Farm-relative paths injected from a profile; these and
            anything beneath them are never copied back.
        force_polling: Use polling instead of native notifications. Defaults
            to polling when ``CI=true``.
    """
    return FileSync(temp_dir, project_dir, overlay_files or (), force_polling=force_polling).start()
