"""Ghost profile storage.

A profile is a directory under :func:`~ocx_cli.ghost.paths.get_profiles_dir`
holding ``ghost.yaml`` and, optionally, the OpenCode files injected into
every farm that uses it (``opencode.jsonc``, ``AGENTS.md``, ``.opencode/``).
The ``current`` symlink in the profiles directory names the active profile.
"""

from __future__ import annotations

import logging
import os
import re
import secrets
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from ocx_cli.errors import (
    ConflictError,
    InvalidProfileNameError,
    ProfileExistsError,
    ProfileNotFoundError,
    ProfilesNotInitializedError,
)
from ocx_cli.ghost.config import GhostConfig, load_ghost_config, save_ghost_config
from ocx_cli.ghost.paths import (
    AGENTS_FILE,
    CURRENT_LINK,
    GHOST_CONFIG_FILE,
    OPENCODE_CONFIG_FILE,
    get_profiles_dir,
)

__all__ = ["DEFAULT_PROFILE", "PROFILE_ENV", "Profile", "ProfileManager", "validate_profile_name"]

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "default"
PROFILE_ENV = "OCX_PROFILE"
MAX_PROFILE_NAME_LENGTH = 32

_NAME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9._-]*$")


def validate_profile_name(name: str) -> str:
    if not name:
        raise InvalidProfileNameError(name, "Profile name is required")
    if len(name) > MAX_PROFILE_NAME_LENGTH:
        raise InvalidProfileNameError(name, f"Profile name must be {MAX_PROFILE_NAME_LENGTH} characters or less")
    if not _NAME_RE.match(name):
        raise InvalidProfileNameError(
            name,
            "Profile name must start with a letter and contain only alphanumeric characters, "
            "dots, underscores, or hyphens",
        )
    if name == CURRENT_LINK:
        raise InvalidProfileNameError(name, f"'{CURRENT_LINK}' is reserved")
    return name


@dataclass(slots=True)
class Profile:
    """A loaded profile."""

    name: str
    directory: Path
    ghost: GhostConfig = field(default_factory=GhostConfig)

    @property
    def opencode_config(self) -> Path:
        return self.directory / OPENCODE_CONFIG_FILE

    @property
    def agents_file(self) -> Path:
        return self.directory / AGENTS_FILE

    @property
    def has_opencode_config(self) -> bool:
        return self.opencode_config.is_file()

    @property
    def has_agents(self) -> bool:
        return self.agents_file.is_file()

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "directory": str(self.directory),
            "ghost": self.ghost.to_dict(),
            "has_opencode_config": self.has_opencode_config,
            "has_agents": self.has_agents,
        }


class ProfileManager:
    """Create, list, switch and remove profiles."""

    def __init__(self, profiles_dir: Path | None = None):
        self.profiles_dir = Path(profiles_dir) if profiles_dir is not None else get_profiles_dir()

    @classmethod
    def require_initialized(cls, profiles_dir: Path | None = None) -> "ProfileManager":
        manager = cls(profiles_dir)
        manager._ensure_initialized()
        return manager

    # -- layout -------------------------------------------------------------

    def profile_dir(self, name: str) -> Path:
        return self.profiles_dir / name

    @property
    def current_link(self) -> Path:
        return self.profiles_dir / CURRENT_LINK

    def is_initialized(self) -> bool:
        return self.profiles_dir.is_dir()

    def _ensure_initialized(self) -> None:
        if not self.is_initialized():
            raise ProfilesNotInitializedError()

    def initialize(self) -> Profile:
        """Create the profiles directory with a ``default`` profile and select it.

        Re-running is harmless: existing profiles and the current selection
        are kept.
        """
        self.profiles_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        if not self.exists(DEFAULT_PROFILE):
            self._create(DEFAULT_PROFILE)
        if self._read_current_link() is None:
            self.set_current(DEFAULT_PROFILE)
        return self.get(DEFAULT_PROFILE)

    # -- queries ------------------------------------------------------------

    def list(self) -> list[str]:
        self._ensure_initialized()
        with os.scandir(self.profiles_dir) as it:
            names = [
                entry.name
                for entry in it
                if not entry.name.startswith(".") and not entry.is_symlink() and entry.is_dir()
            ]
        return sorted(names)

    def exists(self, name: str) -> bool:
        try:
            validate_profile_name(name)
        except InvalidProfileNameError:
            return False
        path = self.profile_dir(name)
        return path.is_dir() and not path.is_symlink()

    def get(self, name: str) -> Profile:
        if not self.exists(name):
            raise ProfileNotFoundError(name)
        directory = self.profile_dir(name)
        return Profile(name=name, directory=directory, ghost=load_ghost_config(directory / GHOST_CONFIG_FILE))

    def get_current(self, override: str | None = None) -> str:
        """Resolve the active profile name.

        Priority: *override* (``--profile``), then ``OCX_PROFILE``, then the
        ``current`` symlink, then ``default``. The result must exist.
        """
        self._ensure_initialized()
        for candidate in (override, os.environ.get(PROFILE_ENV)):
            if candidate:
                if not self.exists(candidate):
                    raise ProfileNotFoundError(candidate)
                return candidate

        linked = self._read_current_link()
        if linked is not None and self.exists(linked):
            return linked
        if linked is not None:
            logger.warning("'current' points at missing profile '%s'; using '%s'", linked, DEFAULT_PROFILE)

        if not self.exists(DEFAULT_PROFILE):
            raise ProfileNotFoundError(DEFAULT_PROFILE)
        return DEFAULT_PROFILE

    def _read_current_link(self) -> str | None:
        try:
            target = os.readlink(self.current_link)
        except OSError:
            return None
        return Path(target).name or None

    # -- mutations ----------------------------------------------------------

    def _create(self, name: str) -> Profile:
        directory = self.profile_dir(name)
        directory.mkdir(parents=True, mode=0o700)
        save_ghost_config(directory / GHOST_CONFIG_FILE, GhostConfig())
        logger.debug("Created profile %s at %s", name, directory)
        return self.get(name)

    def add(self, name: str, clone_from: str | None = None) -> Profile:
        """Create profile *name*, empty or as a copy of *clone_from*."""
        self._ensure_initialized()
        validate_profile_name(name)
        if self.exists(name):
            raise ProfileExistsError(name)

        if clone_from is None:
            return self._create(name)

        if not self.exists(clone_from):
            raise ProfileNotFoundError(clone_from)
        shutil.copytree(self.profile_dir(clone_from), self.profile_dir(name), symlinks=True)
        logger.debug("Cloned profile %s from %s", name, clone_from)
        return self.get(name)

    def remove(self, name: str) -> None:
        self._ensure_initialized()
        if not self.exists(name):
            raise ProfileNotFoundError(name)
        if self._read_current_link() == name:
            raise ConflictError(f"Cannot remove the active profile '{name}'. Switch to another profile first.")
        if len(self.list()) <= 1:
            raise ConflictError("Cannot delete the last profile. At least one profile must exist.")
        shutil.rmtree(self.profile_dir(name))

    def set_current(self, name: str) -> None:
        """Point the ``current`` symlink at *name*, replacing it atomically."""
        self._ensure_initialized()
        if not self.exists(name):
            raise ProfileNotFoundError(name)

        staging = self.profiles_dir / f".{CURRENT_LINK}-{secrets.token_hex(4)}"
        os.symlink(name, staging, target_is_directory=True)
        try:
            os.replace(staging, self.current_link)
        except OSError:
            staging.unlink(missing_ok=True)
            raise
