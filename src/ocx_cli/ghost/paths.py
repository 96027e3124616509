"""Filesystem locations of ghost profiles."""

from __future__ import annotations

import os
from pathlib import Path

PROFILES_DIR_ENV = "OCX_PROFILES_DIR"
CURRENT_LINK = "current"
GHOST_CONFIG_FILE = "ghost.yaml"
OPENCODE_CONFIG_FILE = "opencode.jsonc"
AGENTS_FILE = "AGENTS.md"


def _is_windows() -> bool:
    return os.name == "nt"


def get_profiles_dir() -> Path:
    """Return the directory holding all profiles.

    Resolution order:
    1. ``OCX_PROFILES_DIR`` environment variable
    2. ``$XDG_CONFIG_HOME/opencode/profiles``
    3. ``%APPDATA%\\opencode\\profiles`` on Windows (via platformdirs)
    4. ``~/.config/opencode/profiles``
    """
    if env_dir := os.environ.get(PROFILES_DIR_ENV):
        return Path(env_dir)

    if xdg := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg) / "opencode" / "profiles"

    if _is_windows():
        from platformdirs import user_config_dir

        return Path(user_config_dir("opencode", appauthor=False)) / "profiles"

    return Path.home() / ".config" / "opencode" / "profiles"

