"""Ghost mode: run OpenCode with profile configuration over a project farm."""

from .config import DEFAULT_EXCLUDE_PATTERNS, GhostConfig, load_ghost_config, save_ghost_config
from .discovery import discover_project_files
from .profiles import DEFAULT_PROFILE, Profile, ProfileManager, validate_profile_name
from .session import GhostSession

__all__ = [
    "DEFAULT_EXCLUDE_PATTERNS",
    "DEFAULT_PROFILE",
    "GhostConfig",
    "GhostSession",
    "Profile",
    "ProfileManager",
    "discover_project_files",
    "load_ghost_config",
    "save_ghost_config",
    "validate_profile_name",
]
