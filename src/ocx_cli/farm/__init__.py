"""Symlink farm: a filtered, disposable view of a project directory."""

from .patterns import (
    Disposition,
    EXCLUDED,
    Excluded,
    INCLUDED,
    Included,
    Partial,
    PathMatcher,
    create_path_matcher,
    normalize_for_matching,
)
from .gitignore import IgnoreStack, add_scoped_rules, load_ignore_stack, load_project_gitignore
from .plan import DEFAULT_MAX_FILES, SymlinkPlan, TraversalState, compute_symlink_plan
from .executor import execute_symlink_plan
from .lifecycle import (
    GHOST_DIR_PREFIX,
    GHOST_MARKER_FILE,
    REMOVING_SUFFIX,
    SymlinkFarm,
    cleanup_orphaned_ghost_dirs,
    cleanup_symlink_farm,
    create_symlink_farm,
    inject_ghost_files,
    is_within_symlink_root,
)
from .sync import FileSync, SyncFailure, start_file_sync

__all__ = [
    "DEFAULT_MAX_FILES",
    "Disposition",
    "EXCLUDED",
    "Excluded",
    "FileSync",
    "GHOST_DIR_PREFIX",
    "GHOST_MARKER_FILE",
    "INCLUDED",
    "IgnoreStack",
    "Included",
    "Partial",
    "PathMatcher",
    "REMOVING_SUFFIX",
    "SymlinkFarm",
    "SymlinkPlan",
    "SyncFailure",
    "TraversalState",
    "add_scoped_rules",
    "cleanup_orphaned_ghost_dirs",
    "cleanup_symlink_farm",
    "compute_symlink_plan",
    "create_path_matcher",
    "create_symlink_farm",
    "execute_symlink_plan",
    "inject_ghost_files",
    "is_within_symlink_root",
    "load_ignore_stack",
    "load_project_gitignore",
    "normalize_for_matching",
    "start_file_sync",
]
