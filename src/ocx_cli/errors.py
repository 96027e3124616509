"""Exception hierarchy for ocx.

Every error raised by the farm engine and the profile layer derives from
:class:`OCXError`, which carries a machine-readable ``code`` and the process
exit code the CLI should use when the error reaches the top level.
"""

from __future__ import annotations

from pathlib import Path

EXIT_SUCCESS = 0
EXIT_GENERAL = 1
EXIT_NOT_FOUND = 66
EXIT_CONFIG = 78


class OCXError(Exception):
    """Base exception for ocx errors."""

    def __init__(self, message: str, code: str = "GENERAL_ERROR", exit_code: int = EXIT_GENERAL):
        self.code = code
        self.exit_code = exit_code
        super().__init__(message)


class NotFoundError(OCXError):
    def __init__(self, message: str):
        super().__init__(message, "NOT_FOUND", EXIT_NOT_FOUND)


class ConfigError(OCXError):
    def __init__(self, message: str):
        super().__init__(message, "CONFIG_ERROR", EXIT_CONFIG)


class ValidationError(OCXError):
    def __init__(self, message: str):
        super().__init__(message, "VALIDATION_ERROR", EXIT_GENERAL)


class ConflictError(OCXError):
    def __init__(self, message: str):
        super().__init__(message, "CONFLICT", EXIT_GENERAL)


# ---------------------------------------------------------------------------
# Symlink farm
# ---------------------------------------------------------------------------


class FarmError(OCXError):
    """Failure while building, populating or removing a symlink farm."""

    def __init__(self, message: str, code: str = "FARM_ERROR"):
        super().__init__(message, code, EXIT_GENERAL)


class AbsolutePathError(FarmError, ValueError):
    """A relative path was passed where an absolute one is required."""

    def __init__(self, name: str, value: str | Path):
        self.name = name
        self.value = value
        super().__init__(f"{name} must be an absolute path, got: {value}", "ABSOLUTE_PATH_REQUIRED")


class FileLimitExceededError(FarmError):
    """The source tree holds more entries than the farm is allowed to link.

    Raised as soon as the running count passes the limit; the walk is not
    resumable.
    """

    def __init__(self, count: int, limit: int):
        self.count = count
        self.limit = limit
        super().__init__(
            f"File limit exceeded: visited {count} entries (limit {limit}). "
            f"Add exclude patterns or raise maxFiles (max_files in ghost.yaml, 0 disables the limit).",
            "FILE_LIMIT_EXCEEDED",
        )


class PathContainmentError(FarmError):
    """A path claimed to live under a directory resolves outside of it."""

    def __init__(self, path: str | Path, root: str | Path):
        self.path = path
        self.root = root
        super().__init__(f"injectPath must be within sourceDir: {path} (sourceDir: {root})", "PATH_CONTAINMENT")


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProfileNotFoundError(NotFoundError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Profile '{name}' not found. Run 'ocx ghost profile list' to see available profiles.")


class ProfilesNotInitializedError(NotFoundError):
    def __init__(self) -> None:
        super().__init__("Ghost profiles are not initialized. Run 'ocx ghost init' first.")


class ProfileExistsError(ConflictError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Profile '{name}' already exists.")


class InvalidProfileNameError(ValidationError):
    def __init__(self, name: str, reason: str):
        self.name = name
        super().__init__(f"Invalid profile name '{name}': {reason}")
