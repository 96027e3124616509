"""Per-profile ghost configuration stored in ``ghost.yaml``."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from ocx_cli.errors import ConfigError
from ocx_cli.farm.plan import DEFAULT_MAX_FILES

__all__ = [
    "DEFAULT_EXCLUDE_PATTERNS",
    "GhostConfig",
    "load_ghost_config",
    "save_ghost_config",
    "validate_glob_pattern",
]

# OpenCode's project-level files; hidden so the profile's own copies win
DEFAULT_EXCLUDE_PATTERNS: tuple[str, ...] = (
    "**/AGENTS.md",
    "**/CLAUDE.md",
    "**/CONTEXT.md",
    "**/.opencode/**",
    "**/opencode.jsonc",
    "**/opencode.json",
)


def validate_glob_pattern(pattern: object) -> str:
    """Return *pattern* if it is a usable glob, else raise :class:`ConfigError`."""
    if not isinstance(pattern, str):
        raise ConfigError(f"Pattern must be a string, got: {pattern!r}")
    if not pattern:
        raise ConfigError("Pattern cannot be empty")
    if "\0" in pattern:
        raise ConfigError("Pattern cannot contain null bytes")
    if pattern.strip() != pattern:
        raise ConfigError(f"Pattern cannot have leading/trailing whitespace: {pattern!r}")
    if pattern.count("{") != pattern.count("}"):
        raise ConfigError(f'Invalid glob pattern: "{pattern}"')
    return pattern


def _pattern_list(data: dict, key: str, default: tuple[str, ...]) -> list[str]:
    value = data.get(key)
    if value is None:
        return list(default)
    if not isinstance(value, list):
        raise ConfigError(f"'{key}' must be a list of glob patterns")
    return [validate_glob_pattern(item) for item in value]


@dataclass(slots=True)
class GhostConfig:
    """Farm filtering settings for one profile."""

    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    max_files: int = DEFAULT_MAX_FILES

    def to_dict(self) -> dict[str, object]:
        return {
            "include": list(self.include),
            "exclude": list(self.exclude),
            "max_files": self.max_files,
        }

    @classmethod
    def from_dict(cls, data: dict[str, object] | None) -> "GhostConfig":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigError("ghost config must be a mapping")

        max_files = data.get("max_files", DEFAULT_MAX_FILES)
        # bool is an int subclass; reject it explicitly
        if isinstance(max_files, bool) or not isinstance(max_files, int) or max_files < 0:
            raise ConfigError(f"'max_files' must be a non-negative integer, got: {max_files!r}")

        return cls(
            include=_pattern_list(data, "include", ()),
            exclude=_pattern_list(data, "exclude", DEFAULT_EXCLUDE_PATTERNS),
            max_files=max_files,
        )


def load_ghost_config(path: Path) -> GhostConfig:
    """Load ``ghost.yaml``; a missing file yields the defaults."""
    if not path.exists():
        return GhostConfig()

    yaml = YAML(typ="safe")
    try:
        with path.open("r", encoding="utf-8") as handle:
            payload = yaml.load(handle)
    except (OSError, YAMLError) as exc:
        raise ConfigError(f"Failed to parse {path}: {exc}") from exc

    try:
        return GhostConfig.from_dict(payload)
    except ConfigError as exc:
        raise ConfigError(f"Invalid {path}: {exc}") from exc


def save_ghost_config(path: Path, config: GhostConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    yaml = YAML()
    yaml.default_flow_style = False
    with path.open("w", encoding="utf-8") as handle:
        yaml.dump(config.to_dict(), handle)
