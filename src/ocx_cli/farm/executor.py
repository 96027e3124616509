"""Turn a :class:`~ocx_cli.farm.plan.SymlinkPlan` into directories and symlinks."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from ocx_cli.errors import AbsolutePathError
from ocx_cli.farm.plan import SymlinkPlan

__all__ = ["execute_symlink_plan"]

logger = logging.getLogger(__name__)


def execute_symlink_plan(
    plan: SymlinkPlan,
    source_root: Path,
    target_root: Path,
    relative_path: str = "",
    created: set[str] | None = None,
) -> None:
    """Materialize *plan* under *target_root*.

    Whole directories and files become symlinks to their *source_root*
    counterparts. Partial directories become real directories, the only way
    to link some children while leaving others out. The farm-relative path of
    every symlink is added to *created* when given.

    I/O errors propagate; the caller owns cleanup of a half-built target.
    """
    source_root = Path(source_root)
    target_root = Path(target_root)
    if not source_root.is_absolute():
        raise AbsolutePathError("sourceRoot", source_root)
    if not target_root.is_absolute():
        raise AbsolutePathError("targetRoot", target_root)

    prefix = f"{relative_path}/" if relative_path else ""

    for name in plan.whole_dirs:
        os.symlink(source_root / name, target_root / name, target_is_directory=True)
        if created is not None:
            created.add(f"{prefix}{name}")

    for name in plan.files:
        os.symlink(source_root / name, target_root / name)
        if created is not None:
            created.add(f"{prefix}{name}")

    for name, nested in plan.partial_dirs.items():
        target = target_root / name
        target.mkdir(parents=True, exist_ok=True)
        execute_symlink_plan(nested, source_root / name, target, f"{prefix}{name}", created)

    logger.debug(
        "Linked %d dirs, %d files under %s",
        len(plan.whole_dirs),
        len(plan.files),
        relative_path or ".",
    )
