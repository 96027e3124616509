"""CLI command modules for ocx."""

from . import ghost

__all__ = ["ghost"]
