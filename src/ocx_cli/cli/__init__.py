"""Command-line surface for ocx."""
