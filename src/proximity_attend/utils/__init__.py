"""Shared helpers: layered logging, ``.env`` loading and progress display."""
