"""Utilities for loading environment variables from .env files."""

from __future__ import annotations

import os
from typing import Optional

from .logger import logger


def load_env(path: str = ".env") -> None:
    """Populate :data:`os.environ` with values from a ``.env`` file.

    Existing environment variables are not overridden. Lines beginning with
    ``#`` or without an ``=`` are ignored. Values wrapped in single or double
    quotes are unwrapped before assignment.
    """
    if not os.path.exists(path):
        return
    try:
        with open(path, "r", encoding="utf-8") as file:
            for raw in file:
                line = raw.strip()
                if not line or line.startswith("#") or "=" not in line:
                    continue
                key, value = line.split("=", 1)
                key = key.strip()
                value = value.strip().strip('"').strip("'")
                if key and key not in os.environ:
                    os.environ[key] = value
    except OSError as exc:
        logger.warning("Unable to read %s: %s", path, exc)


def env_str(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip()


def env_int(key: str, default: int) -> int:
    raw = env_str(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (expected an integer); using %s", key, raw, default)
        return default


def env_float(key: str, default: Optional[float]) -> Optional[float]:
    raw = env_str(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring %s=%r (expected a number); using %s", key, raw, default)
        return default


__all__ = ["load_env", "env_str", "env_int", "env_float"]
