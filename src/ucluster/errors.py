"""Exceptions shared across the configuration engine."""
from __future__ import annotations


class ConfigError(RuntimeError):
    """Raised when configuration cannot be resolved, loaded or persisted."""


__all__ = ["ConfigError"]
