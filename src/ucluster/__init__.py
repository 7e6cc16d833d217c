"""ucluster package bootstrap.

Resolves the configuration used to bootstrap unmanaged (local) Kubernetes
clusters from defaults, a YAML file, the environment and CLI arguments.
"""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml``.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
