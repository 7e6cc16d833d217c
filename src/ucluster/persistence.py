"""Read and write cluster configuration files.

Generated configurations live under ``~/.config/tanzu/tkg/unmanaged`` as one
YAML document per cluster named ``<cluster-name>.yaml``. Writing never
replaces an existing file.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from .config import ClusterConfig, load_config_file, resolve_home
from .errors import ConfigError

LOGGER = logging.getLogger(__name__)

CONFIG_DIR = ".config"
TANZU_CONFIG_DIR = "tanzu"
TKG_CONFIG_DIR = "tkg"
UNMANAGED_CONFIG_DIR = "unmanaged"
YAML_INDENT = 2


def get_tanzu_config_path(home: Path | None = None) -> Path:
    """Return the tanzu config directory, e.g. ``~/.config/tanzu``."""
    return resolve_home(home) / CONFIG_DIR / TANZU_CONFIG_DIR


def get_tanzu_tkg_config_path(home: Path | None = None) -> Path:
    """Return the tanzu tkg config directory, e.g. ``~/.config/tanzu/tkg``."""
    return get_tanzu_config_path(home) / TKG_CONFIG_DIR


def get_unmanaged_config_path(home: Path | None = None) -> Path:
    """Return the unmanaged cluster config directory."""
    return get_tanzu_tkg_config_path(home) / UNMANAGED_CONFIG_DIR


def cluster_config_path(cluster_name: str, home: Path | None = None) -> Path:
    """Return the conventional file path for *cluster_name*'s configuration."""
    name = cluster_name.strip()
    if not name:
        raise ConfigError("Cluster name must be a non-empty string.")
    return get_unmanaged_config_path(home) / f"{name}.yaml"


class _IndentedDumper(yaml.SafeDumper):
    """Safe dumper that indents block sequences under their parent key."""

    def increase_indent(self, flow: bool = False, indentless: bool = False) -> None:
        return super().increase_indent(flow, False)


def dump_config(config: ClusterConfig) -> str:
    """Render *config* as a YAML document."""
    return yaml.dump(
        config.to_dict(),
        Dumper=_IndentedDumper,
        indent=YAML_INDENT,
        sort_keys=False,
        default_flow_style=False,
    )


def render_config_to_file(path: Path, config: ClusterConfig) -> None:
    """Serialise *config* to *path*, which must not exist yet."""
    if path.exists():
        raise ConfigError(f"Failed to create config file at {path}, does it already exist?")

    try:
        rendered = dump_config(config)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to render configuration file: {exc}") from exc

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        # "x" refuses to clobber a file created after the existence check.
        with path.open("x", encoding="utf-8") as handle:
            handle.write(rendered)
        os.chmod(path, 0o644)
    except FileExistsError as exc:
        raise ConfigError(
            f"Failed to create config file at {path}, does it already exist?"
        ) from exc
    except OSError as exc:
        raise ConfigError(f"Failed to write config file {path}: {exc}") from exc
    LOGGER.debug("Wrote configuration for %s to %s", config.cluster_name, path)


def render_file_to_config(path: Path) -> ClusterConfig:
    """Read the configuration stored at *path*."""
    return load_config_file(path)


__all__ = [
    "cluster_config_path",
    "dump_config",
    "get_tanzu_config_path",
    "get_tanzu_tkg_config_path",
    "get_unmanaged_config_path",
    "render_config_to_file",
    "render_file_to_config",
]
