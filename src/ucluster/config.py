"""Configuration resolver for unmanaged clusters.

The effective configuration is assembled from four sources:

1. Built-in defaults.
2. A YAML configuration file named by the ``ClusterConfigFile`` argument.
3. Environment variables named after each field, e.g. ``TANZU_POD_CIDR``.
4. Explicit command arguments keyed by canonical field name.

Explicit arguments override the environment, which overrides the file. The
defaults are a fallback: they only fill fields that are still empty once the
other three sources have been consulted. The resolved configuration is an
immutable dataclass handed to the cluster bootstrap code.
"""
from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from .errors import ConfigError
from .mappings import InstallPackageMapping, MappingError, PortMapping
from .setters import SETTERS, FieldKind, ResolutionSources

LOGGER = logging.getLogger(__name__)

CLUSTER_CONFIG_FILE = "ClusterConfigFile"
CLUSTER_NAME = "ClusterName"
KUBECONFIG_PATH = "KubeconfigPath"
EXISTING_CLUSTER_KUBECONFIG = "ExistingClusterKubeconfig"
NODE_IMAGE = "NodeImage"
PROVIDER = "Provider"
PROVIDER_CONFIGURATION = "ProviderConfiguration"
CNI = "Cni"
CNI_CONFIGURATION = "CniConfiguration"
POD_CIDR = "PodCidr"
SERVICE_CIDR = "ServiceCidr"
TKR_LOCATION = "TkrLocation"
ADDITIONAL_PACKAGE_REPOS = "AdditionalPackageRepos"
PORTS_TO_FORWARD = "PortsToForward"
INSTALL_PACKAGES = "InstallPackages"
SKIP_PREFLIGHT = "SkipPreflight"
CONTROL_PLANE_NODE_COUNT = "ControlPlaneNodeCount"
WORKER_NODE_COUNT = "WorkerNodeCount"
LOG_FILE = "LogFile"
TTY = "Tty"

DEFAULT_VALUES: Mapping[str, object] = MappingProxyType(
    {
        TKR_LOCATION: "projects.registry.vmware.com/tce/tkr:v0.17.0",
        PROVIDER: "kind",
        CNI: "antrea",
        POD_CIDR: "10.244.0.0/16",
        SERVICE_CIDR: "10.96.0.0/16",
        TTY: "true",
        CONTROL_PLANE_NODE_COUNT: "1",
        WORKER_NODE_COUNT: "0",
        ADDITIONAL_PACKAGE_REPOS: ("projects.registry.vmware.com/tce/main:v0.11.0",),
    }
)


@dataclass(frozen=True)
class FieldSpec:
    """Binds a canonical field name to a dataclass attribute and semantic type."""

    name: str
    attribute: str
    kind: FieldKind


FIELDS: tuple[FieldSpec, ...] = (
    FieldSpec(CLUSTER_NAME, "cluster_name", FieldKind.STRING),
    FieldSpec(KUBECONFIG_PATH, "kubeconfig_path", FieldKind.STRING),
    FieldSpec(EXISTING_CLUSTER_KUBECONFIG, "existing_cluster_kubeconfig", FieldKind.STRING),
    FieldSpec(NODE_IMAGE, "node_image", FieldKind.STRING),
    FieldSpec(PROVIDER, "provider", FieldKind.STRING),
    FieldSpec(PROVIDER_CONFIGURATION, "provider_configuration", FieldKind.MAPPING),
    FieldSpec(CNI, "cni", FieldKind.STRING),
    FieldSpec(CNI_CONFIGURATION, "cni_configuration", FieldKind.MAPPING),
    FieldSpec(POD_CIDR, "pod_cidr", FieldKind.STRING),
    FieldSpec(SERVICE_CIDR, "service_cidr", FieldKind.STRING),
    FieldSpec(TKR_LOCATION, "tkr_location", FieldKind.STRING),
    FieldSpec(ADDITIONAL_PACKAGE_REPOS, "additional_package_repos", FieldKind.STRING_LIST),
    FieldSpec(PORTS_TO_FORWARD, "ports_to_forward", FieldKind.PORT_MAPPINGS),
    FieldSpec(INSTALL_PACKAGES, "install_packages", FieldKind.PACKAGE_MAPPINGS),
    FieldSpec(SKIP_PREFLIGHT, "skip_preflight", FieldKind.BOOL),
    FieldSpec(CONTROL_PLANE_NODE_COUNT, "control_plane_node_count", FieldKind.STRING),
    FieldSpec(WORKER_NODE_COUNT, "worker_node_count", FieldKind.STRING),
    FieldSpec(LOG_FILE, "log_file", FieldKind.STRING),
    FieldSpec(TTY, "tty", FieldKind.STRING),
)


@dataclass(frozen=True)
class ClusterConfig:
    """Resolved settings used to create an unmanaged cluster.

    Attributes cannot be reassigned, but the provider and CNI configuration
    maps are plain dictionaries passed through opaquely, so instances are not
    hashable.
    """

    __hash__ = None  # type: ignore[assignment]

    cluster_name: str = ""
    kubeconfig_path: str = ""
    existing_cluster_kubeconfig: str = ""
    node_image: str = ""
    provider: str = ""
    provider_configuration: dict[str, Any] = field(default_factory=dict)
    cni: str = ""
    cni_configuration: dict[str, Any] = field(default_factory=dict)
    pod_cidr: str = ""
    service_cidr: str = ""
    tkr_location: str = ""
    additional_package_repos: tuple[str, ...] = ()
    ports_to_forward: tuple[PortMapping, ...] = ()
    install_packages: tuple[InstallPackageMapping, ...] = ()
    skip_preflight: bool = False
    control_plane_node_count: str = ""
    worker_node_count: str = ""
    log_file: str = ""
    tty: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a YAML-serialisable mapping keyed by canonical field name."""
        data: dict[str, object] = {}
        for spec in FIELDS:
            value = getattr(self, spec.attribute)
            if spec.kind in (FieldKind.PORT_MAPPINGS, FieldKind.PACKAGE_MAPPINGS):
                data[spec.name] = [item.to_dict() for item in value]
            elif spec.kind is FieldKind.STRING_LIST:
                data[spec.name] = list(value)
            elif spec.kind is FieldKind.MAPPING:
                data[spec.name] = dict(value)
            else:
                data[spec.name] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object], *, source: str = "mapping") -> ClusterConfig:
        """Build a configuration from a mapping keyed by canonical field name."""
        known = {spec.name for spec in FIELDS}
        unknown = sorted(str(key) for key in data if key not in known)
        if unknown:
            LOGGER.debug("Ignoring unknown configuration keys in %s: %s", source, unknown)

        values: dict[str, object] = {}
        for spec in FIELDS:
            raw = data.get(spec.name)
            if raw is None:
                continue
            values[spec.attribute] = _decode_value(spec, raw, source)
        return cls(**values)  # type: ignore[arg-type]


def initialize_configuration(
    command_args: Mapping[str, object],
    *,
    env: Mapping[str, str] | None = None,
    defaults: Mapping[str, object] | None = None,
    home: Path | None = None,
) -> ClusterConfig:
    """Determine the effective configuration for cluster creation.

    *env* defaults to the process environment and *defaults* to
    :data:`DEFAULT_VALUES`. *home* is only consulted when
    ``ExistingClusterKubeconfig`` starts with ``~/``.
    """
    config = ClusterConfig()
    config_file = command_args.get(CLUSTER_CONFIG_FILE)
    if isinstance(config_file, (str, os.PathLike)) and str(config_file):
        config = load_config_file(Path(config_file))

    sources = ResolutionSources(
        command_args=command_args,
        env=os.environ if env is None else env,
        defaults=DEFAULT_VALUES if defaults is None else defaults,
    )

    resolved: dict[str, object] = {}
    for spec in FIELDS:
        setter = SETTERS.get(spec.kind)
        if setter is None:
            continue
        resolved[spec.attribute] = setter(getattr(config, spec.attribute), spec.name, sources)
    config = dataclasses.replace(config, **resolved)  # type: ignore[arg-type]

    if not config.cluster_name:
        raise ConfigError("cluster name must be provided")

    config = dataclasses.replace(
        config,
        existing_cluster_kubeconfig=expand_home(config.existing_cluster_kubeconfig, home),
    )
    LOGGER.debug("Resolved configuration for cluster %s", config.cluster_name)
    return config


def load_config_file(path: Path) -> ClusterConfig:
    """Read a YAML configuration file into a :class:`ClusterConfig`."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed reading config file {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Configuration at {path} was invalid: {exc}") from exc
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    LOGGER.debug("Loaded configuration file %s", path)
    return ClusterConfig.from_dict(data, source=f"file:{path}")


def resolve_home(home: Path | None = None) -> Path:
    """Return *home*, falling back to the current user's home directory."""
    if home is not None:
        return home
    try:
        return Path.home()
    except RuntimeError as exc:
        raise ConfigError(f"Failed to resolve the user home directory: {exc}") from exc


def expand_home(path: str, home: Path | None = None) -> str:
    """Expand a leading ``~/`` in *path* against the home directory."""
    if not path.startswith("~/"):
        return path
    return str(resolve_home(home) / path[2:])


def _decode_value(spec: FieldSpec, raw: object, source: str) -> object:
    label = f"{source}:{spec.name}"
    if spec.kind is FieldKind.STRING:
        if isinstance(raw, bool):
            return "true" if raw else "false"
        if isinstance(raw, (str, int, float)):
            return str(raw)
        raise ConfigError(f"Expected {label} to be a string. Got {type(raw).__name__}.")
    if spec.kind is FieldKind.BOOL:
        if not isinstance(raw, bool):
            raise ConfigError(f"Expected {label} to be a boolean. Got {type(raw).__name__}.")
        return raw
    if spec.kind is FieldKind.MAPPING:
        return _as_dict(raw, label)

    items = _as_sequence(raw, label)
    if spec.kind is FieldKind.STRING_LIST:
        for item in items:
            if isinstance(item, (Mapping, list)):
                raise ConfigError(f"Expected {label} to contain strings.")
        return tuple(str(item) for item in items)

    try:
        if spec.kind is FieldKind.PORT_MAPPINGS:
            return tuple(PortMapping.from_dict(_as_dict(item, label)) for item in items)
        return tuple(InstallPackageMapping.from_dict(_as_dict(item, label)) for item in items)
    except MappingError as exc:
        raise ConfigError(f"Invalid entry in {label}: {exc}") from exc


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _as_dict(value: object, label: str) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, Any] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "CLUSTER_CONFIG_FILE",
    "DEFAULT_VALUES",
    "FIELDS",
    "ClusterConfig",
    "ConfigError",
    "FieldSpec",
    "expand_home",
    "initialize_configuration",
    "load_config_file",
    "resolve_home",
]
