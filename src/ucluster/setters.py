"""Per-type resolution strategies for configuration fields.

Every setter receives the value deserialised from the config file (the base
layer) and returns the resolved value following the same precedence:

1. an explicit, non-empty command argument stored under the canonical name;
2. a non-empty environment variable derived from the canonical name;
3. the base value;
4. the default table, consulted only while the value is still empty.

Setters never fail on environment input. A malformed environment value is
logged and skipped so the next layer can supply the field. Explicit command
arguments are trusted to carry the right type; a mismatch raises
:class:`~ucluster.errors.ConfigError`.
"""
from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum

import yaml

from .errors import ConfigError
from .mappings import (
    InstallPackageMapping,
    MappingError,
    PortMapping,
    parse_install_package_mappings,
    parse_port_map,
    parse_port_maps,
)

LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "TANZU"
_WORD_RE = re.compile(r"[A-Z][^A-Z]*")


class FieldKind(Enum):
    """Semantic type of a configuration field."""

    BOOL = "bool"
    STRING = "string"
    STRING_LIST = "string-list"
    PORT_MAPPINGS = "port-mappings"
    PACKAGE_MAPPINGS = "package-mappings"
    MAPPING = "mapping"


@dataclass(frozen=True)
class ResolutionSources:
    """The runtime sources consulted for every field."""

    command_args: Mapping[str, object]
    env: Mapping[str, str]
    defaults: Mapping[str, object]

    def explicit(self, name: str) -> object | None:
        """Return the command argument for *name*, or ``None`` when absent."""
        return self.command_args.get(name)

    def env_value(self, name: str) -> str:
        """Return the environment value for *name* (empty when unset)."""
        return self.env.get(field_name_to_env_name(name), "")


def field_name_to_env_name(name: str) -> str:
    """Convert a canonical field name into its environment variable name.

    ``PodCidr`` becomes ``TANZU_POD_CIDR``.
    """
    words = [word.upper() for word in _WORD_RE.findall(name)]
    return "_".join([ENV_PREFIX, *words])


def set_bool(current: bool, name: str, sources: ResolutionSources) -> bool:
    """Resolve a boolean field."""
    value = current
    explicit = sources.explicit(name)
    if explicit is not None and not isinstance(explicit, bool):
        raise ConfigError(
            f"Expected {name} to be a boolean. Got {type(explicit).__name__}."
        )

    env_value = sources.env_value(name)
    if explicit:
        value = True
    elif env_value:
        value = _parse_bool(env_value)

    if not value and name in sources.defaults:
        default = sources.defaults[name]
        value = default if isinstance(default, bool) else _parse_bool(str(default))
    return value


def set_string(current: str, name: str, sources: ResolutionSources) -> str:
    """Resolve a string field."""
    value = current
    explicit = sources.explicit(name)
    env_value = sources.env_value(name)
    if explicit is not None and explicit != "":
        if not isinstance(explicit, str):
            raise ConfigError(
                f"Expected {name} to be a string. Got {type(explicit).__name__}."
            )
        value = explicit
    elif env_value:
        value = env_value

    if not value and name in sources.defaults:
        value = str(sources.defaults[name])
    return value


def set_string_list(
    current: tuple[str, ...],
    name: str,
    sources: ResolutionSources,
) -> tuple[str, ...]:
    """Resolve a string sequence field; the winning layer replaces the whole list."""
    value = current
    explicit = _explicit_sequence(name, sources)
    env_value = sources.env_value(name)
    if explicit:
        for item in explicit:
            if not isinstance(item, str):
                raise ConfigError(
                    f"Expected {name} to contain strings. Got {type(item).__name__}."
                )
        value = tuple(explicit)  # type: ignore[arg-type]
    elif env_value:
        value = tuple(env_value.split(","))

    if not value and name in sources.defaults:
        value = tuple(str(item) for item in _default_sequence(name, sources))
    return value


def set_port_mappings(
    current: tuple[PortMapping, ...],
    name: str,
    sources: ResolutionSources,
) -> tuple[PortMapping, ...]:
    """Resolve a port mapping sequence field."""
    value = current
    explicit = _explicit_sequence(name, sources)
    env_value = sources.env_value(name)
    if explicit:
        value = tuple(_as_port_mapping(item, name) for item in explicit)
    elif env_value:
        try:
            value = tuple(parse_port_maps(env_value.split(",")))
        except MappingError as exc:
            LOGGER.debug("Ignoring %s from environment: %s", name, exc)

    if not value and name in sources.defaults:
        value = tuple(
            _as_port_mapping(item, name) for item in _default_sequence(name, sources)
        )
    return value


def set_package_mappings(
    current: tuple[InstallPackageMapping, ...],
    name: str,
    sources: ResolutionSources,
) -> tuple[InstallPackageMapping, ...]:
    """Resolve an install package sequence field."""
    value = current
    explicit = _explicit_sequence(name, sources)
    env_value = sources.env_value(name)
    if explicit:
        value = tuple(_as_package_mappings(explicit, name))
    elif env_value:
        try:
            value = tuple(parse_install_package_mappings([env_value]))
        except MappingError as exc:
            LOGGER.debug("Ignoring %s from environment: %s", name, exc)

    if not value and name in sources.defaults:
        value = tuple(_as_package_mappings(_default_sequence(name, sources), name))
    return value


Setter = Callable[[object, str, ResolutionSources], object]

SETTERS: Mapping[FieldKind, Setter] = {
    FieldKind.BOOL: set_bool,  # type: ignore[dict-item]
    FieldKind.STRING: set_string,  # type: ignore[dict-item]
    FieldKind.STRING_LIST: set_string_list,  # type: ignore[dict-item]
    FieldKind.PORT_MAPPINGS: set_port_mappings,  # type: ignore[dict-item]
    FieldKind.PACKAGE_MAPPINGS: set_package_mappings,  # type: ignore[dict-item]
}


def _parse_bool(raw: str) -> bool:
    try:
        parsed = yaml.safe_load(raw.strip())
    except yaml.YAMLError:
        return False
    if isinstance(parsed, bool):
        return parsed
    # YAML reads 0/1 as integers
    return isinstance(parsed, int) and parsed == 1


def _explicit_sequence(name: str, sources: ResolutionSources) -> Sequence[object]:
    explicit = sources.explicit(name)
    if explicit is None:
        return ()
    if isinstance(explicit, (str, bytes)) or not isinstance(explicit, Sequence):
        raise ConfigError(
            f"Expected {name} to be a sequence. Got {type(explicit).__name__}."
        )
    return explicit


def _default_sequence(name: str, sources: ResolutionSources) -> Sequence[object]:
    default = sources.defaults[name]
    if isinstance(default, (str, bytes)) or not isinstance(default, Sequence):
        raise ConfigError(f"Default for {name} must be a sequence.")
    return default


def _as_port_mapping(item: object, name: str) -> PortMapping:
    if isinstance(item, PortMapping):
        return item
    if isinstance(item, str):
        try:
            return parse_port_map(item)
        except MappingError as exc:
            raise ConfigError(f"Invalid {name} value: {exc}") from exc
    raise ConfigError(
        f"Expected {name} to contain port mappings. Got {type(item).__name__}."
    )


def _as_package_mappings(
    items: Sequence[object],
    name: str,
) -> list[InstallPackageMapping]:
    packages: list[InstallPackageMapping] = []
    for item in items:
        if isinstance(item, InstallPackageMapping):
            packages.append(item)
        elif isinstance(item, str):
            try:
                packages.extend(parse_install_package_mappings([item]))
            except MappingError as exc:
                raise ConfigError(f"Invalid {name} value: {exc}") from exc
        else:
            raise ConfigError(
                f"Expected {name} to contain install package mappings. "
                f"Got {type(item).__name__}."
            )
    return packages


__all__ = [
    "ENV_PREFIX",
    "SETTERS",
    "FieldKind",
    "ResolutionSources",
    "field_name_to_env_name",
    "set_bool",
    "set_package_mappings",
    "set_port_mappings",
    "set_string",
    "set_string_list",
]
