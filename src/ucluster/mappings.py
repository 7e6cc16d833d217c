"""Parsers for the compact mapping strings accepted on the command line.

Two encodings are supported:

* port forwards: ``[listenAddress:]containerPort[:hostPort][/tcp|udp|sctp]``
* package installs: ``name[:version[:config[:namespace]]]``, several mappings
  joined with ``,``.
"""
from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

PROTOCOL_TCP = "tcp"
PROTOCOL_UDP = "udp"
PROTOCOL_SCTP = "sctp"
ALLOWED_PROTOCOLS = (PROTOCOL_TCP, PROTOCOL_UDP, PROTOCOL_SCTP)

PORT_MAP_FORMAT = "[listenAddress:]containerPort[:hostPort][/tcp|udp|sctp]"
INSTALL_PACKAGE_FORMAT = "name[:version[:config[:namespace]]]"

_INTEGER_RE = re.compile(r"[+-]?[0-9]+")
_MAX_PACKAGE_PARTS = 4


class MappingError(ValueError):
    """Raised when a mapping string cannot be parsed."""


@dataclass(frozen=True)
class PortMapping:
    """A port forwarded from the host into the cluster."""

    container_port: int
    host_port: int = 0
    listen_address: str = ""
    protocol: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation, omitting unset optional keys."""
        data: dict[str, object] = {}
        if self.listen_address:
            data["ListenAddress"] = self.listen_address
        data["ContainerPort"] = self.container_port
        if self.host_port:
            data["HostPort"] = self.host_port
        if self.protocol:
            data["Protocol"] = self.protocol
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> PortMapping:
        """Build a mapping from its serialised form."""
        container_port = data.get("ContainerPort")
        if container_port is None:
            raise MappingError("Port mapping is missing ContainerPort.")
        protocol = str(data.get("Protocol") or "").lower()
        if protocol and protocol not in ALLOWED_PROTOCOLS:
            raise MappingError(
                f"Failed to parse protocol {protocol!r}, must be tcp, udp, or sctp."
            )
        return cls(
            container_port=_coerce_port(container_port, "ContainerPort"),
            host_port=_coerce_port(data.get("HostPort") or 0, "HostPort"),
            listen_address=str(data.get("ListenAddress") or ""),
            protocol=protocol,
        )


@dataclass(frozen=True)
class InstallPackageMapping:
    """A package to install once the cluster is bootstrapped."""

    name: str
    version: str = ""
    config: str = ""
    namespace: str = ""

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation, omitting unset optional keys."""
        data: dict[str, object] = {"name": self.name}
        for key in ("version", "config", "namespace"):
            value = getattr(self, key)
            if value:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> InstallPackageMapping:
        """Build a mapping from its serialised form."""
        name = str(data.get("name") or "")
        if not name:
            raise MappingError("Install package mapping is missing a name.")
        return cls(
            name=name,
            version=str(data.get("version") or ""),
            config=str(data.get("config") or ""),
            namespace=str(data.get("namespace") or ""),
        )


def parse_port_map(text: str) -> PortMapping:
    """Parse a single port mapping string.

    ``"80"`` maps container port 80, ``"80:8080"`` adds host port 8080 and
    ``"127.0.0.1:80:8080/udp"`` also pins the listen address and protocol.
    """
    protocol = ""
    parts = text.split("/")
    if len(parts) > 2:
        raise MappingError(
            f"Failed to parse port mapping {text!r}, expected {PORT_MAP_FORMAT}."
        )
    if len(parts) == 2:
        protocol = parts[1].lower()
        if protocol not in ALLOWED_PROTOCOLS:
            raise MappingError(
                f"Failed to parse protocol {protocol!r}, must be tcp, udp, or sctp."
            )

    ports = parts[0].split(":")
    listen_address = ""
    host_port = 0
    if len(ports) == 1:
        container_port = _parse_port(ports[0], text)
    elif len(ports) == 2:
        container_port = _parse_port(ports[0], text)
        host_port = _parse_port(ports[1], text)
    elif len(ports) == 3:
        listen_address = ports[0]
        container_port = _parse_port(ports[1], text)
        host_port = _parse_port(ports[2], text)
    else:
        raise MappingError(
            f"Failed to parse port mapping {text!r}, expected {PORT_MAP_FORMAT}."
        )

    return PortMapping(
        container_port=container_port,
        host_port=host_port,
        listen_address=listen_address,
        protocol=protocol,
    )


def parse_port_maps(texts: Iterable[str]) -> list[PortMapping]:
    """Parse every port mapping string, stopping at the first invalid entry."""
    return [parse_port_map(text) for text in texts]


def parse_install_package_mappings(texts: Iterable[str]) -> list[InstallPackageMapping]:
    """Parse install package strings, each possibly holding comma-joined mappings."""
    packages: list[InstallPackageMapping] = []
    for text in texts:
        for mapping in text.split(","):
            packages.append(_parse_install_package(mapping))
    return packages


def _parse_install_package(mapping: str) -> InstallPackageMapping:
    # surrounding whitespace is never part of a field: "a, b" names "b"
    if not mapping.strip():
        raise MappingError(
            f"Malformed empty install package mapping, expected {INSTALL_PACKAGE_FORMAT}."
        )
    parts = [part.strip() for part in mapping.split(":")]
    if len(parts) > _MAX_PACKAGE_PARTS:
        raise MappingError(
            f"Failed to parse install package mapping {mapping!r}: too many parts, "
            f"expected {INSTALL_PACKAGE_FORMAT}."
        )
    if not parts[0]:
        raise MappingError(
            f"Install package mapping {mapping!r} is missing a package name."
        )
    parts.extend([""] * (_MAX_PACKAGE_PARTS - len(parts)))
    name, version, config, namespace = parts
    return InstallPackageMapping(name=name, version=version, config=config, namespace=namespace)


def _parse_port(value: str, text: str) -> int:
    if not _INTEGER_RE.fullmatch(value):
        raise MappingError(
            f"Failed to parse port mapping {text!r}, invalid port provided: {value!r}."
        )
    return int(value, 10)


def _coerce_port(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise MappingError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _INTEGER_RE.fullmatch(value):
        return int(value, 10)
    raise MappingError(f"Invalid integer for {label}: {value!r}.")


__all__ = [
    "ALLOWED_PROTOCOLS",
    "INSTALL_PACKAGE_FORMAT",
    "PORT_MAP_FORMAT",
    "InstallPackageMapping",
    "MappingError",
    "PortMapping",
    "parse_install_package_mappings",
    "parse_port_map",
    "parse_port_maps",
]
