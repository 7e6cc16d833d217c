"""Typer-powered command line for ``ucluster``.

The CLI is a thin layer over :func:`ucluster.config.initialize_configuration`:
it turns flags into the command-argument mapping keyed by canonical field
names, resolves the configuration and either renders it to disk
(``configure``) or prints it (``show``).
"""
from __future__ import annotations

import contextlib
import json
import logging
import logging.handlers
import textwrap
from collections.abc import Iterator, Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import (
    ADDITIONAL_PACKAGE_REPOS,
    CLUSTER_CONFIG_FILE,
    CLUSTER_NAME,
    CNI,
    CONTROL_PLANE_NODE_COUNT,
    EXISTING_CLUSTER_KUBECONFIG,
    INSTALL_PACKAGES,
    LOG_FILE,
    NODE_IMAGE,
    POD_CIDR,
    PORTS_TO_FORWARD,
    PROVIDER,
    SERVICE_CIDR,
    SKIP_PREFLIGHT,
    TKR_LOCATION,
    TTY,
    WORKER_NODE_COUNT,
    ClusterConfig,
    initialize_configuration,
)
from .errors import ConfigError
from .exit_codes import ExitCode
from .mappings import MappingError, parse_install_package_mappings, parse_port_maps
from .persistence import cluster_config_path, render_config_to_file

LOGGER = logging.getLogger(__name__)
_PENDING_RECORDS_CAPACITY = 1000

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config",
    "-f",
    dir_okay=False,
    help="Configuration file to load before applying environment and flags.",
)
EXISTING_KUBECONFIG_OPTION = typer.Option(
    None,
    "--existing-cluster-kubeconfig",
    "-e",
    help="Use an existing cluster's kubeconfig instead of creating one.",
)
NODE_IMAGE_OPTION = typer.Option(
    None,
    "--node-image",
    help="Host OS image for the cluster nodes (overrides the TKR default).",
)
PROVIDER_OPTION = typer.Option(
    None,
    "--provider",
    help="Infrastructure provider to use (kind|minikube|none).",
)
CNI_OPTION = typer.Option(None, "--cni", help="CNI plugin to install.")
POD_CIDR_OPTION = typer.Option(None, "--pod-cidr", help="CIDR range for pod IP addresses.")
SERVICE_CIDR_OPTION = typer.Option(
    None,
    "--service-cidr",
    help="CIDR range for service IP addresses.",
)
TKR_OPTION = typer.Option(
    None,
    "--tkr",
    help="Location of the Tanzu Kubernetes Release to bootstrap from.",
)
ADDITIONAL_REPO_OPTION = typer.Option(
    None,
    "--additional-repo",
    help="Extra package repository to install (repeatable).",
)
PORT_MAP_OPTION = typer.Option(
    None,
    "--port-map",
    "-p",
    metavar="[ADDR:]CONTAINER[:HOST][/PROTO]",
    help="Port to forward into the cluster (repeatable).",
)
INSTALL_PACKAGE_OPTION = typer.Option(
    None,
    "--install-package",
    metavar="NAME[:VERSION[:CONFIG[:NAMESPACE]]]",
    help="Package to install after bootstrap (repeatable, comma-separated).",
)
SKIP_PREFLIGHT_OPTION = typer.Option(
    False,
    "--skip-preflight",
    help="Skip the preflight checks before creating the cluster.",
)
CONTROL_PLANE_COUNT_OPTION = typer.Option(
    None,
    "--control-plane-node-count",
    help="Number of control plane nodes.",
)
WORKER_COUNT_OPTION = typer.Option(
    None,
    "--worker-node-count",
    help="Number of worker nodes.",
)
LOG_FILE_OPTION = typer.Option(
    None,
    "--log-file",
    help="Also write debug logs to this file.",
)
TTY_DISABLE_OPTION = typer.Option(
    False,
    "--tty-disable",
    help="Disable log stylization and colours.",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Show debug logging on stderr.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Unmanaged cluster configuration tool.

        Resolves cluster settings from built-in defaults, a YAML file,
        TANZU_* environment variables and flags (in ascending precedence).
        """
    ).strip(),
)


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the ucluster version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"ucluster {__version__}")
        raise typer.Exit(code=ExitCode.OK)
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


@app.command()
def configure(
    cluster_name: str = typer.Argument(..., help="Name of the cluster."),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Where to write the file (defaults to ~/.config/tanzu/tkg/unmanaged/NAME.yaml).",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    existing_cluster_kubeconfig: str | None = EXISTING_KUBECONFIG_OPTION,
    node_image: str | None = NODE_IMAGE_OPTION,
    provider: str | None = PROVIDER_OPTION,
    cni: str | None = CNI_OPTION,
    pod_cidr: str | None = POD_CIDR_OPTION,
    service_cidr: str | None = SERVICE_CIDR_OPTION,
    tkr: str | None = TKR_OPTION,
    additional_repo: list[str] | None = ADDITIONAL_REPO_OPTION,
    port_map: list[str] | None = PORT_MAP_OPTION,
    install_package: list[str] | None = INSTALL_PACKAGE_OPTION,
    skip_preflight: bool = SKIP_PREFLIGHT_OPTION,
    control_plane_node_count: str | None = CONTROL_PLANE_COUNT_OPTION,
    worker_node_count: str | None = WORKER_COUNT_OPTION,
    log_file: str | None = LOG_FILE_OPTION,
    tty_disable: bool = TTY_DISABLE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Resolve a cluster configuration and write it to a new file."""
    _configure_logging(verbose, tty_disable=tty_disable)
    args = _build_command_args(
        cluster_name=cluster_name,
        config_file=config_file,
        existing_cluster_kubeconfig=existing_cluster_kubeconfig,
        node_image=node_image,
        provider=provider,
        cni=cni,
        pod_cidr=pod_cidr,
        service_cidr=service_cidr,
        tkr=tkr,
        additional_repo=additional_repo,
        port_map=port_map,
        install_package=install_package,
        skip_preflight=skip_preflight,
        control_plane_node_count=control_plane_node_count,
        worker_node_count=worker_node_count,
        log_file=log_file,
        tty_disable=tty_disable,
    )
    with _buffered_records() as pending:
        config = _resolve(args)

    with _file_logging(config.log_file, pending):
        try:
            target = output or cluster_config_path(config.cluster_name)
            render_config_to_file(target, config)
        except ConfigError as exc:
            _command_error(str(exc), rc=ExitCode.ENVIRONMENT)
        LOGGER.info("Rendered configuration for %s to %s", config.cluster_name, target)
        _output_console(config).print(f"Wrote configuration to {target}", soft_wrap=True)


@app.command()
def show(
    cluster_name: str | None = typer.Argument(None, help="Name of the cluster."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    existing_cluster_kubeconfig: str | None = EXISTING_KUBECONFIG_OPTION,
    node_image: str | None = NODE_IMAGE_OPTION,
    provider: str | None = PROVIDER_OPTION,
    cni: str | None = CNI_OPTION,
    pod_cidr: str | None = POD_CIDR_OPTION,
    service_cidr: str | None = SERVICE_CIDR_OPTION,
    tkr: str | None = TKR_OPTION,
    additional_repo: list[str] | None = ADDITIONAL_REPO_OPTION,
    port_map: list[str] | None = PORT_MAP_OPTION,
    install_package: list[str] | None = INSTALL_PACKAGE_OPTION,
    skip_preflight: bool = SKIP_PREFLIGHT_OPTION,
    control_plane_node_count: str | None = CONTROL_PLANE_COUNT_OPTION,
    worker_node_count: str | None = WORKER_COUNT_OPTION,
    log_file: str | None = LOG_FILE_OPTION,
    tty_disable: bool = TTY_DISABLE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    _configure_logging(verbose, tty_disable=tty_disable)
    args = _build_command_args(
        cluster_name=cluster_name,
        config_file=config_file,
        existing_cluster_kubeconfig=existing_cluster_kubeconfig,
        node_image=node_image,
        provider=provider,
        cni=cni,
        pod_cidr=pod_cidr,
        service_cidr=service_cidr,
        tkr=tkr,
        additional_repo=additional_repo,
        port_map=port_map,
        install_package=install_package,
        skip_preflight=skip_preflight,
        control_plane_node_count=control_plane_node_count,
        worker_node_count=worker_node_count,
        log_file=log_file,
        tty_disable=tty_disable,
    )
    with _buffered_records() as pending:
        config = _resolve(args)
    data = config.to_dict()

    with _file_logging(config.log_file, pending):
        out = _output_console(config)
        if json_output:
            out.print_json(data=data)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = json.dumps(value, indent=2) if value else ""
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        out.print(table)


def _build_command_args(
    *,
    cluster_name: str | None,
    config_file: Path | None,
    existing_cluster_kubeconfig: str | None,
    node_image: str | None,
    provider: str | None,
    cni: str | None,
    pod_cidr: str | None,
    service_cidr: str | None,
    tkr: str | None,
    additional_repo: Sequence[str] | None,
    port_map: Sequence[str] | None,
    install_package: Sequence[str] | None,
    skip_preflight: bool,
    control_plane_node_count: str | None,
    worker_node_count: str | None,
    log_file: str | None,
    tty_disable: bool,
) -> dict[str, object]:
    """Translate CLI flags into the command-argument mapping."""
    try:
        ports = parse_port_maps(port_map or [])
        packages = parse_install_package_mappings(install_package or [])
    except MappingError as exc:
        _command_error(str(exc), rc=ExitCode.VALIDATION)

    args: dict[str, object] = {
        CLUSTER_CONFIG_FILE: str(config_file) if config_file else "",
        CLUSTER_NAME: cluster_name,
        EXISTING_CLUSTER_KUBECONFIG: existing_cluster_kubeconfig,
        NODE_IMAGE: node_image,
        PROVIDER: provider,
        CNI: cni,
        POD_CIDR: pod_cidr,
        SERVICE_CIDR: service_cidr,
        TKR_LOCATION: tkr,
        ADDITIONAL_PACKAGE_REPOS: list(additional_repo or []),
        PORTS_TO_FORWARD: ports,
        INSTALL_PACKAGES: packages,
        SKIP_PREFLIGHT: skip_preflight,
        CONTROL_PLANE_NODE_COUNT: control_plane_node_count,
        WORKER_NODE_COUNT: worker_node_count,
        LOG_FILE: log_file,
    }
    if tty_disable:
        args[TTY] = "false"
    return {key: value for key, value in args.items() if value is not None}


def _resolve(args: dict[str, object]) -> ClusterConfig:
    try:
        return initialize_configuration(args)
    except ConfigError as exc:
        _command_error(str(exc), rc=ExitCode.VALIDATION)


def _configure_logging(verbose: bool, *, tty_disable: bool = False) -> None:
    handler = RichHandler(
        console=Console(stderr=True, no_color=tty_disable),
        show_path=False,
        markup=False,
    )
    handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.basicConfig(level=logging.DEBUG, format="%(message)s", handlers=[handler], force=True)


@contextlib.contextmanager
def _buffered_records() -> Iterator[logging.handlers.MemoryHandler]:
    """Hold log records emitted before the log file is known."""
    pending = logging.handlers.MemoryHandler(
        capacity=_PENDING_RECORDS_CAPACITY,
        flushLevel=logging.CRITICAL + 1,
    )
    root = logging.getLogger()
    root.addHandler(pending)
    try:
        yield pending
    finally:
        root.removeHandler(pending)


@contextlib.contextmanager
def _file_logging(log_file: str, pending: logging.handlers.MemoryHandler) -> Iterator[None]:
    """Mirror log records into *log_file*, starting with the *pending* ones."""
    if not log_file:
        pending.close()
        yield
        return

    path = Path(log_file).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        pending.close()
        LOGGER.warning("Log file %s is not writable, continuing without it: %s", path, exc)
        yield
        return

    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    )
    pending.setTarget(handler)
    pending.close()
    root = logging.getLogger()
    root.addHandler(handler)
    try:
        yield
    finally:
        root.removeHandler(handler)
        handler.close()


def _output_console(config: ClusterConfig) -> Console:
    if config.tty == "false":
        return Console(no_color=True, emoji=False, highlight=False)
    return console


def _command_error(message: str, *, rc: int = ExitCode.VALIDATION) -> NoReturn:
    """Report *message* on stderr and terminate the command."""
    err_console.print(f"[red]{escape(message)}[/red]", highlight=False, soft_wrap=True)
    raise typer.Exit(code=rc)


__all__ = ["app"]
