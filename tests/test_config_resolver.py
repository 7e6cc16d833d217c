"""Configuration resolver tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from ucluster.config import (
    DEFAULT_VALUES,
    FIELDS,
    ClusterConfig,
    ConfigError,
    expand_home,
    initialize_configuration,
    load_config_file,
)
from ucluster.mappings import InstallPackageMapping, PortMapping


def _write(path: Path, text: str) -> Path:
    path.write_text(text, encoding="utf-8")
    return path


def test_defaults_apply_when_only_name_given() -> None:
    """Defaults fill every registered field left empty."""
    config = initialize_configuration({"ClusterName": "x"}, env={})

    assert config.cluster_name == "x"
    assert config.provider == "kind"
    assert config.cni == "antrea"
    assert config.pod_cidr == "10.244.0.0/16"
    assert config.service_cidr == "10.96.0.0/16"
    assert config.tkr_location == DEFAULT_VALUES["TkrLocation"]
    assert config.control_plane_node_count == "1"
    assert config.worker_node_count == "0"
    assert config.tty == "true"
    assert config.additional_package_repos == ("projects.registry.vmware.com/tce/main:v0.11.0",)
    assert config.node_image == ""
    assert config.ports_to_forward == ()
    assert config.skip_preflight is False


def test_missing_cluster_name_raises() -> None:
    """A cluster name is mandatory after all sources are merged."""
    with pytest.raises(ConfigError, match="cluster name must be provided"):
        initialize_configuration({}, env={})


def test_string_field_precedence_across_layers(tmp_path: Path) -> None:
    """Args beat env, env beats file, file beats defaults."""
    cfg = _write(tmp_path / "cluster.yaml", "ClusterName: from-file\nPodCidr: 3.0.0.0/8\n")
    env = {"TANZU_POD_CIDR": "2.0.0.0/8"}

    def resolve(args: dict[str, object], env: dict[str, str]) -> str:
        return initialize_configuration({"ClusterConfigFile": str(cfg), **args}, env=env).pod_cidr

    assert resolve({"PodCidr": "1.0.0.0/8"}, env) == "1.0.0.0/8"
    assert resolve({}, env) == "2.0.0.0/8"
    assert resolve({}, {}) == "3.0.0.0/8"

    no_cidr = _write(tmp_path / "bare.yaml", "ClusterName: bare\n")
    config = initialize_configuration({"ClusterConfigFile": str(no_cidr)}, env={})
    assert config.pod_cidr == "10.244.0.0/16"


def test_cluster_name_from_file_and_env(tmp_path: Path) -> None:
    """The cluster name may come from any layer."""
    cfg = _write(tmp_path / "cluster.yaml", "ClusterName: file-name\n")
    config = initialize_configuration({"ClusterConfigFile": str(cfg)}, env={})
    assert config.cluster_name == "file-name"

    config = initialize_configuration({}, env={"TANZU_CLUSTER_NAME": "env-name"})
    assert config.cluster_name == "env-name"


def test_sequences_are_replaced_not_merged(tmp_path: Path) -> None:
    """The winning layer supplies the whole sequence."""
    cfg = _write(
        tmp_path / "cluster.yaml",
        "ClusterName: seq\n"
        "AdditionalPackageRepos:\n"
        "  - b\n"
        "  - c\n",
    )
    args = {"ClusterConfigFile": str(cfg), "AdditionalPackageRepos": ["a"]}
    assert initialize_configuration(args, env={}).additional_package_repos == ("a",)

    args = {"ClusterConfigFile": str(cfg)}
    assert initialize_configuration(args, env={}).additional_package_repos == ("b", "c")


def test_file_values_are_decoded(tmp_path: Path) -> None:
    """Typed file values become records, tuples and booleans."""
    cfg = _write(
        tmp_path / "cluster.yaml",
        "ClusterName: typed\n"
        "ControlPlaneNodeCount: 3\n"
        "SkipPreflight: true\n"
        "ProviderConfiguration:\n"
        "  rawKindConfig: |\n"
        "    kind: Cluster\n"
        "PortsToForward:\n"
        "  - ContainerPort: 80\n"
        "    HostPort: 8080\n"
        "    Protocol: TCP\n"
        "InstallPackages:\n"
        "  - name: cert-manager\n"
        "    version: 1.6.1\n"
        "SomethingNew: ignored\n",
    )
    config = initialize_configuration({"ClusterConfigFile": str(cfg)}, env={})

    assert config.control_plane_node_count == "3"
    assert config.skip_preflight is True
    assert config.provider_configuration == {"rawKindConfig": "kind: Cluster\n"}
    assert config.ports_to_forward == (
        PortMapping(container_port=80, host_port=8080, protocol="tcp"),
    )
    assert config.install_packages == (
        InstallPackageMapping(name="cert-manager", version="1.6.1"),
    )


def test_env_mapping_errors_fall_through(tmp_path: Path) -> None:
    """Malformed env mappings are ignored and the file value survives."""
    cfg = _write(
        tmp_path / "cluster.yaml",
        "ClusterName: lenient\n"
        "PortsToForward:\n"
        "  - ContainerPort: 22\n",
    )
    env = {
        "TANZU_PORTS_TO_FORWARD": "80/xyz",
        "TANZU_INSTALL_PACKAGES": "a:b:c:d:e",
        "TANZU_SKIP_PREFLIGHT": "not-a-bool",
    }
    config = initialize_configuration({"ClusterConfigFile": str(cfg)}, env=env)

    assert config.ports_to_forward == (PortMapping(container_port=22),)
    assert config.install_packages == ()
    assert config.skip_preflight is False


def test_explicit_mapping_errors_are_fatal() -> None:
    """Bad mapping strings passed as arguments abort resolution."""
    with pytest.raises(ConfigError, match="PortsToForward"):
        initialize_configuration({"ClusterName": "x", "PortsToForward": ["a:b:c:d"]}, env={})
    with pytest.raises(ConfigError, match="InstallPackages"):
        initialize_configuration({"ClusterName": "x", "InstallPackages": [""]}, env={})


def test_missing_config_file_raises(tmp_path: Path) -> None:
    """A named config file that cannot be read is an error."""
    with pytest.raises(ConfigError, match="Failed reading config file"):
        initialize_configuration({"ClusterConfigFile": str(tmp_path / "nope.yaml")}, env={})


@pytest.mark.parametrize(
    "text",
    ["ClusterName: [unterminated\n", "- a list\n", "PortsToForward: 80\n", "SkipPreflight: 3\n"],
)
def test_malformed_config_file_raises(tmp_path: Path, text: str) -> None:
    """Invalid YAML or mistyped values abort resolution."""
    cfg = _write(tmp_path / "bad.yaml", text)
    with pytest.raises(ConfigError):
        initialize_configuration({"ClusterConfigFile": str(cfg), "ClusterName": "x"}, env={})


def test_empty_config_file_path_is_ignored() -> None:
    """An empty ClusterConfigFile argument means no file layer."""
    config = initialize_configuration({"ClusterConfigFile": "", "ClusterName": "x"}, env={})
    assert config.cluster_name == "x"


def test_injected_defaults_replace_builtin_table() -> None:
    """Callers can supply their own default table."""
    config = initialize_configuration(
        {"ClusterName": "x"},
        env={},
        defaults={"Cni": "calico", "SkipPreflight": True},
    )
    assert config.cni == "calico"
    assert config.provider == ""
    assert config.skip_preflight is True
    assert config.additional_package_repos == ()


def test_existing_kubeconfig_tilde_expanded(tmp_path: Path) -> None:
    """A leading ``~/`` is expanded against the home directory, from any layer."""
    home = tmp_path / "home"
    config = initialize_configuration(
        {"ClusterName": "x", "ExistingClusterKubeconfig": "~/kc.yaml"},
        env={},
        home=home,
    )
    assert config.existing_cluster_kubeconfig == str(home / "kc.yaml")

    env = {"TANZU_EXISTING_CLUSTER_KUBECONFIG": "~/env.yaml"}
    config = initialize_configuration({"ClusterName": "x"}, env=env, home=home)
    assert config.existing_cluster_kubeconfig == str(home / "env.yaml")

    path = _write(tmp_path / "c.yaml", "ClusterName: x\nExistingClusterKubeconfig: ~/file.yaml\n")
    config = initialize_configuration({"ClusterConfigFile": str(path)}, env={}, home=home)
    assert config.existing_cluster_kubeconfig == str(home / "file.yaml")


def test_expand_home_leaves_other_paths() -> None:
    """Only a leading ``~/`` is rewritten."""
    assert expand_home("/etc/kc.yaml", Path("/home/me")) == "/etc/kc.yaml"
    assert expand_home("", Path("/home/me")) == ""
    assert expand_home("a/~/b", Path("/home/me")) == "a/~/b"


def test_resolved_config_is_immutable() -> None:
    """Downstream code receives a frozen configuration."""
    config = initialize_configuration({"ClusterName": "x"}, env={})
    with pytest.raises(AttributeError):
        config.cluster_name = "y"  # type: ignore[misc]


def test_resolved_config_is_not_hashable() -> None:
    """The opaque configuration maps make the configuration unhashable."""
    config = initialize_configuration({"ClusterName": "x"}, env={})
    with pytest.raises(TypeError):
        hash(config)


def test_process_environment_used_by_default(monkeypatch: pytest.MonkeyPatch) -> None:
    """Without an explicit env mapping, ``os.environ`` is consulted."""
    monkeypatch.setenv("TANZU_CLUSTER_NAME", "from-os")
    monkeypatch.setenv("TANZU_WORKER_NODE_COUNT", "2")
    config = initialize_configuration({})
    assert config.cluster_name == "from-os"
    assert config.worker_node_count == "2"


def test_every_field_serialises_under_its_canonical_name() -> None:
    """``to_dict`` keys match the registry in order."""
    data = ClusterConfig(cluster_name="x").to_dict()
    assert list(data) == [spec.name for spec in FIELDS]


def test_load_config_file_handles_empty_document(tmp_path: Path) -> None:
    """An empty file yields an empty configuration."""
    cfg = _write(tmp_path / "empty.yaml", "")
    assert load_config_file(cfg) == ClusterConfig()
