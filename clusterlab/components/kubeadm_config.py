from __future__ import annotations

import logging
import os
import posixpath
import tempfile
from typing import Any

import yaml

from ..config.models import DiscoveryMode
from ..constants import (
    ADMIN_KUBECONFIG_PATH,
    API_SERVER_PORT,
    BOOTSTRAP_TOKEN,
    CERTIFICATE_KEY,
    CRI_SOCKET,
    DISCOVERY_FILE_PATH,
    KUBEADM_CONFIG_PATH,
)
from ..errors import InvariantViolation
from ..status.cluster import Cluster
from ..status.node import Node
from ..utils.net import host_port
from ..utils.version import KubeVersion

logger = logging.getLogger(__name__)


def kubeadm_api_version(kubeadm_version: str | None) -> str:
    if not kubeadm_version:
        return "kubeadm.k8s.io/v1beta3"
    v = KubeVersion.parse(kubeadm_version)
    if not v.at_least("v1.15.0"):
        return "kubeadm.k8s.io/v1beta1"
    if not v.at_least("v1.22.0"):
        return "kubeadm.k8s.io/v1beta2"
    if not v.at_least("v1.31.0"):
        return "kubeadm.k8s.io/v1beta3"
    return "kubeadm.k8s.io/v1beta4"


def control_plane_endpoint(cluster: Cluster) -> str:
    """The load balancer, if any, otherwise the bootstrap control-plane."""
    target = cluster.external_load_balancer or cluster.bootstrap_control_plane
    if target is None:
        raise InvariantViolation("unable to compute the control-plane endpoint: the cluster has no control-plane node")
    address = target.address(cluster.settings.ip_family)
    if not address:
        raise InvariantViolation(f"no {cluster.settings.ip_family} address for node {target.name}", node=target.name)
    return host_port(address, API_SERVER_PORT)


def _kubelet_extra_args(api_version: str, args: dict[str, str]) -> Any:
    if api_version.endswith("v1beta4"):
        return [{"name": k, "value": v} for k, v in args.items()]
    return dict(args)


def render_join_config(
    cluster: Cluster,
    node: Node,
    *,
    automatic_copy_certs: bool = False,
    discovery_mode: DiscoveryMode = "token",
) -> str:
    """Render the kubeadm JoinConfiguration for node."""
    try:
        api_version = kubeadm_api_version(node.kubeadm_version)
    except ValueError as e:
        raise InvariantViolation(f"unable to pick the kubeadm config version: {e}", node=node.name) from e
    endpoint = control_plane_endpoint(cluster)
    node_ip = node.address(cluster.settings.ip_family)

    if discovery_mode == "token":
        discovery: dict[str, Any] = {
            "bootstrapToken": {
                "apiServerEndpoint": endpoint,
                "token": BOOTSTRAP_TOKEN,
                "unsafeSkipCAVerification": True,
            }
        }
    else:
        discovery = {"file": {"kubeConfigPath": DISCOVERY_FILE_PATH}}
        if discovery_mode == "file-with-token":
            discovery["tlsBootstrapToken"] = BOOTSTRAP_TOKEN

    doc: dict[str, Any] = {
        "apiVersion": api_version,
        "kind": "JoinConfiguration",
        "discovery": discovery,
        "nodeRegistration": {
            "criSocket": CRI_SOCKET,
            "kubeletExtraArgs": _kubelet_extra_args(
                api_version, {"node-ip": node_ip, "fail-swap-on": "false"}
            ),
        },
    }

    if node.is_control_plane:
        control_plane: dict[str, Any] = {
            "localAPIEndpoint": {"advertiseAddress": node_ip, "bindPort": API_SERVER_PORT},
        }
        if automatic_copy_certs:
            control_plane["certificateKey"] = CERTIFICATE_KEY
        doc["controlPlane"] = control_plane

    return yaml.safe_dump(doc, default_flow_style=False, sort_keys=False)


def render_discovery_file(cluster: Cluster, admin_conf: str, *, with_token: bool) -> str:
    """
    Turn the admin kubeconfig into a discovery file pointing at the endpoint.

    With with_token the user credentials are dropped; kubeadm then uses the
    TLS bootstrap token to register the kubelet.
    """
    kubeconfig = yaml.safe_load(admin_conf) or {}
    server = f"https://{control_plane_endpoint(cluster)}"
    for c in kubeconfig.get("clusters") or []:
        c.setdefault("cluster", {})["server"] = server
    if with_token:
        kubeconfig["users"] = []
        for ctx in kubeconfig.get("contexts") or []:
            ctx.get("context", {}).pop("user", None)
    return yaml.safe_dump(kubeconfig, default_flow_style=False, sort_keys=False)


def _write_file(node: Node, content: str, remote_path: str) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        local = os.path.join(tmp, posixpath.basename(remote_path))
        with open(local, "w", encoding="utf-8") as f:
            f.write(content)
        node.agent.exec("mkdir", "-p", posixpath.dirname(remote_path))
        node.agent.copy_to(local, remote_path)


def write_join_config(
    cluster: Cluster,
    node: Node,
    *,
    automatic_copy_certs: bool = False,
    discovery_mode: DiscoveryMode = "token",
) -> str:
    """Write the join config (and the discovery file, if needed) on node; returns the config."""
    logger.info("Writing kubeadm join config to %s on node %s", KUBEADM_CONFIG_PATH, node.name)

    if discovery_mode != "token":
        cp1 = cluster.bootstrap_control_plane
        if cp1 is None:
            raise InvariantViolation("unable to build the discovery file: the cluster has no control-plane node")
        admin_conf = cp1.agent.exec("cat", ADMIN_KUBECONFIG_PATH)
        discovery_file = render_discovery_file(
            cluster, admin_conf, with_token=discovery_mode == "file-with-token"
        )
        _write_file(node, discovery_file, DISCOVERY_FILE_PATH)

    config = render_join_config(
        cluster, node, automatic_copy_certs=automatic_copy_certs, discovery_mode=discovery_mode
    )
    _write_file(node, config, KUBEADM_CONFIG_PATH)
    return config
