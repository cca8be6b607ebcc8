from __future__ import annotations

import logging
import os
import posixpath
import tempfile

import yaml

from ..config.models import ClusterSettings
from ..constants import CLUSTER_SETTINGS_PATH
from ..errors import AgentCommunicationFailure, InvariantViolation
from .cluster import Cluster

logger = logging.getLogger(__name__)


def read_settings(cluster: Cluster) -> ClusterSettings:
    """Read cluster settings from the bootstrap control-plane and keep them on the cluster."""
    logger.debug("Reading cluster settings...")
    cp1 = cluster.bootstrap_control_plane
    if cp1 is None:
        raise InvariantViolation("unable to read cluster settings: the cluster has no control-plane node")

    try:
        raw = cp1.agent.exec("cat", CLUSTER_SETTINGS_PATH)
    except AgentCommunicationFailure as e:
        raise AgentCommunicationFailure(f"failed to read cluster settings: {e.message}", node=cp1.name) from e

    try:
        data = yaml.safe_load(raw) or {}
    except yaml.YAMLError as e:
        raise AgentCommunicationFailure(f"invalid cluster settings file {CLUSTER_SETTINGS_PATH}: {e}", node=cp1.name) from e

    cluster.settings = ClusterSettings.from_dict(data)
    return cluster.settings


def write_settings(cluster: Cluster) -> None:
    """
    Write the in-memory cluster settings to every Kubernetes node.

    Stops at the first node that fails; nodes already written keep the new
    settings.
    """
    logger.debug("Writing cluster settings...")
    content = yaml.safe_dump(cluster.settings.to_dict(), default_flow_style=False)

    with tempfile.TemporaryDirectory() as tmp:
        local = os.path.join(tmp, posixpath.basename(CLUSTER_SETTINGS_PATH))
        with open(local, "w", encoding="utf-8") as f:
            f.write(content)

        for n in cluster.k8s_nodes:
            try:
                n.agent.exec("mkdir", "-p", posixpath.dirname(CLUSTER_SETTINGS_PATH))
                n.agent.copy_to(local, CLUSTER_SETTINGS_PATH)
            except AgentCommunicationFailure as e:
                raise AgentCommunicationFailure(f"failed to write cluster settings: {e.message}", node=n.name) from e
