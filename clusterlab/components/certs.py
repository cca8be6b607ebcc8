import logging
import os
import posixpath
import tempfile

from ..constants import PKI_DIR
from ..errors import InvariantViolation
from ..status.cluster import Cluster
from ..status.node import Node

logger = logging.getLogger(__name__)

# Shared by all the control-plane nodes; everything else is generated by kubeadm join.
CONTROL_PLANE_CERTS = [
    "ca.crt",
    "ca.key",
    "sa.key",
    "sa.pub",
    "front-proxy-ca.crt",
    "front-proxy-ca.key",
]
STACKED_ETCD_CERTS = ["etcd/ca.crt", "etcd/ca.key"]
EXTERNAL_ETCD_CERTS = ["etcd/ca.crt", "apiserver-etcd-client.crt", "apiserver-etcd-client.key"]


def certificate_bundle(cluster: Cluster) -> list[str]:
    etcd = EXTERNAL_ETCD_CERTS if cluster.external_etcd is not None else STACKED_ETCD_CERTS
    return CONTROL_PLANE_CERTS + etcd


def copy_certificates_to_node(cluster: Cluster, node: Node) -> list[str]:
    """
    Copy the shared certificate bundle from the bootstrap control-plane to node.

    This is what an operator does by hand when kubeadm is not asked to
    download the certificates (no --certificate-key).
    """
    cp1 = cluster.bootstrap_control_plane
    if cp1 is None:
        raise InvariantViolation("unable to copy certificates: the cluster has no control-plane node")

    logger.info("Copying certificates from %s to node %s", cp1.name, node.name)
    files = certificate_bundle(cluster)
    node.agent.exec("mkdir", "-p", posixpath.join(PKI_DIR, "etcd"))

    with tempfile.TemporaryDirectory() as tmp:
        for rel in files:
            remote = posixpath.join(PKI_DIR, rel)
            local = os.path.join(tmp, rel.replace("/", "-"))
            cp1.agent.copy_from(remote, local)
            node.agent.copy_to(local, remote)

    return [posixpath.join(PKI_DIR, rel) for rel in files]
