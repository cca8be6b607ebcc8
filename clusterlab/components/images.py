import json
import logging

from ..errors import AgentCommunicationFailure, MissingImage
from ..status.node import Node

logger = logging.getLogger(__name__)


def required_images(node: Node, kube_version: str) -> list[str]:
    out = node.agent.exec("kubeadm", "config", "images", "list", f"--kubernetes-version={kube_version}")
    return [line.strip() for line in out.splitlines() if line.strip()]


def present_images(node: Node) -> set[str]:
    out = node.agent.exec("crictl", "images", "-o", "json")
    try:
        listing = json.loads(out or "{}")
    except ValueError as e:
        raise AgentCommunicationFailure(f"unable to parse crictl images output: {e}", node=node.name) from e
    return {tag for image in listing.get("images") or [] for tag in image.get("repoTags") or []}


def check_images_for_version(node: Node, kube_version: str | None = None) -> None:
    """
    Check the node has all the images kubeadm needs for kube_version.

    Images are pre-loaded in node images; a missing one is reported and never
    pulled.
    """
    kube_version = kube_version or node.kube_version
    if not kube_version:
        raise AgentCommunicationFailure("unable to read the Kubernetes version of the node", node=node.name)

    logger.info("Checking images for Kubernetes %s on node %s", kube_version, node.name)
    present = present_images(node)
    missing = [image for image in required_images(node, kube_version) if image not in present]
    if missing:
        raise MissingImage(missing, node=node.name)
