import logging
import os
import posixpath

from ..constants import PATCHES_DIR
from ..status.node import Node

logger = logging.getLogger(__name__)


def copy_patches_to_node(node: Node, patches_dir: str) -> list[str]:
    """
    Copy every regular file in patches_dir to PATCHES_DIR on the node.

    Used both for kustomize overlays and kubeadm patches; subdirectories are
    not copied. Returns the remote paths written.
    """
    logger.info("Copying patches from %s to node %s", patches_dir, node.name)
    node.agent.exec("mkdir", "-p", PATCHES_DIR)

    copied: list[str] = []
    for name in sorted(os.listdir(patches_dir)):
        local = os.path.join(patches_dir, name)
        if not os.path.isfile(local):
            continue
        remote = posixpath.join(PATCHES_DIR, name)
        node.agent.copy_to(local, remote)
        copied.append(remote)
    return copied
