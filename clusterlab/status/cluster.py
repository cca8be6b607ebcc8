from __future__ import annotations

import logging
import os
import threading
from typing import Iterable

from ..config.models import ClusterSettings
from ..constants import CONTROL_PLANE_ROLE, EXTERNAL_ETCD_ROLE, EXTERNAL_LOAD_BALANCER_ROLE
from ..errors import InvariantViolation
from ..providers.agent import NodeAgent
from ..providers.docker import list_node_agents
from .node import JoinState, Node
from . import selectors

logger = logging.getLogger(__name__)


class Cluster:
    """
    An existing kind(er) cluster, as discovered from its node agents.

    Node records are kept by name; the derived lists only hold names and are
    sorted once discovery is complete, so the bootstrap control-plane is the
    same node across invocations whatever order the agents were listed in.
    """

    def __init__(self, name: str, settings: ClusterSettings | None = None) -> None:
        self.name = name
        self.settings = settings or ClusterSettings()
        self._nodes: dict[str, Node] = {}
        self._all: list[str] = []
        self._k8s: list[str] = []
        self._control_planes: list[str] = []
        self._workers: list[str] = []
        self._external_etcd: str | None = None
        self._external_load_balancer: str | None = None
        self._lock = threading.RLock()

    def __repr__(self) -> str:
        return f"Cluster({self.name!r}, nodes={self._all!r})"

    # -- construction --------------------------------------------------------

    def add(self, node: Node) -> None:
        """Add a node, filling the derived lists by role."""
        if node.name in self._nodes:
            raise InvariantViolation(f"node {node.name!r} is already part of cluster {self.name!r}")

        if node.is_external_etcd and self._external_etcd is not None:
            raise InvariantViolation(
                f"unable to add the node to the cluster. A cluster can not have more than one node with role {EXTERNAL_ETCD_ROLE!r}",
                node=node.name,
            )
        if node.is_external_load_balancer and self._external_load_balancer is not None:
            raise InvariantViolation(
                f"unable to add the node to the cluster. A cluster can not have more than one node with role {EXTERNAL_LOAD_BALANCER_ROLE!r}",
                node=node.name,
            )

        self._nodes[node.name] = node
        self._all.append(node.name)
        if node.is_k8s_node:
            self._k8s.append(node.name)
        if node.is_control_plane:
            self._control_planes.append(node.name)
        if node.is_worker:
            self._workers.append(node.name)
        if node.is_external_etcd:
            self._external_etcd = node.name
        if node.is_external_load_balancer:
            self._external_load_balancer = node.name

    def sort(self) -> None:
        for names in (self._all, self._k8s, self._control_planes, self._workers):
            names.sort()

    def update(self, node: Node) -> Node:
        """Store the current record of an existing node."""
        with self._lock:
            if node.name not in self._nodes:
                raise InvariantViolation(f"node {node.name!r} is not part of cluster {self.name!r}")
            self._nodes[node.name] = node
        return node

    # -- lookups -------------------------------------------------------------

    def node(self, name: str) -> Node:
        with self._lock:
            return self._nodes[name]

    def _records(self, names: Iterable[str]) -> tuple[Node, ...]:
        with self._lock:
            return tuple(self._nodes[n] for n in names)

    @property
    def all_nodes(self) -> tuple[Node, ...]:
        return self._records(self._all)

    @property
    def k8s_nodes(self) -> tuple[Node, ...]:
        return self._records(self._k8s)

    @property
    def control_planes(self) -> tuple[Node, ...]:
        return self._records(self._control_planes)

    @property
    def bootstrap_control_plane(self) -> Node | None:
        if not self._control_planes:
            return None
        return self.node(self._control_planes[0])

    @property
    def secondary_control_planes(self) -> tuple[Node, ...]:
        return self._records(self._control_planes[1:])

    @property
    def workers(self) -> tuple[Node, ...]:
        return self._records(self._workers)

    @property
    def external_etcd(self) -> Node | None:
        return self.node(self._external_etcd) if self._external_etcd else None

    @property
    def external_load_balancer(self) -> Node | None:
        return self.node(self._external_load_balancer) if self._external_load_balancer else None

    def kubeconfig_path(self) -> str:
        return os.path.join(os.path.expanduser("~"), ".kube", f"kind-config-{self.name}")

    # -- checks & selection --------------------------------------------------

    def validate(self) -> None:
        """Raise InvariantViolation if the set of nodes is not consistent."""
        if self.bootstrap_control_plane is None:
            raise InvariantViolation(f"please add at least one node with role {CONTROL_PLANE_ROLE!r}")

        if len(self._control_planes) > 1 and self._external_load_balancer is None:
            raise InvariantViolation(
                f"please add a node with role {EXTERNAL_LOAD_BALANCER_ROLE!r} because in the cluster "
                f"there are more than one node with role {CONTROL_PLANE_ROLE!r}"
            )

    def select_nodes(self, selector: str) -> tuple[Node, ...]:
        return selectors.select_nodes(self, selector)

    def resolve_nodes_path(self, nodes_path: str) -> tuple[tuple[Node, ...] | None, str]:
        return selectors.resolve_nodes_path(self, nodes_path)

    def hold(self, node: Node) -> Node:
        """Keep a node out of any pending action."""
        logger.debug("Holding node %s", node.name)
        return self.update(self.node(node.name).with_state(JoinState.HELD))

    def only_nodes(self, selector: str) -> tuple[Node, ...]:
        """Hold every Kubernetes node not matched by selector; returns the selected ones."""
        selected = {n.name for n in self.select_nodes(selector)}
        for n in self.k8s_nodes:
            if n.name not in selected:
                self.hold(n)
        return self._records(n for n in self._k8s if n in selected)


def discover(cluster_name: str, agents: Iterable[NodeAgent] | None = None) -> Cluster:
    """
    Build a Cluster by inspecting the node agents of cluster_name.

    agents defaults to the docker containers labeled with the cluster name.
    """
    if agents is None:
        agents = list_node_agents(cluster_name)

    cluster = Cluster(cluster_name)
    logger.debug("Reading node list for cluster %s", cluster_name)
    for agent in agents:
        info = agent.inspect()
        logger.debug("Adding node %s to the cluster", info.name)
        cluster.add(Node.from_info(info, agent))

    cluster.sort()
    return cluster
