"""
Topology aware node addressing.

A selector is either a shortcut for a group of nodes (``@cp*``, ``@w*``...)
or the suffix of a node name (``control-plane2`` -> ``<cluster>-control-plane2``).
A nodes path is ``[selector:]path``, used by file operations that target
one or more nodes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..constants import SELECTORS
from ..errors import SelectorError

if TYPE_CHECKING:
    from .cluster import Cluster
    from .node import Node


def _as_tuple(node: "Node | None") -> tuple["Node", ...]:
    return (node,) if node is not None else ()


def select_nodes(cluster: "Cluster", selector: str) -> tuple["Node", ...]:
    """Nodes matched by selector; an empty tuple when a valid selector matches nothing."""
    if selector.startswith("@"):
        token = selector.lower()
        if token == "@all":
            return cluster.k8s_nodes
        if token == "@cp*":
            return cluster.control_planes
        if token == "@cp1":
            return _as_tuple(cluster.bootstrap_control_plane)
        if token == "@cpn":
            return cluster.secondary_control_planes
        if token == "@w*":
            return cluster.workers
        if token == "@lb":
            return _as_tuple(cluster.external_load_balancer)
        if token == "@etcd":
            return _as_tuple(cluster.external_etcd)
        raise SelectorError(f"invalid node selector {selector!r}. Use one of [{', '.join(SELECTORS)}]")

    node_name = f"{cluster.name}-{selector}".lower()
    for n in cluster.k8s_nodes:
        if n.name.lower() == node_name:
            return (n,)
    return ()


def resolve_nodes_path(cluster: "Cluster", nodes_path: str) -> tuple[tuple["Node", ...] | None, str]:
    """
    Split a topology aware path into (nodes, path).

    Without a selector the nodes are None (the path is local); with more
    than one ":" the path is invalid.
    """
    parts = nodes_path.split(":")
    if len(parts) == 1:
        return None, parts[0]
    if len(parts) == 2:
        return select_nodes(cluster, parts[0]), parts[1]
    raise SelectorError(f"invalid nodes path {nodes_path!r}")
