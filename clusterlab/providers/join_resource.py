from __future__ import annotations

import logging
from typing import Any, Mapping

import pulumi
from pulumi.dynamic import CreateResult, DiffResult, Resource, ResourceProvider

from ..components.join import JoinOrchestrator
from ..components.wait import ReadinessWaiter
from ..config.models import ClusterSettings, IPFamily, JoinOptions
from ..status.cluster import Cluster, discover
from ..status.node import JoinState
from ..status.settings import read_settings, write_settings

logger = logging.getLogger(__name__)

# inputs that change what the join does; anything else is an output
_INPUT_KEYS = ("cluster_name", "only_nodes", "ip_family", *JoinOptions().to_props().keys())


def run_join(
    cluster_name: str,
    options: JoinOptions,
    *,
    only_nodes: str | None = None,
    ip_family: IPFamily | None = None,
) -> Cluster:
    """
    Discover cluster_name and join its pending nodes.

    With ip_family the settings are propagated to every node first, otherwise
    they are read back from the bootstrap control-plane.
    """
    cluster = discover(cluster_name)
    cluster.validate()

    if ip_family:
        cluster.settings = ClusterSettings(ip_family=ip_family)
        write_settings(cluster)
    else:
        read_settings(cluster)

    if only_nodes:
        cluster.only_nodes(only_nodes)

    JoinOrchestrator(cluster, options).join()

    # held nodes are not joined, so only a full run can wait for the whole cluster
    if not only_nodes:
        ReadinessWaiter(cluster).wait_for_cluster_ready(options.wait)
    return cluster


def summarize(cluster: Cluster) -> dict[str, Any]:
    return {
        "control_planes": [n.name for n in cluster.control_planes],
        "workers": [n.name for n in cluster.workers],
        "ready_nodes": [n.name for n in cluster.k8s_nodes if n.state is JoinState.READY],
        "kubeconfig_path": cluster.kubeconfig_path(),
    }


class KubeadmJoinProvider(ResourceProvider):
    """Dynamic provider running the join workflow on create."""

    def create(self, props: Mapping[str, Any]) -> CreateResult:
        cluster = run_join(
            props["cluster_name"],
            JoinOptions.from_props(props),
            only_nodes=props.get("only_nodes") or None,
            ip_family=props.get("ip_family") or None,
        )
        return CreateResult(id_=f"{cluster.name}-kubeadm-join", outs={**props, **summarize(cluster)})

    def diff(self, _id: str, olds: Mapping[str, Any], news: Mapping[str, Any]) -> DiffResult:
        replaces = [k for k in _INPUT_KEYS if olds.get(k) != news.get(k)]
        return DiffResult(changes=bool(replaces), replaces=replaces, delete_before_replace=True)

    def delete(self, _id: str, props: Mapping[str, Any]) -> None:
        # joined nodes are never rolled back; deleting the resource only forgets it
        logger.info("Forgetting kubeadm join for cluster %s", props.get("cluster_name"))


class KubeadmJoin(Resource):
    control_planes: pulumi.Output[list]
    workers: pulumi.Output[list]
    ready_nodes: pulumi.Output[list]
    kubeconfig_path: pulumi.Output[str]

    def __init__(
        self,
        name: str,
        *,
        cluster_name: str,
        options: JoinOptions,
        only_nodes: str | None = None,
        ip_family: IPFamily | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ) -> None:
        super().__init__(
            KubeadmJoinProvider(),
            name,
            {
                "cluster_name": cluster_name,
                "only_nodes": only_nodes,
                "ip_family": ip_family,
                **options.to_props(),
                "control_planes": None,
                "workers": None,
                "ready_nodes": None,
                "kubeconfig_path": None,
            },
            opts,
        )
