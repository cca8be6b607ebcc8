from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum

from ..config.models import NodeRole
from ..constants import (
    CONTROL_PLANE_ROLE,
    EXTERNAL_ETCD_ROLE,
    EXTERNAL_LOAD_BALANCER_ROLE,
    LABEL_ROLE,
    WORKER_ROLE,
)
from ..errors import ClusterError, DiscoveryError, InvariantViolation
from ..providers.agent import NodeAgent, NodeInfo
from ..utils.version import KubeVersion

VALID_ROLES: tuple[NodeRole, ...] = (
    CONTROL_PLANE_ROLE,
    WORKER_ROLE,
    EXTERNAL_ETCD_ROLE,
    EXTERNAL_LOAD_BALANCER_ROLE,
)


class JoinState(str, Enum):
    PROVISIONED = "provisioned"
    HELD = "held"
    ARTIFACTS_STAGED = "artifacts-staged"
    CERTS_PROVISIONED = "certs-provisioned"
    CONFIG_RENDERED = "config-rendered"
    JOINING = "joining"
    LB_UPDATED = "lb-updated"
    READY = "ready"
    FAILED = "failed"


class JoinPhase(str, Enum):
    PREFLIGHT = "preflight"
    CONTROL_PLANE_PREPARE = "control-plane-prepare"
    KUBELET_START = "kubelet-start"
    CONTROL_PLANE_JOIN = "control-plane-join"


@dataclass(frozen=True)
class Node:
    """
    Immutable record of a cluster node.

    State transitions return a new record (see with_state/failed); the
    Cluster is the only place where the current record of a node is kept.
    """
    name: str
    roles: frozenset[str]
    agent: NodeAgent = field(compare=False, repr=False)
    kube_version: str | None = None
    kubeadm_version: str | None = None
    ip4: str = ""
    ip6: str = ""
    state: JoinState = JoinState.PROVISIONED
    phase: JoinPhase | None = None
    error: ClusterError | None = field(default=None, compare=False)

    @classmethod
    def from_info(cls, info: NodeInfo, agent: NodeAgent) -> "Node":
        raw = info.labels.get(LABEL_ROLE, "")
        roles = frozenset(r.strip() for r in raw.split(",") if r.strip())
        if not roles:
            raise DiscoveryError(f"missing {LABEL_ROLE} label", node=info.name)

        unknown = sorted(roles - set(VALID_ROLES))
        if unknown:
            raise DiscoveryError(
                f"invalid role(s) {unknown}. Must be one of {list(VALID_ROLES)}",
                node=info.name,
            )

        return cls(
            name=info.name,
            roles=roles,
            agent=agent,
            kube_version=info.kube_version,
            kubeadm_version=info.kubeadm_version,
            ip4=info.ip4,
            ip6=info.ip6,
        )

    @property
    def is_control_plane(self) -> bool:
        return CONTROL_PLANE_ROLE in self.roles

    @property
    def is_worker(self) -> bool:
        return WORKER_ROLE in self.roles

    @property
    def is_external_etcd(self) -> bool:
        return EXTERNAL_ETCD_ROLE in self.roles

    @property
    def is_external_load_balancer(self) -> bool:
        return EXTERNAL_LOAD_BALANCER_ROLE in self.roles

    @property
    def is_k8s_node(self) -> bool:
        return self.is_control_plane or self.is_worker

    @property
    def eligible_for_actions(self) -> bool:
        return self.state is not JoinState.HELD

    def parsed_kubeadm_version(self) -> KubeVersion | None:
        if not self.kubeadm_version:
            return None
        try:
            return KubeVersion.parse(self.kubeadm_version)
        except ValueError as e:
            raise InvariantViolation(f"unable to parse the kubeadm version: {e}", node=self.name) from e

    def address(self, ip_family: str = "ipv4") -> str:
        return self.ip6 if ip_family == "ipv6" else self.ip4

    def with_state(self, state: JoinState, phase: JoinPhase | None = None) -> "Node":
        return dataclasses.replace(self, state=state, phase=phase, error=None)

    def failed(self, error: ClusterError) -> "Node":
        return dataclasses.replace(self, state=JoinState.FAILED, error=error)
