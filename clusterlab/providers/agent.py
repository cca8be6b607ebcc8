from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Protocol


@dataclass(frozen=True)
class NodeInfo:
    """What a node agent reports about itself when inspected."""
    name: str
    labels: Mapping[str, str] = field(default_factory=dict)
    ip4: str = ""
    ip6: str = ""
    kube_version: str | None = None
    kubeadm_version: str | None = None


class NodeAgent(Protocol):
    """
    Handle to a single node of the cluster.

    exec/copy failures are reported as AgentCommunicationFailure carrying the
    node name; implementations never retry.
    """

    name: str

    def exec(self, command: str, *args: str) -> str:
        ...

    def inspect(self) -> NodeInfo:
        ...

    def copy_to(self, local_path: str, remote_path: str) -> None:
        ...

    def copy_from(self, remote_path: str, local_path: str) -> None:
        ...
