"""
Errors raised while discovering, validating and joining cluster nodes.

Every error can carry the identity of the node it originated from; the
orchestrator never retries or compensates, so the node name is what the
caller needs to decide how to re-run the workflow.
"""

from __future__ import annotations

from typing import Sequence


class ClusterError(Exception):
    """Base error type for all cluster-level failures."""

    def __init__(self, message: str, *, node: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.node = node

    def __str__(self) -> str:
        if self.node:
            return f"node {self.node}: {self.message}"
        return self.message


class DiscoveryError(ClusterError):
    """Raised when a node agent can't be classified into cluster roles."""


class InvariantViolation(ClusterError):
    """Raised when the cluster topology is not consistent."""


class SelectorError(ClusterError):
    """Raised for unknown node selectors or malformed topology aware paths."""


class VersionSkew(ClusterError):
    """
    Raised when a requested feature needs a newer kubeadm than the node reports.
    """

    def __init__(self, feature: str, required: str, actual: str | None, *, node: str | None = None) -> None:
        super().__init__(
            f"{feature} can't be used with kubeadm older than {required} (found {actual or 'unknown'})",
            node=node,
        )
        self.feature = feature
        self.required = required
        self.actual = actual


class MissingImage(ClusterError):
    """Raised when a node does not have the images required for its Kubernetes version."""

    def __init__(self, images: Sequence[str], *, node: str | None = None) -> None:
        super().__init__(f"missing images: {', '.join(images)}", node=node)
        self.images = list(images)


class AgentCommunicationFailure(ClusterError):
    """Raised when exec or copy against a node agent fails."""


class ReadinessTimeout(ClusterError):
    """Raised when a node (or the whole cluster) is not ready before the deadline."""

    def __init__(self, message: str, timeout: float, *, node: str | None = None) -> None:
        super().__init__(f"{message} (waited {timeout:g}s)", node=node)
        self.timeout = timeout
