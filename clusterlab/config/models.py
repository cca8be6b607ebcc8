from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Mapping


NodeRole = Literal["control-plane", "worker", "external-etcd", "external-load-balancer"]

IPFamily = Literal["ipv4", "ipv6"]

DiscoveryMode = Literal["token", "file", "file-with-token"]

VALID_IP_FAMILIES: tuple[IPFamily, ...] = ("ipv4", "ipv6")
VALID_DISCOVERY_MODES: tuple[DiscoveryMode, ...] = ("token", "file", "file-with-token")


@dataclass(frozen=True)
class ClusterSettings:
    """
    Settings stored on the cluster nodes and re-used across invocations.

    Nodes are created and configured at different times by different runs,
    so anything that must be identical on every node (e.g. the IP family used
    when rendering kubeadm config) lives here instead of in memory.
    """
    ip_family: IPFamily = "ipv4"

    def __post_init__(self) -> None:
        if self.ip_family not in VALID_IP_FAMILIES:
            raise ValueError(
                f"Invalid ipFamily {self.ip_family!r}. Must be one of {list(VALID_IP_FAMILIES)}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"ipFamily": self.ip_family}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None) -> "ClusterSettings":
        raw = raw or {}
        return cls(ip_family=raw.get("ipFamily") or "ipv4")


@dataclass(frozen=True)
class JoinOptions:
    use_phases: bool = False
    automatic_copy_certs: bool = False
    discovery_mode: DiscoveryMode = "token"
    kustomize_dir: str | None = None
    patches_dir: str | None = None
    wait: float = 0.0
    verbosity: int = 0
    parallel_workers: int = 1

    def __post_init__(self) -> None:
        if self.discovery_mode not in VALID_DISCOVERY_MODES:
            raise ValueError(
                f"Invalid discoveryMode {self.discovery_mode!r}. Must be one of {list(VALID_DISCOVERY_MODES)}"
            )
        if self.wait < 0:
            raise ValueError("wait must be >= 0 seconds.")
        if self.parallel_workers < 1:
            raise ValueError("parallelWorkers must be >= 1.")

    def to_props(self) -> dict[str, Any]:
        return {
            "usePhases": self.use_phases,
            "automaticCopyCerts": self.automatic_copy_certs,
            "discoveryMode": self.discovery_mode,
            "kustomizeDir": self.kustomize_dir,
            "patchesDir": self.patches_dir,
            "wait": self.wait,
            "verbosity": self.verbosity,
            "parallelWorkers": self.parallel_workers,
        }

    @classmethod
    def from_props(cls, props: Mapping[str, Any]) -> "JoinOptions":
        return cls(
            use_phases=bool(props.get("usePhases", False)),
            automatic_copy_certs=bool(props.get("automaticCopyCerts", False)),
            discovery_mode=props.get("discoveryMode") or "token",
            kustomize_dir=props.get("kustomizeDir") or None,
            patches_dir=props.get("patchesDir") or None,
            wait=float(props.get("wait") or 0),
            verbosity=int(props.get("verbosity") or 0),
            parallel_workers=int(props.get("parallelWorkers") or 1),
        )


@dataclass(frozen=True)
class Config:
    """
    In-memory config for the Pulumi program.

    Notes:
      - ip_family is None unless set in stack config; in that case settings are
        read back from the bootstrap control-plane instead of written.
    """
    stack: str
    cluster_name: str
    join: JoinOptions
    only_nodes: str | None = None
    ip_family: IPFamily | None = None
