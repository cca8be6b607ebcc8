from __future__ import annotations

import json
from typing import Callable

import pytest

from clusterlab.constants import (
    ADMIN_KUBECONFIG_PATH,
    CONTROL_PLANE_ROLE,
    EXTERNAL_ETCD_ROLE,
    EXTERNAL_LOAD_BALANCER_ROLE,
    LABEL_CLUSTER,
    LABEL_ROLE,
    PKI_DIR,
    WORKER_ROLE,
)
from clusterlab.errors import AgentCommunicationFailure
from clusterlab.providers.agent import NodeInfo
from clusterlab.status.cluster import Cluster, discover

ADMIN_CONF = """\
apiVersion: v1
kind: Config
clusters:
- name: kind
  cluster:
    certificate-authority-data: Q0EK
    server: https://kind-control-plane1:6443
contexts:
- name: kubernetes-admin@kind
  context:
    cluster: kind
    user: kubernetes-admin
current-context: kubernetes-admin@kind
users:
- name: kubernetes-admin
  user:
    client-certificate-data: Q0VSVAo=
    client-key-data: S0VZCg==
"""

PKI_FILES = [
    "ca.crt",
    "ca.key",
    "sa.key",
    "sa.pub",
    "front-proxy-ca.crt",
    "front-proxy-ca.key",
    "etcd/ca.crt",
    "etcd/ca.key",
    "apiserver-etcd-client.crt",
    "apiserver-etcd-client.key",
]


def images_for(version: str) -> list[str]:
    return [
        f"registry.k8s.io/kube-apiserver:{version}",
        f"registry.k8s.io/kube-controller-manager:{version}",
        "registry.k8s.io/pause:3.2",
    ]


class FakeRuntime:
    """Shared view of the fake nodes: readiness as reported by kubectl."""

    def __init__(self) -> None:
        self.agents: dict[str, FakeAgent] = {}
        self.not_ready: set[str] = set()


class FakeAgent:
    """In-memory node agent recording every exec/copy call."""

    def __init__(
        self,
        name: str,
        role: str,
        *,
        runtime: FakeRuntime | None = None,
        cluster: str = "kind",
        ip4: str = "",
        ip6: str = "",
        kube_version: str | None = "v1.19.0",
        kubeadm_version: str | None = "v1.19.0",
        missing_images: tuple[str, ...] = (),
    ) -> None:
        self.name = name
        self.runtime = runtime or FakeRuntime()
        self.runtime.agents[name] = self
        self.labels = {LABEL_CLUSTER: cluster, LABEL_ROLE: role} if role else {LABEL_CLUSTER: cluster}
        self.ip4 = ip4
        self.ip6 = ip6
        self.kube_version = kube_version
        self.kubeadm_version = kubeadm_version
        self.missing_images = set(missing_images)
        self.files: dict[str, str] = {}
        self.calls: list[tuple[str, ...]] = []
        self.failures: list[tuple[tuple[str, ...], Exception]] = []
        self.handlers: list[tuple[tuple[str, ...], Callable[..., str]]] = []

    def __repr__(self) -> str:
        return f"FakeAgent({self.name!r})"

    # -- test helpers --

    def fail(self, *prefix: str, message: str = "boom") -> None:
        self.failures.append((prefix, AgentCommunicationFailure(message, node=self.name)))

    def on(self, *prefix: str, handler: Callable[..., str]) -> None:
        self.handlers.append((prefix, handler))

    def execs(self, command: str | None = None) -> list[tuple[str, ...]]:
        return [c[1:] for c in self.calls if c[0] == "exec" and (command is None or c[1] == command)]

    def kubeadm_joins(self) -> list[tuple[str, ...]]:
        return [c for c in self.execs("kubeadm") if c[1] == "join"]

    @property
    def mutating_calls(self) -> list[tuple[str, ...]]:
        return [c for c in self.calls if c[0] in ("exec", "copy_to", "copy_from")]

    # -- NodeAgent --

    def inspect(self) -> NodeInfo:
        return NodeInfo(
            name=self.name,
            labels=dict(self.labels),
            ip4=self.ip4,
            ip6=self.ip6,
            kube_version=self.kube_version,
            kubeadm_version=self.kubeadm_version,
        )

    def exec(self, command: str, *args: str) -> str:
        cmd = (command, *args)
        self.calls.append(("exec", *cmd))
        for prefix, error in self.failures:
            if cmd[: len(prefix)] == prefix:
                raise error
        for prefix, handler in self.handlers:
            if cmd[: len(prefix)] == prefix:
                return handler(*cmd)

        if command == "cat":
            if args[0] not in self.files:
                raise AgentCommunicationFailure(f"cat: {args[0]}: No such file or directory", node=self.name)
            return self.files[args[0]]
        if cmd[:4] == ("kubeadm", "config", "images", "list"):
            version = args[3].split("=", 1)[1]
            return "\n".join(images_for(version)) + "\n"
        if cmd[:2] == ("crictl", "images"):
            version = self.kube_version or ""
            tags = [i for i in images_for(version) if i not in self.missing_images]
            return json.dumps({"images": [{"id": str(n), "repoTags": [t]} for n, t in enumerate(tags)]})
        if command == "kubectl":
            return self._kubectl(args[1:])
        return ""

    def _kubectl(self, args: tuple[str, ...]) -> str:
        if len(args) >= 3 and not args[2].startswith("-o"):
            return "False" if args[2] in self.runtime.not_ready else "True"
        lines = [
            f"{name} {'False' if name in self.runtime.not_ready else 'True'}"
            for name, agent in self.runtime.agents.items()
            if agent.labels.get(LABEL_ROLE) in (CONTROL_PLANE_ROLE, WORKER_ROLE)
        ]
        return "\n".join(lines) + "\n"

    def copy_to(self, local_path: str, remote_path: str) -> None:
        self.calls.append(("copy_to", remote_path))
        for prefix, error in self.failures:
            if prefix == ("copy_to",):
                raise error
        with open(local_path, encoding="utf-8") as f:
            self.files[remote_path] = f.read()

    def copy_from(self, remote_path: str, local_path: str) -> None:
        self.calls.append(("copy_from", remote_path))
        if remote_path not in self.files:
            raise AgentCommunicationFailure(f"{remote_path} not found", node=self.name)
        with open(local_path, "w", encoding="utf-8") as f:
            f.write(self.files[remote_path])


def make_agents(
    name: str = "kind",
    *,
    control_planes: int = 1,
    workers: int = 0,
    lb: bool = False,
    etcd: bool = False,
    **kwargs,
) -> list[FakeAgent]:
    runtime = FakeRuntime()
    agents: list[FakeAgent] = []
    n = 0

    def ip() -> str:
        nonlocal n
        n += 1
        return f"172.18.0.{n + 1}"

    for i in range(1, control_planes + 1):
        a = FakeAgent(f"{name}-control-plane{i}", CONTROL_PLANE_ROLE, runtime=runtime, cluster=name, ip4=ip(), ip6=f"fc00::{i}", **kwargs)
        agents.append(a)
    for i in range(1, workers + 1):
        agents.append(FakeAgent(f"{name}-worker{i}", WORKER_ROLE, runtime=runtime, cluster=name, ip4=ip(), **kwargs))
    if lb:
        agents.append(FakeAgent(f"{name}-lb", EXTERNAL_LOAD_BALANCER_ROLE, runtime=runtime, cluster=name, ip4=ip(), ip6="fc00::100", kube_version=None, kubeadm_version=None))
    if etcd:
        agents.append(FakeAgent(f"{name}-etcd", EXTERNAL_ETCD_ROLE, runtime=runtime, cluster=name, ip4=ip(), kube_version=None, kubeadm_version=None))

    if agents and control_planes:
        cp1 = agents[0]
        cp1.files[ADMIN_KUBECONFIG_PATH] = ADMIN_CONF
        for rel in PKI_FILES:
            cp1.files[f"{PKI_DIR}/{rel}"] = f"content of {rel}\n"
    return agents


def agent(agents: list[FakeAgent], suffix: str) -> FakeAgent:
    return next(a for a in agents if a.name.endswith(suffix))


@pytest.fixture
def build_cluster() -> Callable[..., tuple[Cluster, list[FakeAgent]]]:
    def _build(name: str = "kind", **kwargs) -> tuple[Cluster, list[FakeAgent]]:
        agents = make_agents(name, **kwargs)
        return discover(name, agents), agents

    return _build
