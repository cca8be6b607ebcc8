from __future__ import annotations

import io
import logging
import os
import posixpath
import tarfile

import docker
from docker.errors import APIError, DockerException

from ..constants import (
    CONTROL_PLANE_ROLE,
    KUBE_VERSION_PATH,
    LABEL_CLUSTER,
    LABEL_KUBE_VERSION,
    LABEL_KUBEADM_VERSION,
    LABEL_ROLE,
    WORKER_ROLE,
)
from ..errors import AgentCommunicationFailure
from ..utils.net import ip_no_cidr
from .agent import NodeInfo

logger = logging.getLogger(__name__)


def _env_float(name: str) -> float | None:
    v = os.environ.get(name, "").strip()
    if not v:
        return None
    try:
        return float(v)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds. Got: {os.environ.get(name)!r}") from None


def create_docker_client() -> docker.DockerClient:
    """
    Docker client built from the environment (DOCKER_HOST, DOCKER_TLS_VERIFY,
    DOCKER_CERT_PATH), plus CLUSTERLAB_DOCKER_TIMEOUT for the API timeout.
    """
    timeout = _env_float("CLUSTERLAB_DOCKER_TIMEOUT")
    kwargs = {"timeout": timeout} if timeout is not None else {}
    try:
        return docker.from_env(**kwargs)
    except DockerException as e:
        raise AgentCommunicationFailure(f"unable to connect to the docker daemon: {e}") from e


class DockerNodeAgent:
    """A cluster node backed by a kind(er) node container."""

    def __init__(self, container) -> None:
        self._container = container
        self.name: str = container.name

    def __repr__(self) -> str:
        return f"DockerNodeAgent({self.name!r})"

    def exec(self, command: str, *args: str) -> str:
        cmd = [command, *args]
        logger.debug("%s: exec %s", self.name, " ".join(cmd))
        try:
            result = self._container.exec_run(cmd, stdout=True, stderr=True, demux=True)
        except APIError as e:
            raise AgentCommunicationFailure(f"failed to exec {' '.join(cmd)!r}: {e}", node=self.name) from e

        # with demux the output is a (stdout, stderr) pair; either side may be None
        stdout, stderr = result.output or (None, None)
        output = (stdout or b"").decode("utf-8", errors="replace")
        if result.exit_code != 0:
            errors = (stderr or b"").decode("utf-8", errors="replace").strip() or output.strip()
            raise AgentCommunicationFailure(
                f"command {' '.join(cmd)!r} exited with code {result.exit_code}: {errors}",
                node=self.name,
            )
        return output

    def inspect(self) -> NodeInfo:
        try:
            self._container.reload()
        except APIError as e:
            raise AgentCommunicationFailure(f"failed to inspect container: {e}", node=self.name) from e

        attrs = self._container.attrs or {}
        labels = dict(self._container.labels or {})

        ip4 = ip6 = ""
        networks = (attrs.get("NetworkSettings") or {}).get("Networks") or {}
        for net in networks.values():
            ip4 = ip4 or ip_no_cidr(net.get("IPAddress") or "")
            ip6 = ip6 or ip_no_cidr(net.get("GlobalIPv6Address") or "")

        kube_version = labels.get(LABEL_KUBE_VERSION)
        kubeadm_version = labels.get(LABEL_KUBEADM_VERSION)

        # versions are read from the node only when it runs Kubernetes and is up
        roles = {r.strip() for r in labels.get(LABEL_ROLE, "").split(",")}
        running = (attrs.get("State") or {}).get("Running", False)
        if running and roles & {CONTROL_PLANE_ROLE, WORKER_ROLE}:
            if not kube_version:
                kube_version = self.exec("cat", KUBE_VERSION_PATH).strip()
            if not kubeadm_version:
                kubeadm_version = self.exec("kubeadm", "version", "-o=short").strip()

        return NodeInfo(
            name=self.name,
            labels=labels,
            ip4=ip4,
            ip6=ip6,
            kube_version=kube_version or None,
            kubeadm_version=kubeadm_version or None,
        )

    def copy_to(self, local_path: str, remote_path: str) -> None:
        logger.debug("%s: copy %s -> %s", self.name, local_path, remote_path)
        buf = io.BytesIO()
        with tarfile.open(fileobj=buf, mode="w") as tar:
            tar.add(local_path, arcname=posixpath.basename(remote_path))
        buf.seek(0)

        try:
            ok = self._container.put_archive(posixpath.dirname(remote_path) or "/", buf.getvalue())
        except APIError as e:
            raise AgentCommunicationFailure(f"failed to copy {local_path} to {remote_path}: {e}", node=self.name) from e
        if not ok:
            raise AgentCommunicationFailure(f"failed to copy {local_path} to {remote_path}", node=self.name)

    def copy_from(self, remote_path: str, local_path: str) -> None:
        logger.debug("%s: copy %s -> %s", self.name, remote_path, local_path)
        try:
            chunks, _ = self._container.get_archive(remote_path)
            data = b"".join(chunks)
        except APIError as e:
            raise AgentCommunicationFailure(f"failed to copy {remote_path} from the node: {e}", node=self.name) from e

        with tarfile.open(fileobj=io.BytesIO(data), mode="r") as tar:
            member = next((m for m in tar.getmembers() if m.isfile()), None)
            if member is None:
                raise AgentCommunicationFailure(f"{remote_path} is not a regular file", node=self.name)
            src = tar.extractfile(member)
            with open(local_path, "wb") as f:
                f.write(src.read())


def list_node_agents(cluster_name: str, client: docker.DockerClient | None = None) -> list[DockerNodeAgent]:
    """All the node containers (running or stopped) of the given cluster."""
    client = client or create_docker_client()
    try:
        containers = client.containers.list(all=True, filters={"label": f"{LABEL_CLUSTER}={cluster_name}"})
    except APIError as e:
        raise AgentCommunicationFailure(f"failed to list nodes for cluster {cluster_name}: {e}") from e
    return [DockerNodeAgent(c) for c in containers]


def list_clusters(client: docker.DockerClient | None = None) -> list[str]:
    client = client or create_docker_client()
    try:
        containers = client.containers.list(all=True, filters={"label": LABEL_CLUSTER})
    except APIError as e:
        raise AgentCommunicationFailure(f"failed to list clusters: {e}") from e
    return sorted({c.labels[LABEL_CLUSTER] for c in containers if c.labels.get(LABEL_CLUSTER)})


def is_known(name: str, client: docker.DockerClient | None = None) -> bool:
    return name in list_clusters(client)
