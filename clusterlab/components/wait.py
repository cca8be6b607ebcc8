from __future__ import annotations

import logging
import time
from typing import Callable

from tenacity import RetryError, Retrying, retry_if_result, stop_after_delay, wait_fixed

from ..constants import ADMIN_KUBECONFIG_PATH
from ..errors import AgentCommunicationFailure, InvariantViolation, ReadinessTimeout
from ..status.cluster import Cluster
from ..status.node import Node

logger = logging.getLogger(__name__)

READY_JSONPATH = '{.status.conditions[?(@.type=="Ready")].status}'
NODES_READY_JSONPATH = (
    '{range .items[*]}{.metadata.name}{" "}'
    '{.status.conditions[?(@.type=="Ready")].status}{"\\n"}{end}'
)


class ReadinessWaiter:
    """
    Polls the bootstrap control-plane until nodes report Ready.

    A timeout of 0 means don't wait: the caller accepts that readiness is not
    verified.
    """

    def __init__(
        self,
        cluster: Cluster,
        *,
        interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.cluster = cluster
        self.interval = interval
        self._sleep = sleep

    def _kubectl(self, *args: str) -> str | None:
        cp1 = self.cluster.bootstrap_control_plane
        if cp1 is None:
            raise InvariantViolation("unable to check readiness: the cluster has no control-plane node")
        try:
            return cp1.agent.exec("kubectl", f"--kubeconfig={ADMIN_KUBECONFIG_PATH}", *args)
        except AgentCommunicationFailure as e:
            # the API server may not be reachable yet; keep polling
            logger.debug("Readiness probe failed: %s", e)
            return None

    def node_ready(self, node: Node) -> bool:
        out = self._kubectl("get", "nodes", node.name, f"-o=jsonpath={READY_JSONPATH}")
        return out is not None and out.strip().strip("'") == "True"

    def cluster_ready(self) -> bool:
        out = self._kubectl("get", "nodes", f"-o=jsonpath={NODES_READY_JSONPATH}")
        if out is None:
            return False
        status: dict[str, str] = {}
        for line in out.splitlines():
            parts = line.split()
            if len(parts) == 2:
                status[parts[0]] = parts[1]
        return all(status.get(n.name) == "True" for n in self.cluster.k8s_nodes)

    def _poll(self, probe: Callable[[], bool], timeout: float) -> bool:
        retrying = Retrying(
            stop=stop_after_delay(timeout),
            wait=wait_fixed(self.interval),
            retry=retry_if_result(lambda ready: not ready),
            sleep=self._sleep,
        )
        try:
            return retrying(probe)
        except RetryError:
            return False

    def wait_for_node_ready(self, node: Node, timeout: float) -> bool:
        """True once node is Ready, False if not waiting; ReadinessTimeout past the deadline."""
        if timeout <= 0:
            logger.debug("Not waiting for node %s to be ready", node.name)
            return False

        logger.info("Waiting up to %gs for node %s to be ready", timeout, node.name)
        if not self._poll(lambda: self.node_ready(node), timeout):
            raise ReadinessTimeout("node is not ready", timeout, node=node.name)
        return True

    def wait_for_cluster_ready(self, timeout: float) -> bool:
        """Like wait_for_node_ready, for every Kubernetes node of the cluster."""
        if timeout <= 0:
            logger.debug("Not waiting for cluster %s to be ready", self.cluster.name)
            return False

        logger.info("Waiting up to %gs for all the nodes of cluster %s to be ready", timeout, self.cluster.name)
        if not self._poll(self.cluster_ready, timeout):
            raise ReadinessTimeout(f"cluster {self.cluster.name} is not ready", timeout)
        return True
