from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import Callable

from ..config.models import JoinOptions
from ..constants import (
    KUBEADM_CONFIG_PATH,
    KUBEADM_IGNORE_PREFLIGHT_ERRORS_FLAG,
    MIN_KUSTOMIZE_VERSION,
    MIN_PATCHES_VERSION,
    PATCHES_DIR,
)
from ..errors import ClusterError, InvariantViolation, VersionSkew
from ..status.cluster import Cluster
from ..status.node import JoinPhase, JoinState, Node
from .certs import copy_certificates_to_node
from .images import check_images_for_version
from .kubeadm_config import write_join_config
from .loadbalancer import LoadBalancerReconfigurer
from .patches import copy_patches_to_node
from .wait import ReadinessWaiter

logger = logging.getLogger(__name__)


class JoinOrchestrator:
    """
    Runs the kubeadm join workflow on the secondary control-planes, then on
    the workers.

    Each step returns the updated node record and stores it on the cluster.
    The first failure marks the node FAILED and aborts the rest of the
    workflow; nodes already READY stay joined.
    """

    def __init__(
        self,
        cluster: Cluster,
        options: JoinOptions | None = None,
        *,
        load_balancer: LoadBalancerReconfigurer | None = None,
        waiter: ReadinessWaiter | None = None,
    ) -> None:
        self.cluster = cluster
        self.options = options or JoinOptions()
        self.load_balancer = load_balancer or LoadBalancerReconfigurer(cluster)
        self.waiter = waiter or ReadinessWaiter(cluster)

    def join(self) -> None:
        self.cluster.validate()
        self.join_control_planes()
        self.join_workers()

    # -- state handling ------------------------------------------------------

    def _advance(self, node: Node, state: JoinState, phase: JoinPhase | None = None) -> Node:
        logger.debug("Node %s: %s%s", node.name, state.value, f" ({phase.value})" if phase else "")
        return self.cluster.update(node.with_state(state, phase))

    def _run(self, node: Node, step: Callable[[Node], Node]) -> Node:
        try:
            return step(node)
        except ClusterError as e:
            if e.node is None:
                e.node = node.name
            current = self.cluster.node(node.name)
            self.cluster.update(current.failed(e))
            logger.error("Failed to join node %s: %s", node.name, e)
            raise

    def _kubeadm(self, node: Node, *args: str) -> str:
        cmd = ["join", *args]
        logger.info("Running kubeadm %s on node %s", " ".join(cmd), node.name)
        return node.agent.exec("kubeadm", *cmd)

    def _common_args(self, *, ignore_preflight_errors: bool = False) -> list[str]:
        args = [f"--config={KUBEADM_CONFIG_PATH}", f"--v={self.options.verbosity}"]
        if ignore_preflight_errors:
            args.append(KUBEADM_IGNORE_PREFLIGHT_ERRORS_FLAG)
        return args

    def _patches_args(self) -> list[str]:
        args: list[str] = []
        if self.options.kustomize_dir:
            args += ["-k", PATCHES_DIR]
        if self.options.patches_dir:
            args += ["--experimental-patches", PATCHES_DIR]
        return args

    # -- control-plane -------------------------------------------------------

    def check_versions(self, node: Node) -> None:
        """Fail before touching the node if it can't support the requested options."""
        gates = []
        if self.options.kustomize_dir:
            gates.append(("--kustomize-dir", MIN_KUSTOMIZE_VERSION))
        if self.options.patches_dir:
            gates.append(("--patches", MIN_PATCHES_VERSION))
        if not gates:
            return

        # an unparseable version can't satisfy any gate
        try:
            version = node.parsed_kubeadm_version()
        except InvariantViolation:
            version = None
        for feature, required in gates:
            if version is None or not version.at_least(required):
                raise VersionSkew(feature, required, node.kubeadm_version, node=node.name)

    def join_control_planes(self) -> list[Node]:
        """Join the eligible secondary control-planes, one at a time and in order."""
        cp1 = self.cluster.bootstrap_control_plane
        joined: list[Node] = [cp1] if cp1 is not None else []

        for cp in self.cluster.secondary_control_planes:
            if not cp.eligible_for_actions:
                logger.info("Skipping node %s", cp.name)
                continue
            cp = self._run(cp, lambda n: self._join_control_plane(n, joined))
            joined.append(cp)
        return joined

    def _join_control_plane(self, cp: Node, joined: list[Node]) -> Node:
        self.check_versions(cp)

        if self.options.kustomize_dir:
            copy_patches_to_node(cp, self.options.kustomize_dir)
        if self.options.patches_dir:
            copy_patches_to_node(cp, self.options.patches_dir)
        cp = self._advance(cp, JoinState.ARTIFACTS_STAGED)

        # without automatic copy, simulate the operator copying certificates by hand
        if not self.options.automatic_copy_certs:
            copy_certificates_to_node(self.cluster, cp)
        cp = self._advance(cp, JoinState.CERTS_PROVISIONED)

        check_images_for_version(cp)

        write_join_config(
            self.cluster,
            cp,
            automatic_copy_certs=self.options.automatic_copy_certs,
            discovery_mode=self.options.discovery_mode,
        )
        cp = self._advance(cp, JoinState.CONFIG_RENDERED)

        if self.options.use_phases:
            cp = self._join_control_plane_with_phases(cp)
        else:
            cp = self._advance(cp, JoinState.JOINING)
            self._kubeadm(cp, *self._common_args(ignore_preflight_errors=True), *self._patches_args())

        self.load_balancer.apply([*joined, cp])
        cp = self._advance(cp, JoinState.LB_UPDATED)

        self.waiter.wait_for_node_ready(cp, self.options.wait)
        return self._advance(cp, JoinState.READY)

    def _join_control_plane_with_phases(self, cp: Node) -> Node:
        cp = self._advance(cp, JoinState.JOINING, JoinPhase.PREFLIGHT)
        self._kubeadm(cp, "phase", "preflight", *self._common_args(ignore_preflight_errors=True))

        cp = self._advance(cp, JoinState.JOINING, JoinPhase.CONTROL_PLANE_PREPARE)
        self._kubeadm(cp, "phase", "control-plane-prepare", "all", *self._common_args(), *self._patches_args())

        cp = self._advance(cp, JoinState.JOINING, JoinPhase.KUBELET_START)
        self._kubeadm(cp, "phase", "kubelet-start", *self._common_args())

        cp = self._advance(cp, JoinState.JOINING, JoinPhase.CONTROL_PLANE_JOIN)
        self._kubeadm(cp, "phase", "control-plane-join", "all", *self._common_args(), *self._patches_args())
        return cp

    # -- workers -------------------------------------------------------------

    def join_workers(self) -> list[Node]:
        workers = [w for w in self.cluster.workers if w.eligible_for_actions]
        for w in self.cluster.workers:
            if not w.eligible_for_actions:
                logger.info("Skipping node %s", w.name)

        if self.options.parallel_workers <= 1 or len(workers) <= 1:
            return [self._run(w, self._join_worker) for w in workers]

        with ThreadPoolExecutor(max_workers=self.options.parallel_workers) as executor:
            futures = [executor.submit(self._run, w, self._join_worker) for w in workers]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for f in pending:
                f.cancel()
        # re-raise the first failure in discovery order, once running joins are over
        for f in futures:
            error = None if f.cancelled() else f.exception()
            if error is not None:
                raise error
        return [f.result() for f in futures]

    def _join_worker(self, w: Node) -> Node:
        check_images_for_version(w)

        write_join_config(self.cluster, w, discovery_mode=self.options.discovery_mode)
        w = self._advance(w, JoinState.CONFIG_RENDERED)

        if self.options.use_phases:
            w = self._advance(w, JoinState.JOINING, JoinPhase.PREFLIGHT)
            self._kubeadm(w, "phase", "preflight", *self._common_args(ignore_preflight_errors=True))

            # control-plane-prepare and control-plane-join are not executed on workers
            w = self._advance(w, JoinState.JOINING, JoinPhase.KUBELET_START)
            self._kubeadm(w, "phase", "kubelet-start", *self._common_args())
        else:
            w = self._advance(w, JoinState.JOINING)
            self._kubeadm(w, *self._common_args(ignore_preflight_errors=True))

        self.waiter.wait_for_node_ready(w, self.options.wait)
        return self._advance(w, JoinState.READY)
