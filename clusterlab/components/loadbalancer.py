from __future__ import annotations

import logging
import os
import posixpath
import tempfile
import threading
from typing import Iterable

from ..constants import API_SERVER_PORT, HAPROXY_CONFIG_PATH
from ..errors import InvariantViolation
from ..status.cluster import Cluster
from ..status.node import Node
from ..utils.net import host_port

logger = logging.getLogger(__name__)


def render_config(control_planes: Iterable[Node], *, ip_family: str = "ipv4") -> str:
    """
    HAProxy config balancing the API server over control_planes.

    Backends are de-duplicated by name and sorted, so the output only depends
    on the set of control-plane nodes and not on the order they joined.
    """
    by_name = {n.name: n for n in control_planes}
    ipv6 = ip_family == "ipv6"

    lines = [
        "global",
        "  log /dev/log local0",
        "  log /dev/log local1 notice",
        "  daemon",
        "",
        "resolvers docker",
        "  nameserver dns 127.0.0.11:53",
        "",
        "defaults",
        "  log global",
        "  mode tcp",
        "  option dontlognull",
        "  timeout connect 5000",
        "  timeout client 50000",
        "  timeout server 50000",
        "  default-server init-addr none",
        "",
        "frontend control-plane",
        f"  bind *:{API_SERVER_PORT}",
    ]
    if ipv6:
        lines.append(f"  bind :::{API_SERVER_PORT}")
    lines += [
        "  default_backend kube-apiservers",
        "",
        "backend kube-apiservers",
        "  option httpchk GET /healthz",
    ]
    for name in sorted(by_name):
        address = by_name[name].address(ip_family) or name
        lines.append(
            f"  server {name} {host_port(address, API_SERVER_PORT)} check check-ssl verify none "
            f"resolvers docker resolve-prefer {'ipv6' if ipv6 else 'ipv4'}"
        )

    return "\n".join(lines) + "\n"


class LoadBalancerReconfigurer:
    """
    Keeps the external load balancer backends in sync with the control-planes.

    Only the current membership matters: apply() re-renders the whole config
    from the given nodes, and does nothing if it matches the last one applied.
    """

    def __init__(self, cluster: Cluster) -> None:
        self.cluster = cluster
        self._applied: str | None = None
        self._backends: frozenset[str] = frozenset()
        self._lock = threading.Lock()

    @property
    def backends(self) -> frozenset[str]:
        return self._backends

    def apply(self, control_planes: Iterable[Node]) -> bool:
        """Returns True if the load balancer config was (re)written."""
        control_planes = list(control_planes)
        with self._lock:
            lb = self.cluster.external_load_balancer
            if lb is None:
                if len({n.name for n in control_planes}) > 1:
                    raise InvariantViolation("more than one control-plane node but no external load balancer")
                logger.debug("No external load balancer, nothing to update")
                return False

            config = render_config(control_planes, ip_family=self.cluster.settings.ip_family)
            if config == self._applied:
                logger.debug("Load balancer config unchanged, skipping update")
                return False

            logger.info(
                "Updating load balancer %s with backends %s",
                lb.name,
                ", ".join(sorted(n.name for n in control_planes)),
            )
            with tempfile.TemporaryDirectory() as tmp:
                local = os.path.join(tmp, posixpath.basename(HAPROXY_CONFIG_PATH))
                with open(local, "w", encoding="utf-8") as f:
                    f.write(config)
                lb.agent.copy_to(local, HAPROXY_CONFIG_PATH)
            # haproxy runs as pid 1 in the load balancer node and reloads on SIGHUP
            lb.agent.exec("kill", "-s", "HUP", "1")

            self._applied = config
            self._backends = frozenset(n.name for n in control_planes)
            return True
