import logging

import pulumi

from clusterlab.config.load import load_config
from clusterlab.providers.join_resource import KubeadmJoin

logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

# 1) load config
cfg = load_config()

# 2) join the pending nodes of the cluster
join = KubeadmJoin(
    "kubeadm-join",
    cluster_name=cfg.cluster_name,
    options=cfg.join,
    only_nodes=cfg.only_nodes,
    ip_family=cfg.ip_family,
)

# 3) export outputs
pulumi.export("clusterName", cfg.cluster_name)
pulumi.export("controlPlanes", join.control_planes)
pulumi.export("workers", join.workers)
pulumi.export("readyNodes", join.ready_nodes)
pulumi.export("kubeconfigPath", join.kubeconfig_path)
