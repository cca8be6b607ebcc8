# clusterlab/constants.py

# kind label namespace (node containers are created by kind/kinder)
LABEL_PREFIX = "io.x-k8s.kind"
KINDER_LABEL_PREFIX = "io.x-k8s.kinder"

LABEL_CLUSTER = f"{LABEL_PREFIX}.cluster"
LABEL_ROLE = f"{LABEL_PREFIX}.role"
LABEL_KUBE_VERSION = f"{KINDER_LABEL_PREFIX}.kubernetes-version"
LABEL_KUBEADM_VERSION = f"{KINDER_LABEL_PREFIX}.kubeadm-version"

# Node role label values
CONTROL_PLANE_ROLE = "control-plane"
WORKER_ROLE = "worker"
EXTERNAL_ETCD_ROLE = "external-etcd"
EXTERNAL_LOAD_BALANCER_ROLE = "external-load-balancer"

# Well-known paths on the nodes
KUBE_VERSION_PATH = "/kind/version"
KUBEADM_CONFIG_PATH = "/kind/kubeadm.conf"
CLUSTER_SETTINGS_PATH = "/kind/kinder-settings.yaml"
PATCHES_DIR = "/kinder/patches"
DISCOVERY_FILE_PATH = "/kinder/discovery/config.yaml"
ADMIN_KUBECONFIG_PATH = "/etc/kubernetes/admin.conf"
PKI_DIR = "/etc/kubernetes/pki"
HAPROXY_CONFIG_PATH = "/usr/local/etc/haproxy/haproxy.cfg"

# kubeadm
KUBEADM_IGNORE_PREFLIGHT_ERRORS_FLAG = "--ignore-preflight-errors=all"
BOOTSTRAP_TOKEN = "abcdef.0123456789abcdef"
CERTIFICATE_KEY = "0123456789012345678901234567890123456789012345678901234567890123"
CRI_SOCKET = "unix:///run/containerd/containerd.sock"
API_SERVER_PORT = 6443

# Minimum kubeadm versions for optional join features
MIN_KUSTOMIZE_VERSION = "v1.17.0"
MIN_PATCHES_VERSION = "v1.19.0"

# Node selectors
SELECTORS = ("@all", "@cp*", "@cp1", "@cpn", "@w*", "@lb", "@etcd")
