import os

import pulumi

from .models import Config, JoinOptions, VALID_IP_FAMILIES


def _require_dir(key: str, path: str) -> str:
    expanded = os.path.expanduser(path)
    if not os.path.isdir(expanded):
        raise FileNotFoundError(f"{key} does not exist or is not a directory: {expanded}")
    return expanded


def _or_default(v, default):
    return default if v is None else v


def load_config(c: pulumi.Config | None = None) -> Config:
    """
    Reads stack config from Pulumi.<stack>.yaml.

    Join behavior:
      - usePhases / automaticCopyCerts / discoveryMode map 1:1 to JoinOptions
      - kustomizeDir / patchesDir must point to existing local directories
      - wait is in seconds; 0 means don't wait for nodes to become ready

    Settings behavior:
      - ipFamily set   -> settings are written to every node before joining
      - ipFamily unset -> settings are read from the bootstrap control-plane

    Docker connection settings are not part of stack config; the client is
    built from DOCKER_HOST & co (see providers/docker.py).
    """
    if c is None:
        c = pulumi.Config()

    cluster_name = c.get("clusterName") or pulumi.get_stack()

    kustomize_dir = c.get("kustomizeDir")
    if kustomize_dir:
        kustomize_dir = _require_dir("kustomizeDir", kustomize_dir)

    patches_dir = c.get("patchesDir")
    if patches_dir:
        patches_dir = _require_dir("patchesDir", patches_dir)

    join = JoinOptions(
        use_phases=bool(c.get_bool("usePhases") or False),
        automatic_copy_certs=bool(c.get_bool("automaticCopyCerts") or False),
        discovery_mode=c.get("discoveryMode") or "token",
        kustomize_dir=kustomize_dir or None,
        patches_dir=patches_dir or None,
        wait=_or_default(c.get_float("wait"), 0.0),
        verbosity=_or_default(c.get_int("verbosity"), 0),
        parallel_workers=_or_default(c.get_int("parallelWorkers"), 1),
    )

    ip_family = c.get("ipFamily")
    if ip_family and ip_family not in VALID_IP_FAMILIES:
        raise ValueError(
            f"Invalid ipFamily {ip_family!r}. Must be one of {list(VALID_IP_FAMILIES)}"
        )

    return Config(
        stack=pulumi.get_stack(),
        cluster_name=cluster_name,
        join=join,
        only_nodes=c.get("onlyNodes") or None,
        ip_family=ip_family or None,
    )
