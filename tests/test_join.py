from __future__ import annotations

import pytest
import yaml

from clusterlab.components.join import JoinOrchestrator
from clusterlab.components.wait import ReadinessWaiter
from clusterlab.config.models import JoinOptions
from clusterlab.constants import (
    DISCOVERY_FILE_PATH,
    HAPROXY_CONFIG_PATH,
    KUBEADM_CONFIG_PATH,
    PATCHES_DIR,
    PKI_DIR,
)
from clusterlab.errors import (
    AgentCommunicationFailure,
    InvariantViolation,
    MissingImage,
    ReadinessTimeout,
    VersionSkew,
)
from clusterlab.status.node import JoinState

from conftest import agent, images_for

COMPOSITE = ("kubeadm", "join", f"--config={KUBEADM_CONFIG_PATH}", "--v=0", "--ignore-preflight-errors=all")


def phases(a) -> list[str]:
    return [c[3] for c in a.kubeadm_joins() if c[2] == "phase"]


def test_join_control_planes_then_workers(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=3, workers=2, lb=True)

    JoinOrchestrator(cluster).join()

    for suffix in ("control-plane2", "control-plane3", "worker1", "worker2"):
        assert agent(agents, suffix).kubeadm_joins() == [COMPOSITE]
        assert cluster.node(f"kind-{suffix}").state is JoinState.READY
    # the bootstrap control-plane is already part of the cluster
    assert agent(agents, "control-plane1").kubeadm_joins() == []
    assert cluster.bootstrap_control_plane.state is JoinState.PROVISIONED


def test_join_writes_config_on_each_node(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=2, workers=1, lb=True)

    JoinOrchestrator(cluster).join()

    cp2 = yaml.safe_load(agent(agents, "control-plane2").files[KUBEADM_CONFIG_PATH])
    w1 = yaml.safe_load(agent(agents, "worker1").files[KUBEADM_CONFIG_PATH])
    assert cp2["kind"] == w1["kind"] == "JoinConfiguration"
    assert cp2["controlPlane"]["localAPIEndpoint"]["advertiseAddress"] == "172.18.0.3"
    assert "controlPlane" not in w1
    assert w1["discovery"]["bootstrapToken"]["apiServerEndpoint"] == "172.18.0.5:6443"


def test_phased_control_plane_runs_all_phases_in_order(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=2, lb=True)

    JoinOrchestrator(cluster, JoinOptions(use_phases=True)).join()

    cp2 = agent(agents, "control-plane2")
    assert phases(cp2) == ["preflight", "control-plane-prepare", "kubelet-start", "control-plane-join"]
    preflight = cp2.kubeadm_joins()[0]
    assert preflight[-1] == "--ignore-preflight-errors=all"
    assert all("--ignore-preflight-errors=all" not in c for c in cp2.kubeadm_joins()[1:])
    assert cluster.node("kind-control-plane2").state is JoinState.READY


def test_phased_worker_skips_control_plane_phases(build_cluster) -> None:
    cluster, agents = build_cluster(workers=2)

    JoinOrchestrator(cluster, JoinOptions(use_phases=True)).join()

    for suffix in ("worker1", "worker2"):
        assert phases(agent(agents, suffix)) == ["preflight", "kubelet-start"]


def test_verbosity_is_passed_to_kubeadm(build_cluster) -> None:
    cluster, agents = build_cluster(workers=1)

    JoinOrchestrator(cluster, JoinOptions(verbosity=5)).join()

    assert "--v=5" in agent(agents, "worker1").kubeadm_joins()[0]


def test_certificates_copied_from_bootstrap_control_plane(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=2, lb=True)

    JoinOrchestrator(cluster).join()

    cp2 = agent(agents, "control-plane2")
    assert cp2.files[f"{PKI_DIR}/ca.key"] == "content of ca.key\n"
    assert cp2.files[f"{PKI_DIR}/etcd/ca.crt"] == "content of etcd/ca.crt\n"
    config = yaml.safe_load(cp2.files[KUBEADM_CONFIG_PATH])
    assert "certificateKey" not in config["controlPlane"]


def test_automatic_copy_certs_skips_manual_copy(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=2, lb=True)

    JoinOrchestrator(cluster, JoinOptions(automatic_copy_certs=True)).join()

    cp1 = agent(agents, "control-plane1")
    cp2 = agent(agents, "control-plane2")
    assert [c for c in cp1.calls if c[0] == "copy_from"] == []
    assert not any(path.startswith(PKI_DIR) for path in cp2.files)
    config = yaml.safe_load(cp2.files[KUBEADM_CONFIG_PATH])
    assert config["controlPlane"]["certificateKey"]


def test_patches_are_staged_and_passed(build_cluster, tmp_path) -> None:
    (tmp_path / "kube-apiserver+json.json").write_text("[]\n")
    (tmp_path / "etcd.yaml").write_text("spec: {}\n")
    (tmp_path / "nested").mkdir()
    cluster, agents = build_cluster(control_planes=2, lb=True)

    JoinOrchestrator(cluster, JoinOptions(patches_dir=str(tmp_path))).join()

    cp2 = agent(agents, "control-plane2")
    assert sorted(p for p in cp2.files if p.startswith(PATCHES_DIR)) == [
        f"{PATCHES_DIR}/etcd.yaml",
        f"{PATCHES_DIR}/kube-apiserver+json.json",
    ]
    assert cp2.kubeadm_joins()[0][-2:] == ("--experimental-patches", PATCHES_DIR)


def test_kustomize_in_phases_only_on_prepare_and_join(build_cluster, tmp_path) -> None:
    (tmp_path / "kustomization.yaml").write_text("resources: []\n")
    cluster, agents = build_cluster(control_planes=2, lb=True)

    JoinOrchestrator(cluster, JoinOptions(use_phases=True, kustomize_dir=str(tmp_path))).join()

    with_patches = [c[3] for c in agent(agents, "control-plane2").kubeadm_joins() if "-k" in c]
    assert with_patches == ["control-plane-prepare", "control-plane-join"]


def test_version_gate_fails_before_touching_the_node(build_cluster, tmp_path) -> None:
    cluster, agents = build_cluster(control_planes=3, lb=True, kubeadm_version="v1.18.5")

    orchestrator = JoinOrchestrator(cluster, JoinOptions(patches_dir=str(tmp_path)))
    with pytest.raises(VersionSkew) as exc:
        orchestrator.join()

    assert exc.value.node == "kind-control-plane2"
    assert exc.value.required == "v1.19.0"
    assert "--patches" in str(exc.value)
    assert agent(agents, "control-plane2").mutating_calls == []
    assert agent(agents, "control-plane3").mutating_calls == []
    failed = cluster.node("kind-control-plane2")
    assert failed.state is JoinState.FAILED
    assert failed.error is exc.value


def test_unknown_kubeadm_version_fails_the_gate(build_cluster, tmp_path) -> None:
    cluster, agents = build_cluster(control_planes=2, lb=True, kubeadm_version=None)

    with pytest.raises(VersionSkew):
        JoinOrchestrator(cluster, JoinOptions(kustomize_dir=str(tmp_path))).join()
    assert agent(agents, "control-plane2").mutating_calls == []


def test_unparseable_kubeadm_version_fails_the_gate(build_cluster, tmp_path) -> None:
    cluster, agents = build_cluster(control_planes=2, lb=True, kubeadm_version="devel")

    with pytest.raises(VersionSkew) as exc:
        JoinOrchestrator(cluster, JoinOptions(kustomize_dir=str(tmp_path))).join()

    assert exc.value.node == "kind-control-plane2"
    assert exc.value.actual == "devel"
    assert agent(agents, "control-plane2").mutating_calls == []
    assert cluster.node("kind-control-plane2").state is JoinState.FAILED


def test_unparseable_kubeadm_version_fails_worker_config(build_cluster) -> None:
    cluster, agents = build_cluster(workers=2, kubeadm_version="devel")

    with pytest.raises(InvariantViolation) as exc:
        JoinOrchestrator(cluster).join()

    assert exc.value.node == "kind-worker1"
    assert "devel" in str(exc.value)
    failed = cluster.node("kind-worker1")
    assert failed.state is JoinState.FAILED
    assert failed.error is exc.value
    assert agent(agents, "worker1").kubeadm_joins() == []
    assert agent(agents, "worker2").calls == []


def test_missing_image_aborts_remaining_nodes(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=3, workers=2, lb=True)
    missing = images_for("v1.19.0")[0]
    agent(agents, "control-plane3").missing_images = {missing}

    with pytest.raises(MissingImage) as exc:
        JoinOrchestrator(cluster).join()

    assert exc.value.node == "kind-control-plane3"
    assert exc.value.images == [missing]
    assert cluster.node("kind-control-plane2").state is JoinState.READY
    assert cluster.node("kind-control-plane3").state is JoinState.FAILED
    assert agent(agents, "control-plane3").kubeadm_joins() == []
    for suffix in ("worker1", "worker2"):
        assert agent(agents, suffix).calls == []
        assert cluster.node(f"kind-{suffix}").state is JoinState.PROVISIONED


def test_kubeadm_failure_marks_node_failed(build_cluster) -> None:
    cluster, agents = build_cluster(workers=2)
    agent(agents, "worker1").fail("kubeadm", "join", message="preflight errors")

    with pytest.raises(AgentCommunicationFailure, match="preflight errors"):
        JoinOrchestrator(cluster).join()

    assert cluster.node("kind-worker1").state is JoinState.FAILED
    assert agent(agents, "worker2").calls == []


def test_load_balancer_tracks_every_joined_control_plane(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=3, lb=True)
    orchestrator = JoinOrchestrator(cluster)

    orchestrator.join()

    assert orchestrator.load_balancer.backends == {
        "kind-control-plane1",
        "kind-control-plane2",
        "kind-control-plane3",
    }
    lb = agent(agents, "lb")
    servers = [line.split()[1] for line in lb.files[HAPROXY_CONFIG_PATH].splitlines() if line.strip().startswith("server ")]
    assert servers == ["kind-control-plane1", "kind-control-plane2", "kind-control-plane3"]
    assert lb.execs("kill") == [("kill", "-s", "HUP", "1"), ("kill", "-s", "HUP", "1")]
    for suffix in ("control-plane2", "control-plane3"):
        assert cluster.node(f"kind-{suffix}").state is JoinState.READY


def test_held_nodes_are_skipped(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=3, workers=2, lb=True)
    cluster.only_nodes("control-plane3")

    JoinOrchestrator(cluster).join()

    assert agent(agents, "control-plane3").kubeadm_joins() == [COMPOSITE]
    for suffix in ("control-plane2", "worker1", "worker2"):
        assert agent(agents, suffix).calls == []
        assert cluster.node(f"kind-{suffix}").state is JoinState.HELD
    assert cluster.node("kind-control-plane3").state is JoinState.READY


def test_file_discovery_stages_discovery_file(build_cluster) -> None:
    cluster, agents = build_cluster(workers=1)

    JoinOrchestrator(cluster, JoinOptions(discovery_mode="file")).join()

    w1 = agent(agents, "worker1")
    discovery = yaml.safe_load(w1.files[DISCOVERY_FILE_PATH])
    assert discovery["clusters"][0]["cluster"]["server"] == "https://172.18.0.2:6443"
    assert discovery["users"][0]["name"] == "kubernetes-admin"
    config = yaml.safe_load(w1.files[KUBEADM_CONFIG_PATH])
    assert config["discovery"] == {"file": {"kubeConfigPath": DISCOVERY_FILE_PATH}}


def test_parallel_workers(build_cluster) -> None:
    cluster, agents = build_cluster(workers=4)

    JoinOrchestrator(cluster, JoinOptions(parallel_workers=3)).join()

    for i in range(1, 5):
        assert agent(agents, f"worker{i}").kubeadm_joins() == [COMPOSITE]
        assert cluster.node(f"kind-worker{i}").state is JoinState.READY


def test_parallel_worker_failure_is_raised(build_cluster) -> None:
    cluster, agents = build_cluster(workers=3)
    agent(agents, "worker2").fail("kubeadm", "join")

    with pytest.raises(AgentCommunicationFailure) as exc:
        JoinOrchestrator(cluster, JoinOptions(parallel_workers=3)).join()

    assert exc.value.node == "kind-worker2"
    assert cluster.node("kind-worker2").state is JoinState.FAILED


def test_wait_for_ready(build_cluster) -> None:
    cluster, agents = build_cluster(control_planes=2, workers=1, lb=True)
    waiter = ReadinessWaiter(cluster, interval=0.01)

    JoinOrchestrator(cluster, JoinOptions(wait=1), waiter=waiter).join()

    probes = agent(agents, "control-plane1").execs("kubectl")
    assert [p[4] for p in probes] == ["kind-control-plane2", "kind-worker1"]


def test_readiness_timeout_fails_the_node(build_cluster) -> None:
    cluster, agents = build_cluster(workers=2)
    agents[0].runtime.not_ready.add("kind-worker1")
    waiter = ReadinessWaiter(cluster, interval=0.01)

    with pytest.raises(ReadinessTimeout) as exc:
        JoinOrchestrator(cluster, JoinOptions(wait=0.05), waiter=waiter).join()

    assert exc.value.node == "kind-worker1"
    assert cluster.node("kind-worker1").state is JoinState.FAILED
    # joined, but never reported ready
    assert agent(agents, "worker1").kubeadm_joins() == [COMPOSITE]
    assert agent(agents, "worker2").calls == []


def test_no_wait_means_no_probe(build_cluster) -> None:
    cluster, agents = build_cluster(workers=1)

    JoinOrchestrator(cluster).join()

    assert agent(agents, "control-plane1").execs("kubectl") == []
