"""Shared fixtures: in-memory stand-ins for Kubernetes and Patroni."""

from __future__ import annotations

import copy
import json
from typing import Any

import pytest
from kubernetes.client.exceptions import ApiException

from pgfailoveroperator.config import MigrationConfig
from pgfailoveroperator.exceptions import PatroniError
from pgfailoveroperator.migration import ClusterMigrator
from pgfailoveroperator.names import NamespacedName
from pgfailoveroperator.patroni import ClusterMember, MemberData
from pgfailoveroperator.podevents import PodEvent, PodEventBus, PodEventType

NAMESPACE = "default"
CLUSTER = "acid-test"
ROLE_LABEL = "spilo-role"
READY_LABEL = {"lifecycle-status": "ready"}


class FakeResponse:
    def __init__(self, body: Any) -> None:
        self.data = json.dumps(body).encode("utf-8")


def _matches(labels: dict[str, str], selector: str | None) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, sep, value = term.partition("=")
        if sep:
            if labels.get(key) != value:
                return False
        elif key not in labels:
            return False
    return True


class FakeCoreV1Api:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def read_namespaced_pod(
        self, name: str, namespace: str, _preload_content: bool = True
    ) -> FakeResponse:
        try:
            return FakeResponse(self.kube.pods[(namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None

    def list_namespaced_pod(
        self,
        namespace: str,
        _preload_content: bool = True,
        label_selector: str | None = None,
        field_selector: str | None = None,
    ) -> FakeResponse:
        items = []
        for (pod_namespace, _), pod in self.kube.pods.items():
            if pod_namespace != namespace:
                continue
            if not _matches(pod["metadata"]["labels"], label_selector):
                continue
            if field_selector:
                _, _, node_name = field_selector.partition("=")
                if pod["spec"]["nodeName"] != node_name:
                    continue
            items.append(pod)
        return FakeResponse({"items": items})

    def delete_namespaced_pod(self, name: str, namespace: str) -> None:
        self.kube.log.append(("delete", name))
        if self.kube.delete_failures:
            self.kube.delete_failures -= 1
            raise ApiException(status=500, reason="Internal Server Error")
        self.kube.recreate(namespace, name)

    def patch_namespaced_pod(
        self,
        name: str,
        namespace: str,
        body: dict[str, Any],
        _content_type: str | None = None,
    ) -> None:
        self.kube.patches.append((name, body, _content_type))
        if self.kube.patch_failures:
            raise ApiException(status=500, reason="Internal Server Error")
        pod = self.kube.pods[(namespace, name)]
        pod["metadata"].setdefault("annotations", {}).update(
            body["metadata"]["annotations"]
        )

    def read_node(self, name: str, _preload_content: bool = True) -> FakeResponse:
        try:
            return FakeResponse(self.kube.nodes[name])
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None


class FakeAppsV1Api:
    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube

    def read_namespaced_stateful_set(
        self, name: str, namespace: str, _preload_content: bool = True
    ) -> FakeResponse:
        self.kube.statefulset_reads += 1
        try:
            return FakeResponse(self.kube.statefulsets[(namespace, name)])
        except KeyError:
            raise ApiException(status=404, reason="Not Found") from None

    def list_namespaced_stateful_set(
        self,
        namespace: str,
        label_selector: str,
        _preload_content: bool = True,
    ) -> FakeResponse:
        items = [
            sts
            for (sts_namespace, _), sts in self.kube.statefulsets.items()
            if sts_namespace == namespace
            and _matches(sts["metadata"]["labels"], label_selector)
        ]
        return FakeResponse({"items": items})


class FakeKube:
    """Stands in for the ``kubernetes.client`` module.

    Deleting a pod replays what the StatefulSet controller and Patroni do:
    a deletion event, then the replacement pod without and with its role
    label. ``placements`` decides where (node, role) each recreation lands;
    by default a pod comes back on ``node-new`` with its previous role.
    """

    def __init__(self, bus: PodEventBus) -> None:
        self.bus = bus
        self.pods: dict[tuple[str, str], dict[str, Any]] = {}
        self.nodes: dict[str, dict[str, Any]] = {}
        self.statefulsets: dict[tuple[str, str], dict[str, Any]] = {}
        self.placements: dict[str, list[tuple[str, str]]] = {}
        self.log: list[tuple[str, str]] = []
        self.patches: list[tuple[str, dict[str, Any], str | None]] = []
        self.delete_failures = 0
        self.patch_failures = False
        self.statefulset_reads = 0

    def CoreV1Api(self) -> FakeCoreV1Api:  # noqa: N802
        return FakeCoreV1Api(self)

    def AppsV1Api(self) -> FakeAppsV1Api:  # noqa: N802
        return FakeAppsV1Api(self)

    @property
    def deleted(self) -> list[str]:
        return [name for action, name in self.log if action == "delete"]

    def add_node(
        self,
        name: str,
        *,
        unschedulable: bool = False,
        labels: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        node = {
            "metadata": {
                "name": name,
                "labels": dict(READY_LABEL if labels is None else labels),
            },
            "spec": {"unschedulable": unschedulable},
        }
        self.nodes[name] = node
        return node

    def add_pod(
        self,
        name: str,
        *,
        node: str,
        role: str | None,
        annotations: dict[str, str] | None = None,
        cluster: str = CLUSTER,
    ) -> dict[str, Any]:
        labels = {"application": "spilo", "cluster-name": cluster}
        if role is not None:
            labels[ROLE_LABEL] = role
        pod = {
            "metadata": {
                "name": name,
                "namespace": NAMESPACE,
                "labels": labels,
                "annotations": dict(annotations or {}),
            },
            "spec": {"nodeName": node},
            "status": {"podIP": "10.0.0.1"},
        }
        self.pods[(NAMESPACE, name)] = pod
        return copy.deepcopy(pod)

    def add_statefulset(self, name: str = CLUSTER, *, replicas: int) -> None:
        self.statefulsets[(NAMESPACE, name)] = {
            "metadata": {
                "name": name,
                "namespace": NAMESPACE,
                "labels": {"cluster-name": name},
            },
            "spec": {"replicas": replicas},
        }

    def set_role(self, name: str, role: str) -> None:
        key = (NAMESPACE, name)
        self.pods[key]["metadata"]["labels"][ROLE_LABEL] = role
        self.bus.publish(
            PodEvent(
                event_type=PodEventType.UPDATE,
                pod_name=NamespacedName(*key),
                cur_pod=copy.deepcopy(self.pods[key]),
            )
        )

    def recreate(self, namespace: str, name: str) -> None:
        key = (namespace, name)
        pod_name = NamespacedName(*key)
        old = self.pods.pop(key)
        self.bus.publish(
            PodEvent(
                event_type=PodEventType.DELETE, pod_name=pod_name, cur_pod=old
            )
        )

        planned = self.placements.get(name)
        if planned:
            node, role = planned.pop(0)
        else:
            node, role = "node-new", old["metadata"]["labels"].get(ROLE_LABEL)

        new = copy.deepcopy(old)
        new["metadata"]["annotations"] = {}
        new["metadata"]["labels"].pop(ROLE_LABEL, None)
        new["spec"]["nodeName"] = node
        self.bus.publish(
            PodEvent(
                event_type=PodEventType.ADD,
                pod_name=pod_name,
                cur_pod=copy.deepcopy(new),
            )
        )
        new["metadata"]["labels"][ROLE_LABEL] = role
        self.pods[key] = new
        self.bus.publish(
            PodEvent(
                event_type=PodEventType.UPDATE,
                pod_name=pod_name,
                cur_pod=copy.deepcopy(new),
            )
        )


class FakePatroni:
    """Stands in for `pgfailoveroperator.patroni.PatroniClient`."""

    def __init__(self, kube: FakeKube) -> None:
        self.kube = kube
        self.members: list[ClusterMember] = []
        self.member_state = "running"
        self.member_failures = 0
        self.member_calls = 0
        self.switchover_failures = 0
        self.switchovers: list[tuple[str, str]] = []

    def get_cluster_members(self, pod: dict[str, Any]) -> list[ClusterMember]:
        self.member_calls += 1
        if self.member_failures:
            self.member_failures -= 1
            raise PatroniError("connection refused")
        return list(self.members)

    def get_member_data(self, pod: dict[str, Any]) -> MemberData:
        return MemberData(role="replica", state=self.member_state)

    def get_config(
        self, pod: dict[str, Any]
    ) -> tuple[dict[str, Any], dict[str, str]]:
        return {"ttl": 30, "loop_wait": 10}, {"max_connections": "100"}

    def switchover(self, master_pod: dict[str, Any], candidate: str) -> None:
        if self.switchover_failures:
            self.switchover_failures -= 1
            raise PatroniError("switchover is not possible")
        master = master_pod["metadata"]["name"]
        self.switchovers.append((master, candidate))
        self.kube.log.append(("switchover", candidate))
        if (NAMESPACE, master) in self.kube.pods:
            self.kube.set_role(master, "replica")
        self.kube.set_role(candidate, "primary")


@pytest.fixture
def config() -> MigrationConfig:
    return MigrationConfig(
        node_readiness_label=dict(READY_LABEL),
        kube_retry_interval=0.01,
        kube_retry_timeout=0.05,
        patroni_api_check_interval=0.01,
        patroni_api_check_timeout=0.05,
        switchover_retry_interval=0.01,
        switchover_retry_timeout=0.03,
        pod_label_wait_timeout=2.0,
        pod_deletion_wait_timeout=2.0,
    )


@pytest.fixture
def bus() -> PodEventBus:
    return PodEventBus()


@pytest.fixture
def kube(bus: PodEventBus) -> FakeKube:
    kube = FakeKube(bus)
    kube.add_node("node-old", unschedulable=True)
    kube.add_node("node-live")
    kube.add_node("node-new")
    return kube


@pytest.fixture
def patroni(kube: FakeKube) -> FakePatroni:
    return FakePatroni(kube)


@pytest.fixture
def migrator(
    kube: FakeKube,
    patroni: FakePatroni,
    bus: PodEventBus,
    config: MigrationConfig,
) -> ClusterMigrator:
    return ClusterMigrator(
        namespace=NAMESPACE,
        cluster_name=CLUSTER,
        k8s_client=kube,
        patroni=patroni,
        pod_events=bus,
        config=config,
    )


def member(
    name: str, role: str = "replica", state: str = "running", lag: float = 0
) -> ClusterMember:
    return ClusterMember(name=name, role=role, state=state, lag=lag)
