"""Tests for the pgfailoveroperator.endoflife module."""

from __future__ import annotations

import pytest
from kubernetes.client.exceptions import ApiException

from pgfailoveroperator.endoflife import node_is_ready, pod_is_end_of_life

READY = {"lifecycle-status": "ready"}


@pytest.mark.parametrize(
    "unschedulable,labels,expected",
    [
        (False, {"lifecycle-status": "ready"}, False),
        (True, {"lifecycle-status": "ready"}, True),
        (False, {"lifecycle-status": "draining"}, True),
        (False, {}, True),
        (True, {}, True),
        (False, {"lifecycle-status": "ready", "zone": "a"}, False),
    ],
)
def test_pod_is_end_of_life(kube, unschedulable, labels, expected) -> None:
    kube.add_node("node-x", unschedulable=unschedulable, labels=labels)
    pod = kube.add_pod("pod-0", node="node-x", role="replica")

    assert pod_is_end_of_life(pod, k8s_client=kube, readiness_label=READY) is (
        expected
    )


def test_empty_readiness_label_matches_any_schedulable_node() -> None:
    node = {"metadata": {"name": "n", "labels": {}}, "spec": {}}
    assert node_is_ready(node, {})
    node["spec"]["unschedulable"] = True
    assert not node_is_ready(node, {})


def test_node_is_ready_without_labels_or_spec() -> None:
    assert not node_is_ready({"metadata": {"name": "n"}}, READY)
    assert node_is_ready({"metadata": {"name": "n", "labels": None}}, {})


def test_missing_node_raises(kube) -> None:
    pod = kube.add_pod("pod-0", node="node-gone", role="replica")

    with pytest.raises(ApiException):
        pod_is_end_of_life(pod, k8s_client=kube, readiness_label=READY)
