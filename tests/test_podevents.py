"""Tests for the pgfailoveroperator.podevents module."""

from __future__ import annotations

import threading

import pytest

from pgfailoveroperator.exceptions import (
    PodWaitError,
    SubscriptionContractError,
)
from pgfailoveroperator.names import NamespacedName
from pgfailoveroperator.podevents import (
    PodEvent,
    PodEventBus,
    PodEventType,
    pod_event_from_watch,
    wait_for_pod_deletion,
    wait_for_pod_label,
)

POD = NamespacedName("default", "acid-test-0")


def make_pod(role: str | None = None, node: str = "node-1") -> dict:
    labels = {"cluster-name": "acid-test"}
    if role:
        labels["spilo-role"] = role
    return {
        "metadata": {"name": POD.name, "namespace": POD.namespace, "labels": labels},
        "spec": {"nodeName": node},
    }


def event(kind: PodEventType, pod: dict | None = None) -> PodEvent:
    return PodEvent(event_type=kind, pod_name=POD, cur_pod=pod)


def test_duplicate_subscription_is_a_contract_violation() -> None:
    bus = PodEventBus()
    bus.subscribe(POD)

    with pytest.raises(SubscriptionContractError):
        bus.subscribe(POD)


def test_unsubscribe_without_subscription_is_a_contract_violation() -> None:
    bus = PodEventBus()

    with pytest.raises(SubscriptionContractError):
        bus.unsubscribe(POD)

    bus.subscribe(POD)
    bus.unsubscribe(POD)
    with pytest.raises(SubscriptionContractError):
        bus.unsubscribe(POD)


def test_resubscribe_after_unsubscribe() -> None:
    bus = PodEventBus()
    first = bus.subscribe(POD)
    bus.unsubscribe(POD)

    assert first.closed
    second = bus.subscribe(POD)
    assert second is not first
    assert bus.is_subscribed(POD)


def test_publish_routes_by_pod_identity() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    other = NamespacedName("default", "acid-test-1")

    assert not bus.publish(PodEvent(PodEventType.DELETE, other))
    assert bus.publish(event(PodEventType.DELETE))
    assert channel.get(timeout=0.1).event_type == PodEventType.DELETE


def test_wait_for_deletion_skips_other_events() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    bus.publish(event(PodEventType.UPDATE, make_pod("primary")))
    bus.publish(event(PodEventType.DELETE, make_pod("primary")))
    bus.publish(event(PodEventType.UPDATE, make_pod("replica")))

    wait_for_pod_deletion(channel, timeout=1)

    # The replacement pod is left for the label wait.
    assert channel.get(timeout=0.1).cur_pod["metadata"]["labels"][
        "spilo-role"
    ] == ("replica")


def test_wait_for_deletion_ends_on_closed_channel() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    bus.unsubscribe(POD)

    wait_for_pod_deletion(channel, timeout=1)


def test_wait_for_deletion_times_out() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)

    with pytest.raises(PodWaitError):
        wait_for_pod_deletion(channel, timeout=0.05)


def test_wait_for_label_returns_labelled_pod() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    bus.publish(event(PodEventType.ADD, make_pod()))
    bus.publish(event(PodEventType.UPDATE, make_pod("replica", node="node-2")))

    pod = wait_for_pod_label(
        channel, threading.Event(), role_label="spilo-role", timeout=1
    )
    assert pod["spec"]["nodeName"] == "node-2"


def test_wait_for_label_with_role() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    bus.publish(event(PodEventType.UPDATE, make_pod("replica")))
    bus.publish(event(PodEventType.UPDATE, make_pod("primary")))

    pod = wait_for_pod_label(
        channel,
        threading.Event(),
        role_label="spilo-role",
        role="primary",
        timeout=1,
    )
    assert pod["metadata"]["labels"]["spilo-role"] == "primary"


def test_wait_for_label_from_another_thread() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    timer = threading.Timer(
        0.05, bus.publish, args=(event(PodEventType.UPDATE, make_pod("replica")),)
    )
    timer.start()
    try:
        pod = wait_for_pod_label(
            channel, threading.Event(), role_label="spilo-role", timeout=2
        )
    finally:
        timer.cancel()
    assert pod["metadata"]["name"] == POD.name


def test_wait_for_label_cancelled() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    stop = threading.Event()
    threading.Timer(0.05, stop.set).start()

    with pytest.raises(PodWaitError, match="cancelled"):
        wait_for_pod_label(channel, stop, role_label="spilo-role", timeout=5)


def test_wait_for_label_closed_channel() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)
    bus.unsubscribe(POD)

    with pytest.raises(PodWaitError):
        wait_for_pod_label(
            channel, threading.Event(), role_label="spilo-role", timeout=1
        )


def test_wait_for_label_times_out() -> None:
    bus = PodEventBus()
    channel = bus.subscribe(POD)

    with pytest.raises(PodWaitError, match="timeout"):
        wait_for_pod_label(
            channel, threading.Event(), role_label="spilo-role", timeout=0.05
        )


def test_pod_event_from_watch() -> None:
    pod = make_pod("replica")

    converted = pod_event_from_watch("DELETED", pod)
    assert converted.event_type == PodEventType.DELETE
    assert converted.pod_name == POD
    assert pod_event_from_watch(None, pod) is None
