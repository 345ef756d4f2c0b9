"""Per-pod publish/subscribe bridge between the pod watch and blocking waits.

The kopf pod watch handler publishes every event into a single
`PodEventBus`. Code that triggers an asynchronous pod change subscribes to the
pod first, issues the change, and then blocks on the returned channel with
`wait_for_pod_deletion` or `wait_for_pod_label`.
"""

from __future__ import annotations

__all__ = (
    "PodEvent",
    "PodEventBus",
    "PodEventChannel",
    "PodEventType",
    "pod_event_from_watch",
    "wait_for_pod_deletion",
    "wait_for_pod_label",
)

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from pgfailoveroperator.exceptions import (
    PodWaitError,
    SubscriptionContractError,
)
from pgfailoveroperator.names import NamespacedName, PostgresRole

_CLOSED = object()

# Upper bound on a single blocking read, so the stop signal is observed.
_STOP_CHECK_INTERVAL = 0.5


class PodEventType(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass
class PodEvent:
    """A change of a pod observed by the watch."""

    event_type: PodEventType
    pod_name: NamespacedName
    cur_pod: dict[str, Any] | None = None
    prev_pod: dict[str, Any] | None = None


_WATCH_EVENT_TYPES = {
    "ADDED": PodEventType.ADD,
    "MODIFIED": PodEventType.UPDATE,
    "DELETED": PodEventType.DELETE,
}


def pod_event_from_watch(
    event_type: str,
    body: dict[str, Any],
    old: dict[str, Any] | None = None,
) -> PodEvent | None:
    """Convert a raw watch event into a `PodEvent`.

    Returns `None` for event types that carry no pod change, such as the
    initial listing kopf reports with a `None` type.
    """
    try:
        kind = _WATCH_EVENT_TYPES[event_type]
    except KeyError:
        return None
    return PodEvent(
        event_type=kind,
        pod_name=NamespacedName.from_pod(body),
        cur_pod=body,
        prev_pod=old,
    )


class PodEventChannel:
    """An unbounded, closable queue of `PodEvent` for a single pod."""

    def __init__(self, pod_name: NamespacedName) -> None:
        self.pod_name = pod_name
        self._queue: queue.Queue = queue.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, event: PodEvent) -> None:
        if not self._closed:
            self._queue.put(event)

    def close(self) -> None:
        self._closed = True
        self._queue.put(_CLOSED)

    def get(self, timeout: float | None = None) -> PodEvent | None:
        """Receive the next event.

        Returns `None` once the channel is closed. Raises `queue.Empty` if no
        event arrives within ``timeout`` seconds.
        """
        item = self._queue.get(timeout=timeout)
        if item is _CLOSED:
            # Keep the marker so further reads also see a closed channel.
            self._queue.put(_CLOSED)
            return None
        return item


class PodEventBus:
    """Registry of pod subscriptions, at most one per pod."""

    def __init__(self, logger: Any | None = None) -> None:
        self._subscribers: dict[NamespacedName, PodEventChannel] = {}
        self._lock = threading.Lock()
        self._logger = logger or structlog.getLogger(__name__)

    def subscribe(self, pod_name: NamespacedName) -> PodEventChannel:
        """Register the single subscriber of a pod's events.

        Raises
        ------
        pgfailoveroperator.exceptions.SubscriptionContractError
            Raised if the pod already has a subscriber.
        """
        self._logger.debug(f"subscribing to pod {pod_name}")
        with self._lock:
            if pod_name in self._subscribers:
                raise SubscriptionContractError(
                    f"pod {pod_name!r} is already subscribed"
                )
            channel = PodEventChannel(pod_name)
            self._subscribers[pod_name] = channel
        return channel

    def unsubscribe(self, pod_name: NamespacedName) -> None:
        """Remove a pod's subscriber and close its channel.

        Raises
        ------
        pgfailoveroperator.exceptions.SubscriptionContractError
            Raised if the pod has no subscriber.
        """
        self._logger.debug(f"unsubscribing from pod {pod_name} events")
        with self._lock:
            try:
                channel = self._subscribers.pop(pod_name)
            except KeyError:
                raise SubscriptionContractError(
                    f"subscriber for pod {str(pod_name)!r} is not found"
                ) from None
        channel.close()

    def is_subscribed(self, pod_name: NamespacedName) -> bool:
        with self._lock:
            return pod_name in self._subscribers

    def publish(self, event: PodEvent) -> bool:
        """Deliver an event to the pod's subscriber, if there is one.

        Returns
        -------
        delivered : `bool`
            `True` if a subscriber received the event.
        """
        with self._lock:
            channel = self._subscribers.get(event.pod_name)
        if channel is None:
            return False
        channel.put(event)
        return True


def wait_for_pod_deletion(
    channel: PodEventChannel, *, timeout: float
) -> None:
    """Block until the subscribed pod is reported deleted.

    A closed channel means nobody is interested any more and ends the wait
    without an error.

    Raises
    ------
    pgfailoveroperator.exceptions.PodWaitError
        Raised if no deletion is observed within ``timeout`` seconds.
    """
    deadline = time.monotonic() + timeout
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        try:
            event = channel.get(timeout=remaining)
        except queue.Empty:
            break
        if event is None or event.event_type == PodEventType.DELETE:
            return
    raise PodWaitError(f"pod {channel.pod_name} deletion wait timeout")


def wait_for_pod_label(
    channel: PodEventChannel,
    stop: threading.Event,
    *,
    role_label: str,
    role: PostgresRole | None = None,
    timeout: float,
) -> dict[str, Any]:
    """Block until the subscribed pod shows up with a Postgres role label.

    Parameters
    ----------
    channel : `PodEventChannel`
        The subscription channel of the pod.
    stop : `threading.Event`
        Cancellation signal set by the caller when it abandons the wait.
    role_label : `str`
        Name of the pod label carrying the role.
    role : `PostgresRole`, optional
        The expected role. If not set, either ``primary`` or ``replica`` ends
        the wait.
    timeout : `float`
        Seconds to wait at most.

    Returns
    -------
    pod : `dict`
        The pod as observed with its role label.

    Raises
    ------
    pgfailoveroperator.exceptions.PodWaitError
        Raised on timeout, cancellation, or if the channel is closed.
    """
    if role is None:
        expected = {PostgresRole.PRIMARY.value, PostgresRole.REPLICA.value}
    else:
        expected = {PostgresRole(role).value}

    deadline = time.monotonic() + timeout
    while not stop.is_set():
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise PodWaitError(f"pod {channel.pod_name} label wait timeout")
        try:
            event = channel.get(timeout=min(remaining, _STOP_CHECK_INTERVAL))
        except queue.Empty:
            continue
        if event is None:
            raise PodWaitError(
                f"pod {channel.pod_name} subscription closed while waiting "
                "for its label"
            )
        if event.cur_pod is None or event.event_type == PodEventType.DELETE:
            continue
        labels = event.cur_pod["metadata"].get("labels") or {}
        if labels.get(role_label) in expected:
            return event.cur_pod
    raise PodWaitError(f"pod {channel.pod_name} label wait cancelled")
