"""Kopf handler feeding pod watch events into the pod event bus."""

__all__ = ("handle_pod_event",)

from typing import Any

import kopf

from .. import state
from ..podevents import pod_event_from_watch


@kopf.on.event(  # type: ignore[arg-type]
    "", "v1", "pods", labels={state.config.cluster_name_label: kopf.PRESENT}
)
async def handle_pod_event(
    *,
    event: dict[str, Any],
    logger: Any,
    **kwargs: Any,
) -> None:
    """Publish a change of a Postgres pod to whoever waits for it.

    This runs on the event loop rather than in kopf's thread pool, whose
    workers may all be busy in migrations that wait for these very events.
    Publishing never blocks.

    Parameters
    ----------
    event : `dict`
        The raw watch event, with ``type`` (``ADDED``, ``MODIFIED`` or
        ``DELETED``) and ``object`` (the Pod).
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments, if any.
    """
    pod_event = pod_event_from_watch(event.get("type"), event["object"])
    if pod_event is None:
        return
    if state.pod_events.publish(pod_event):
        logger.debug(
            f"Delivered {pod_event.event_type.value} event of pod "
            f"{pod_event.pod_name}"
        )
