"""Kopf handler keeping each migrator's view of its StatefulSet current."""

__all__ = ("handle_replicas_change",)

from typing import Any

import kopf

from .. import state
from ..clusters import get_cluster_migrator


@kopf.on.update(  # type: ignore[arg-type]
    "apps",
    "v1",
    "statefulsets",
    labels={state.config.cluster_name_label: kopf.PRESENT},
    field="spec.replicas",
)
def handle_replicas_change(
    *,
    namespace: str,
    meta: dict[str, Any],
    spec: dict[str, Any],
    logger: Any,
    **kwargs: Any,
) -> None:
    """Refresh the cached StatefulSet after a cluster is scaled.

    The replica count decides whether a primary migration can switch over
    to a replica or has to recreate a single-instance cluster.

    Parameters
    ----------
    namespace : `str`
        The namespace of the StatefulSet.
    meta : `dict`
        The metadata of the StatefulSet, including labels.
    spec : `dict`
        The spec of the StatefulSet.
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments, if any.
    """
    migrator = get_cluster_migrator(
        namespace=namespace,
        cluster_name=meta["labels"][state.config.cluster_name_label],
    )
    migrator.refresh_statefulset({"metadata": dict(meta), "spec": dict(spec)})
    logger.info(
        f"Cluster {migrator.cluster_name} scaled to "
        f"{spec.get('replicas', 1)} replicas"
    )
