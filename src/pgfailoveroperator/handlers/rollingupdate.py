"""Kopf handlers recreating the pods of a cluster whose template changed."""

__all__ = (
    "handle_template_change",
    "resume_rolling_update",
    "run_rolling_update",
)

from typing import Any

import kopf

from .. import state
from ..clusters import get_cluster_migrator
from ..exceptions import PodMigrationError, PreconditionError
from ..migration import ClusterMigrator
from ..names import NamespacedName, PostgresRole
from ..rollingupdate import get_rolling_update_flag, mark_rolling_update_flag

_CLUSTER_FILTER = {state.config.cluster_name_label: kopf.PRESENT}


@kopf.on.update(  # type: ignore[arg-type]
    "apps", "v1", "statefulsets", labels=_CLUSTER_FILTER, field="spec.template"
)
def handle_template_change(
    *,
    namespace: str,
    meta: dict[str, Any],
    logger: Any,
    **kwargs: Any,
) -> None:
    """Recreate all pods of a cluster after its pod template changed.

    Parameters
    ----------
    namespace : `str`
        The namespace of the StatefulSet.
    meta : `dict`
        The metadata of the StatefulSet, including labels.
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments, if any.
    """
    migrator = get_cluster_migrator(
        namespace=namespace,
        cluster_name=meta["labels"][state.config.cluster_name_label],
    )
    _run(migrator, reason="pod template changed", logger=logger)


@kopf.timer(  # type: ignore[arg-type]
    "apps",
    "v1",
    "statefulsets",
    labels=_CLUSTER_FILTER,
    interval=state.resync_period,
    idle=state.resync_period,
)
def resume_rolling_update(
    *,
    namespace: str,
    meta: dict[str, Any],
    logger: Any,
    **kwargs: Any,
) -> None:
    """Finish rolling updates that an earlier pass left incomplete."""
    migrator = get_cluster_migrator(
        namespace=namespace,
        cluster_name=meta["labels"][state.config.cluster_name_label],
    )
    _run(migrator, reason=None, logger=logger)


def _run(migrator: ClusterMigrator, *, reason: str | None, logger: Any) -> None:
    with migrator.lock:
        try:
            run_rolling_update(migrator, reason=reason, logger=logger)
        except PreconditionError as e:
            logger.critical(f"Aborting rolling update: {e}")
            raise kopf.PermanentError(str(e)) from e
        except PodMigrationError as e:
            raise kopf.TemporaryError(
                f"Rolling update of {migrator.cluster_name} is incomplete: {e}",
                delay=60,
            ) from e


def run_rolling_update(
    migrator: ClusterMigrator,
    *,
    reason: str | None,
    logger: Any,
) -> None:
    """Recreate the flagged pods of a cluster.

    Parameters
    ----------
    migrator : `ClusterMigrator`
        The migrator of the cluster.
    reason : `str`, optional
        If set, every pod is flagged first, with this reason. Otherwise only
        pods flagged by an earlier pass are recreated.
    logger : `Any`
        The kopf logger.
    """
    annotation = migrator.config.rolling_update_annotation
    pods = migrator.list_pods()

    if reason is not None:
        for pod in pods:
            mark_rolling_update_flag(
                pod,
                reason,
                k8s_client=migrator.k8s_client,
                annotation=annotation,
                interval=migrator.config.kube_retry_interval,
                timeout=migrator.config.kube_retry_timeout,
                logger=logger,
            )

    flagged = []
    candidates = []
    for pod in pods:
        if get_rolling_update_flag(pod, annotation=annotation, logger=logger):
            flagged.append(pod)
        elif migrator.pod_role(pod) == PostgresRole.REPLICA.value:
            candidates.append(NamespacedName.from_pod(pod))

    if not flagged:
        return
    logger.info(
        f"Recreating {len(flagged)} pods of cluster {migrator.cluster_name}"
    )
    migrator.recreate_pods(flagged, candidates)
