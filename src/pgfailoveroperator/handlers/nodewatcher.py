"""Kopf handler moving Postgres pods off nodes that are being retired."""

__all__ = ("handle_node_update", "move_pods_out_of_node")

from typing import Any

import kopf

from .. import state
from ..clusters import get_cluster_migrator
from ..endoflife import node_is_ready
from ..exceptions import PodMigrationError, PreconditionError
from ..k8s import create_k8sclient, list_pods
from ..names import NamespacedName, PostgresRole
from ..rollingupdate import mark_rolling_update_flag


@kopf.on.update("", "v1", "nodes")  # type: ignore[arg-type]
def handle_node_update(
    *,
    name: str,
    old: dict[str, Any],
    new: dict[str, Any],
    logger: Any,
    **kwargs: Any,
) -> None:
    """Handle a Node that stops being fit for Postgres pods.

    Parameters
    ----------
    name : `str`
        The name of the Node.
    old : `dict`
        The Node before the change.
    new : `dict`
        The Node after the change.
    logger : `Any`
        The kopf logger.
    kwargs : `Any`
        Additional keyword arguments, if any.
    """
    readiness_label = state.config.node_readiness_label
    # Act only on the transition from ready to not ready.
    if not node_is_ready(old, readiness_label) or node_is_ready(
        new, readiness_label
    ):
        return

    logger.info(f"Node {name} became unready, moving Postgres pods away")
    move_pods_out_of_node(
        node_name=name,
        namespace=state.namespace,
        k8s_client=create_k8sclient(),
        logger=logger,
    )


def move_pods_out_of_node(
    *,
    node_name: str,
    namespace: str,
    k8s_client: Any,
    logger: Any,
) -> None:
    """Migrate the Postgres pods running on a node.

    Primaries are handled first, through a switchover where possible. The
    replicas still on the node afterwards, including demoted primaries, are
    recreated elsewhere. A pod that fails to migrate is flagged for a rolling
    update and the remaining pods are still processed.

    Raises
    ------
    kopf.TemporaryError
        Raised if any pod could not be migrated, so kopf retries later.
    kopf.PermanentError
        Raised on a precondition violation.
    """
    failed: list[NamespacedName] = []
    moved = 0
    for role in (PostgresRole.PRIMARY, PostgresRole.REPLICA):
        pods = _cluster_pods_on_node(
            node_name=node_name,
            namespace=namespace,
            role=role,
            k8s_client=k8s_client,
        )
        for pod in pods:
            pod_name = NamespacedName.from_pod(pod)
            if pod_name in failed:
                continue
            migrator = get_cluster_migrator(
                namespace=namespace,
                cluster_name=pod["metadata"]["labels"][
                    state.config.cluster_name_label
                ],
                k8s_client=k8s_client,
            )
            with migrator.lock:
                try:
                    if role == PostgresRole.PRIMARY:
                        migrator.migrate_master_pod(pod_name)
                    else:
                        migrator.migrate_replica_pod(pod_name, node_name)
                except PreconditionError as e:
                    logger.critical(f"Aborting migration of {pod_name}: {e}")
                    raise kopf.PermanentError(str(e)) from e
                except PodMigrationError as e:
                    logger.error(f"Could not move pod {pod_name}: {e}")
                    failed.append(pod_name)
                    _flag_pod(pod, node_name, k8s_client, logger)
                else:
                    moved += 1

    if failed:
        raise kopf.TemporaryError(
            f"Could not move pods {', '.join(map(str, failed))} out of node "
            f"{node_name}",
            delay=60,
        )
    logger.info(f"Handled {moved} Postgres pods on node {node_name}")


def _cluster_pods_on_node(
    *,
    node_name: str,
    namespace: str,
    role: PostgresRole,
    k8s_client: Any,
) -> list[dict[str, Any]]:
    labels = dict(state.config.cluster_labels)
    labels[state.config.pod_role_label] = role.value
    pods = list_pods(
        namespace=namespace,
        labels=labels,
        field_selector=f"spec.nodeName={node_name}",
        k8s_client=k8s_client,
    )
    return [
        pod
        for pod in pods
        if state.config.cluster_name_label
        in (pod["metadata"].get("labels") or {})
    ]


def _flag_pod(
    pod: dict[str, Any], node_name: str, k8s_client: Any, logger: Any
) -> None:
    try:
        mark_rolling_update_flag(
            pod,
            f"could not move pod out of end-of-life node {node_name}",
            k8s_client=k8s_client,
            annotation=state.config.rolling_update_annotation,
            interval=state.config.kube_retry_interval,
            timeout=state.config.kube_retry_timeout,
            logger=logger,
        )
    except PodMigrationError as e:
        logger.error(str(e))
