"""Code intended to run on start-up, before running any handlers."""

__all__ = ("start_operator",)

from typing import Any

import kopf
import structlog
from kubernetes.client.exceptions import ApiException

from pgfailoveroperator import state
from pgfailoveroperator.clusters import get_cluster_migrator
from pgfailoveroperator.k8s import create_k8sclient, list_statefulsets
from pgfailoveroperator.version import get_version


@kopf.on.startup()
def start_operator(
    settings: kopf.OperatorSettings | None = None,
    logger: Any = None,
    **kwargs: Any,
) -> None:
    """Start up the operator.

    Sizes kopf's worker pool and creates a migrator, with its StatefulSet
    already cached, for every cluster found in the namespace.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)
    logger.info(f"Starting pg-failover-operator {get_version()}")

    if settings is not None:
        settings.execution.max_workers = state.max_workers

    k8s_client = create_k8sclient()
    try:
        statefulsets = list_statefulsets(
            namespace=state.namespace,
            label_selector=state.config.cluster_name_label,
            k8s_client=k8s_client,
        )
    except ApiException:
        logger.exception(
            "Exception when calling AppsV1Api->list_namespaced_stateful_set"
        )
        return

    for statefulset in statefulsets:
        labels = statefulset["metadata"].get("labels") or {}
        migrator = get_cluster_migrator(
            namespace=state.namespace,
            cluster_name=labels[state.config.cluster_name_label],
            k8s_client=k8s_client,
        )
        migrator.refresh_statefulset(statefulset)
    logger.info(f"Tracking {len(statefulsets)} Postgres clusters")
