"""Detection of nodes that should no longer host Postgres pods."""

__all__ = ("node_is_ready", "pod_is_end_of_life")

from typing import Any

from pgfailoveroperator.k8s import get_node


def node_is_ready(node: dict[str, Any], readiness_label: dict[str, str]) -> bool:
    """Check whether a node is fit to host new pods.

    A node is ready when it is schedulable and carries every key and value of
    ``readiness_label``. An empty ``readiness_label`` matches any node.
    """
    if (node.get("spec") or {}).get("unschedulable", False):
        return False
    labels = (node.get("metadata") or {}).get("labels") or {}
    return all(
        labels.get(key) == value for key, value in readiness_label.items()
    )


def pod_is_end_of_life(
    pod: dict[str, Any],
    *,
    k8s_client: Any,
    readiness_label: dict[str, str],
) -> bool:
    """Check whether the node a pod is scheduled on is being retired.

    Parameters
    ----------
    pod : `dict`
        The Pod resource.
    k8s_client
        A Kubernetes client (see `pgfailoveroperator.k8s.create_k8sclient`).
    readiness_label : `dict`
        Labels a live node carries.

    Returns
    -------
    end_of_life : `bool`
        `True` if the node is unschedulable or lacks the readiness labels.

    Raises
    ------
    kubernetes.client.exceptions.ApiException
        Raised if the node cannot be fetched, for example because it was
        already deleted.
    """
    node = get_node(name=pod["spec"]["nodeName"], k8s_client=k8s_client)
    return not node_is_ready(node, readiness_label)
