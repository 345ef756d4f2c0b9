"""Helpers for interacting with Kubernetes APIs."""

__all__ = (
    "create_k8sclient",
    "delete_pod",
    "format_label_selector",
    "get_node",
    "get_pod",
    "get_statefulset",
    "list_pods",
    "list_statefulsets",
    "patch_pod",
)

import json
from typing import Any

import kubernetes

MERGE_PATCH = "application/merge-patch+json"


def create_k8sclient() -> kubernetes.client:
    """Get a Kubernetes client configured with available cluster
    authentication.

    If in-cluster authentication is available, that is used. Otherwise
    this function falls-back to using a kubectl config file, which is
    appropriate for development.
    """
    try:
        kubernetes.config.load_incluster_config()
    except Exception:
        kubernetes.config.load_kube_config()
    kubernetes.client.configuration.assert_hostname = False
    return kubernetes.client


def format_label_selector(labels: dict[str, str]) -> str:
    """Format a label mapping as an equality-based label selector."""
    return ",".join(f"{key}={value}" for key, value in sorted(labels.items()))


def get_pod(
    *,
    namespace: str,
    name: str,
    k8s_client: Any,
) -> dict[str, Any]:
    """Get a Pod resource as its raw manifest.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace of the Pod.
    name : `str`
        The name of the Pod.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).

    Returns
    -------
    pod : `dict`
        The Kubernetes Pod resource.
    """
    api = k8s_client.CoreV1Api()
    result = api.read_namespaced_pod(
        name=name, namespace=namespace, _preload_content=False
    )
    return json.loads(result.data)


def list_pods(
    *,
    namespace: str,
    k8s_client: Any,
    labels: dict[str, str] | None = None,
    field_selector: str | None = None,
) -> list[dict[str, Any]]:
    """List Pod resources matching labels and, optionally, a field selector.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace to list Pods in.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).
    labels : `dict`, optional
        Labels every returned Pod carries.
    field_selector : `str`, optional
        A field selector such as ``spec.nodeName=node-1``.

    Returns
    -------
    pods : `list` of `dict`
        The raw Pod manifests.
    """
    kwargs: dict[str, Any] = {}
    if labels:
        kwargs["label_selector"] = format_label_selector(labels)
    if field_selector:
        kwargs["field_selector"] = field_selector

    api = k8s_client.CoreV1Api()
    result = api.list_namespaced_pod(
        namespace=namespace, _preload_content=False, **kwargs
    )
    return json.loads(result.data)["items"]


def delete_pod(*, namespace: str, name: str, k8s_client: Any) -> None:
    """Request deletion of a Pod.

    Completion is observed asynchronously through the pod watch.
    """
    api = k8s_client.CoreV1Api()
    api.delete_namespaced_pod(name=name, namespace=namespace)


def patch_pod(
    *,
    namespace: str,
    name: str,
    patch: dict[str, Any],
    k8s_client: Any,
) -> None:
    """Apply a JSON merge patch to a Pod.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace of the Pod.
    name : `str`
        The name of the Pod.
    patch : `dict`
        A partial document containing only the fields to change.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).
    """
    api = k8s_client.CoreV1Api()
    api.patch_namespaced_pod(
        name=name, namespace=namespace, body=patch, _content_type=MERGE_PATCH
    )


def get_node(*, name: str, k8s_client: Any) -> dict[str, Any]:
    """Get a Node resource as its raw manifest."""
    api = k8s_client.CoreV1Api()
    result = api.read_node(name=name, _preload_content=False)
    return json.loads(result.data)


def get_statefulset(
    *,
    namespace: str,
    name: str,
    k8s_client: Any,
) -> dict[str, Any]:
    """Get a StatefulSet resource.

    Parameters
    ----------
    namespace : `str`
        The Kubernetes namespace where the Postgres cluster runs.
    name : `str`
        The name of the StatefulSet, which is the cluster name.
    k8s_client
        A Kubernetes client (see `create_k8sclient`).

    Returns
    -------
    statefulset : `dict`
        The Kubernetes StatefulSet resource.
    """
    api = k8s_client.AppsV1Api()
    result = api.read_namespaced_stateful_set(
        name=name, namespace=namespace, _preload_content=False
    )
    return json.loads(result.data)


def list_statefulsets(
    *,
    namespace: str,
    label_selector: str,
    k8s_client: Any,
) -> list[dict[str, Any]]:
    """List StatefulSet resources matching a label selector."""
    api = k8s_client.AppsV1Api()
    result = api.list_namespaced_stateful_set(
        namespace=namespace,
        label_selector=label_selector,
        _preload_content=False,
    )
    return json.loads(result.data)["items"]
