"""Registry of the `ClusterMigrator` serving each Postgres cluster."""

__all__ = ("get_cluster_migrator", "reset_cluster_migrators")

import threading
from typing import Any

from pgfailoveroperator import state
from pgfailoveroperator.k8s import create_k8sclient
from pgfailoveroperator.migration import ClusterMigrator
from pgfailoveroperator.names import NamespacedName
from pgfailoveroperator.patroni import PatroniClient

_migrators: dict[NamespacedName, ClusterMigrator] = {}
_migrators_lock = threading.Lock()


def get_cluster_migrator(
    *,
    namespace: str,
    cluster_name: str,
    k8s_client: Any | None = None,
    patroni: Any | None = None,
) -> ClusterMigrator:
    """Get the migrator of a cluster, creating it on first use.

    All migrators share the operator-wide pod event bus in
    `pgfailoveroperator.state.pod_events`.
    """
    key = NamespacedName(namespace=namespace, name=cluster_name)
    with _migrators_lock:
        migrator = _migrators.get(key)
        if migrator is None:
            migrator = ClusterMigrator(
                namespace=namespace,
                cluster_name=cluster_name,
                k8s_client=k8s_client or create_k8sclient(),
                patroni=patroni
                or PatroniClient(port=state.config.patroni_port),
                pod_events=state.pod_events,
                config=state.config,
            )
            _migrators[key] = migrator
        return migrator


def reset_cluster_migrators() -> None:
    """Forget all migrators, and with them their cached StatefulSets."""
    with _migrators_lock:
        _migrators.clear()
