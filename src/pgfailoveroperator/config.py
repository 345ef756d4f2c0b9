"""Operator configuration, read from ``PFO_*`` environment variables."""

from __future__ import annotations

__all__ = ("MigrationConfig", "parse_label_map")

import os
from dataclasses import dataclass, field


def parse_label_map(value: str) -> dict[str, str]:
    """Parse a ``key:value,key:value`` string into a label mapping.

    Parameters
    ----------
    value : `str`
        The serialized label map. Empty entries are ignored.

    Returns
    -------
    labels : `dict`
        The label mapping.

    Raises
    ------
    ValueError
        Raised if an entry has no ``:`` separator.
    """
    labels: dict[str, str] = {}
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        key, sep, label_value = item.partition(":")
        if not sep:
            raise ValueError(
                f"Label {item!r} is not in the key:value format."
            )
        labels[key.strip()] = label_value.strip()
    return labels


def _env_seconds(name: str, default: float) -> float:
    return float(os.environ.get(name, default))


@dataclass
class MigrationConfig:
    """Settings shared by every cluster handled by the operator."""

    cluster_name_label: str = "cluster-name"
    """Pod and StatefulSet label holding the cluster name."""

    cluster_labels: dict[str, str] = field(
        default_factory=lambda: {"application": "spilo"}
    )
    """Extra labels every pod of a managed cluster carries."""

    pod_role_label: str = "spilo-role"
    """Pod label holding the Postgres role (``primary`` or ``replica``)."""

    node_readiness_label: dict[str, str] = field(default_factory=dict)
    """Labels a node must carry to be fit for new workloads."""

    rolling_update_annotation: str = "postgres-operator-rolling-update-required"
    """Pod annotation marking a pending recreation."""

    patroni_api_check_interval: float = 1.0
    patroni_api_check_timeout: float = 5.0
    patroni_port: int = 8008

    kube_retry_interval: float = 1.0
    kube_retry_timeout: float = 5.0

    switchover_retry_interval: float = 60.0
    switchover_retry_timeout: float = 300.0

    pod_label_wait_timeout: float = 600.0
    pod_deletion_wait_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> MigrationConfig:
        """Build the configuration from the process environment."""
        defaults = cls()
        return cls(
            cluster_name_label=os.environ.get(
                "PFO_CLUSTER_NAME_LABEL", defaults.cluster_name_label
            ),
            cluster_labels=parse_label_map(
                os.environ.get("PFO_CLUSTER_LABELS", "application:spilo")
            ),
            pod_role_label=os.environ.get(
                "PFO_POD_ROLE_LABEL", defaults.pod_role_label
            ),
            node_readiness_label=parse_label_map(
                os.environ.get("PFO_NODE_READINESS_LABEL", "")
            ),
            rolling_update_annotation=os.environ.get(
                "PFO_ROLLING_UPDATE_ANNOTATION",
                defaults.rolling_update_annotation,
            ),
            patroni_api_check_interval=_env_seconds(
                "PFO_PATRONI_API_CHECK_INTERVAL",
                defaults.patroni_api_check_interval,
            ),
            patroni_api_check_timeout=_env_seconds(
                "PFO_PATRONI_API_CHECK_TIMEOUT",
                defaults.patroni_api_check_timeout,
            ),
            patroni_port=int(
                os.environ.get("PFO_PATRONI_PORT", defaults.patroni_port)
            ),
            pod_label_wait_timeout=_env_seconds(
                "PFO_POD_LABEL_WAIT_TIMEOUT", defaults.pod_label_wait_timeout
            ),
            pod_deletion_wait_timeout=_env_seconds(
                "PFO_POD_DELETION_WAIT_TIMEOUT",
                defaults.pod_deletion_wait_timeout,
            ),
        )
