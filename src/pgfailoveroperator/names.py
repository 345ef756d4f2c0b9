"""Identity and role types shared across the operator."""

from __future__ import annotations

__all__ = ("NamespacedName", "PostgresRole")

from enum import Enum
from typing import Any, NamedTuple


class NamespacedName(NamedTuple):
    """Identity of a namespaced Kubernetes resource."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"

    @classmethod
    def from_pod(cls, pod: dict[str, Any]) -> NamespacedName:
        """Build the identity from a resource's ``metadata``."""
        meta = pod["metadata"]
        return cls(namespace=meta.get("namespace", ""), name=meta["name"])


class PostgresRole(str, Enum):
    """Roles used in pod labels and reported by Patroni."""

    PRIMARY = "primary"
    REPLICA = "replica"
    LEADER = "leader"
    STANDBY_LEADER = "standby_leader"
    SYNC_STANDBY = "sync_standby"
